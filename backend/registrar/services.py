"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the domain rules of the student lifecycle. Services are
intentionally thin: they validate everything up front, raising one of
the `errors` types before touching any row, then mutate the aggregate
and persist it via repositories.
"""

import logging
import re
from typing import Iterable, List, Optional
from passlib.context import CryptContext
from sqlmodel import Session
from . import models, repositories
from .config import settings
from .errors import (
    InvalidStatus,
    InvalidSubjects,
    NoOp,
    NotFound,
    ReferenceNotFound,
    TerminalSemester,
    ValidationError,
)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MOBILE_RE = re.compile(r"^\d{10}$")
DEFAULT_PASS_MARKS = 50

REQUIRED_STUDENT_FIELDS = (
    "first_name", "email", "mobile_number", "gender", "stream",
    "department", "subjects", "semester", "admission_type",
)
PROFILE_FIELDS = (
    "first_name", "middle_name", "last_name", "father_name", "unicode_father_name",
    "mother_name", "unicode_mother_name", "unicode_name", "enrollment_number",
    "gender", "mobile_number", "caste_category", "sub_caste", "email", "section",
    "admission_type", "admission_through", "remark", "admission_date",
)

logger = logging.getLogger("registrar.services")


def _coerce_enum(enum_cls, value, label: str, error=ValidationError):
    """Return `enum_cls(value)` or raise `error` listing the allowed values."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise error(f"Invalid {label}. Must be one of: {allowed}")


def _validate_contact(email: Optional[str], mobile_number: Optional[str]) -> None:
    if email is not None and not EMAIL_RE.match(email):
        raise ValidationError(f"{email} is not a valid email!")
    if mobile_number is not None and not MOBILE_RE.match(mobile_number):
        raise ValidationError(f"{mobile_number} is not a valid 10-digit mobile number!")


def _default_marks(status: models.SubjectStatus, marks: Optional[float]) -> float:
    """Marks to store for `status`.

    A Passed subject sent with no marks (or 0, as a freshly created
    Pending entry carries) is stored with the default pass marks.
    """
    if marks is not None and marks < 0:
        raise ValidationError("marks must be >= 0")
    if status is models.SubjectStatus.PASSED and not marks:
        return DEFAULT_PASS_MARKS
    return marks or 0


def pending_subject_ids(record: models.SemesterRecord) -> List[int]:
    """Subjects of `record` still waiting for a result."""
    return [s.subject_id for s in record.subjects if s.status == models.SubjectStatus.PENDING]


class StudentIdAssigner:
    """Assign `{DEPT}{STREAM}{NNN}` identifiers from per-key counters.

    The department and stream names are normalized (all whitespace
    removed, uppercased) in one place so the counter key and the
    identifier prefix can never drift apart.
    """
    def __init__(self, session: Session):
        self.session = session
        self.refs = repositories.ReferenceRepository(session)
        self.counters = repositories.CounterRepository(session)

    @staticmethod
    def normalize(name: str) -> str:
        return "".join(name.split()).upper()

    @classmethod
    def counter_key(cls, department_name: str, stream_name: str) -> str:
        return f"{cls.normalize(department_name)}-{cls.normalize(stream_name)}"

    def assign(self, department_id: int, stream_id: int) -> str:
        """Increment the department/stream counter and format the new id.

        The increment joins the session's current transaction: it is
        only made durable by the commit that inserts the student.
        """
        department = self.refs.get_department(department_id)
        stream = self.refs.get_stream(stream_id)
        if not department or not stream:
            raise ReferenceNotFound("Invalid department or stream reference")
        dept_code = self.normalize(department.name)
        stream_code = self.normalize(stream.name)
        count = self.counters.increment(f"{dept_code}-{stream_code}")
        student_id = f"{dept_code}{stream_code}{count:03d}"
        logger.info("assigned student id %s", student_id)
        return student_id


class SemesterLedger:
    """Promotion, semester edits, backlogs and results on a student's ledger."""
    def __init__(self, session: Session, max_semester: Optional[int] = None):
        self.session = session
        self.refs = repositories.ReferenceRepository(session)
        self.students = repositories.StudentRepository(session)
        self.max_semester = max_semester or settings.MAX_SEMESTER

    @staticmethod
    def pending_record(semester: models.Semester, subject_ids: Iterable[int], position: int) -> models.SemesterRecord:
        """Build a record with every subject `Pending` and marks 0."""
        return models.SemesterRecord(
            semester_id=semester.id,
            semester=semester,
            position=position,
            is_backlog=False,
            subjects=[
                models.SubjectRecord(subject_id=sid, position=i, status=models.SubjectStatus.PENDING, marks=0)
                for i, sid in enumerate(subject_ids)
            ],
        )

    @staticmethod
    def _next_position(student: models.Student) -> int:
        return max((r.position for r in student.semester_records), default=-1) + 1

    def _append_semester(self, student: models.Student, semester: models.Semester) -> models.SemesterRecord:
        subject_ids = [s.id for s in semester.subjects_for_department(student.department_id)]
        record = self.pending_record(semester, subject_ids, self._next_position(student))
        student.semester_records.append(record)
        return record

    def promote(self, student: models.Student) -> models.Student:
        """Move `student` to the semester numbered one above the current one.

        Appends exactly one record for the next semester (filtered to the
        student's department) and leaves earlier records untouched.
        """
        current = student.semester
        if current is None:
            raise ReferenceNotFound("Student has no current semester")
        if current.number >= self.max_semester:
            raise TerminalSemester("Student is already in the final semester")
        next_semester = self.refs.get_semester_by_number(current.number + 1)
        if not next_semester:
            raise NotFound("Next semester not found in database")
        self._append_semester(student, next_semester)
        student.semester = next_semester
        student.semester_id = next_semester.id
        saved = self.students.save(student)
        logger.info("promoted %s to semester %d", saved.student_id, next_semester.number)
        return saved

    def edit_semester(self, student: models.Student, semester_id: int) -> models.Student:
        """Point `student` at another semester, forwards or backwards.

        A record is appended for the target if the ledger has none, then
        every record whose semester number is above the target's is
        dropped.
        """
        target = self.refs.get_semester(semester_id)
        if not target:
            raise ReferenceNotFound("Invalid semester ID")
        if student.semester_id == target.id:
            raise NoOp("Student is already in the selected semester")
        if not any(r.semester_id == target.id for r in student.semester_records):
            self._append_semester(student, target)
        student.semester = target
        student.semester_id = target.id
        student.semester_records = [r for r in student.semester_records if r.semester.number <= target.number]
        saved = self.students.save(student)
        logger.info("moved %s to semester %d", saved.student_id, target.number)
        return saved

    def add_backlog(self, student: models.Student, semester_id: int, subject_ids: List[int]) -> models.Student:
        """Record backlogs for `subject_ids` of a semester.

        Pairs already present on the student (or repeated in the input)
        are skipped, so the call is idempotent.
        """
        semester = self.refs.get_semester(semester_id)
        if not semester:
            raise ReferenceNotFound("Invalid semester ID")
        if not isinstance(subject_ids, list) or not subject_ids:
            raise ValidationError("subjectIds must be a non-empty array")
        valid = {s.id for s in semester.subjects}
        invalid = [sid for sid in subject_ids if sid not in valid]
        if invalid:
            raise InvalidSubjects(f"One or more subject IDs are invalid for this semester: {invalid}")
        existing = {(b.subject_id, b.semester_id) for b in student.backlogs}
        added = 0
        for sid in subject_ids:
            if (sid, semester.id) in existing:
                continue
            student.backlogs.append(
                models.Backlog(subject_id=sid, semester_id=semester.id, status=models.BacklogStatus.PENDING)
            )
            existing.add((sid, semester.id))
            added += 1
        saved = self.students.save(student)
        logger.info("added %d backlog(s) for %s", added, saved.student_id)
        return saved

    def update_backlog_status(self, student: models.Student, backlog_id: int, status: str) -> models.Student:
        status = _coerce_enum(models.BacklogStatus, status, "status", error=InvalidStatus)
        backlog = next((b for b in student.backlogs if b.id == backlog_id), None)
        if not backlog:
            raise NotFound("Backlog not found")
        backlog.status = status
        return self.students.save(student)

    def record_result(self, student: models.Student, semester_id: int, subject_id: int,
                      status: str, marks: Optional[float] = None) -> models.Student:
        """Score one subject of a semester record (Pending -> Passed/Failed).

        A scored subject can be re-graded but never set back to Pending.
        Grading the latest record refreshes the student's pending list.
        """
        status = _coerce_enum(models.SubjectStatus, status, "status", error=InvalidStatus)
        record = next((r for r in student.semester_records if r.semester_id == semester_id), None)
        if not record:
            raise NotFound("Semester record not found")
        entry = next((s for s in record.subjects if s.subject_id == subject_id), None)
        if not entry:
            raise NotFound("Subject not found in semester record")
        current = models.SubjectStatus(entry.status)
        if not current.can_transition_to(status):
            raise InvalidStatus(f"Cannot change subject status from {current.value} to {status.value}")
        entry.marks = _default_marks(status, marks)
        entry.status = status
        if record is student.semester_records[-1]:
            student.subject_ids = pending_subject_ids(record)
        return self.students.save(student)

    def replace_records(self, student: models.Student, records: List[dict]) -> None:
        """Replace the whole ledger of `student` with `records`.

        This is a full replace, not a merge: records missing from the
        payload are deleted. Each record is validated against its
        semester and the student's department, statuses default to
        Pending and marks are defaulted from the status. Status
        transitions are not checked here; this is the administrative
        correction path. Nothing is persisted; the caller saves.
        """
        if not records:
            raise ValidationError("semesterRecords must be a non-empty array")
        built = []
        for position, rec in enumerate(records):
            semester_id = rec.get("semester")
            if semester_id is None:
                raise ValidationError("Semester ID is required in semesterRecords")
            semester = self.refs.get_semester(semester_id)
            if not semester:
                raise ReferenceNotFound(f"Invalid semester ID: {semester_id}")
            legal = {s.id for s in semester.subjects_for_department(student.department_id)}
            subject_rows = []
            for i, sub in enumerate(rec.get("subjects") or []):
                sid = sub.get("subject")
                if sid is None:
                    raise ValidationError("Subject ID is required in semesterRecords subjects")
                if sid not in legal:
                    raise InvalidSubjects("One or more subject IDs are invalid for this semester")
                status = _coerce_enum(models.SubjectStatus, sub.get("status") or "Pending", "status",
                                      error=InvalidStatus)
                subject_rows.append(models.SubjectRecord(
                    subject_id=sid, position=i, status=status,
                    marks=_default_marks(status, sub.get("marks")),
                ))
            built.append(models.SemesterRecord(
                semester_id=semester.id,
                semester=semester,
                position=position,
                is_backlog=bool(rec.get("is_backlog", False)),
                subjects=subject_rows,
            ))
        student.semester_records = built
        student.subject_ids = pending_subject_ids(built[-1])


class StudentDirectory:
    """Create, read, update and delete students."""
    def __init__(self, session: Session):
        self.session = session
        self.refs = repositories.ReferenceRepository(session)
        self.students = repositories.StudentRepository(session)
        self.ledger = SemesterLedger(session)
        self.assigner = StudentIdAssigner(session)

    def create(self, fields: dict) -> models.Student:
        """Admit a student with one Pending record for the admission semester.

        `fields` uses attribute names (`first_name`, `stream`, ...); the
        `stream`, `department`, `semester` and `subjects` values are ids.
        """
        missing = [f for f in REQUIRED_STUDENT_FIELDS if not fields.get(f)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        subjects = fields["subjects"]
        if not isinstance(subjects, list):
            raise ValidationError("Subjects must be a non-empty array")
        subject_ids = list(dict.fromkeys(subjects))
        admission_type = _coerce_enum(models.AdmissionType, fields["admission_type"], "admissionType")
        gender = _coerce_enum(models.Gender, fields["gender"], "gender")
        _validate_contact(fields["email"], fields["mobile_number"])

        stream = self.refs.get_stream(fields["stream"])
        if not stream:
            raise ReferenceNotFound("Invalid stream ID")
        department = self.refs.get_department(fields["department"])
        if not department:
            raise ReferenceNotFound("Invalid department ID")
        if department.stream_id != stream.id:
            raise ValidationError("Department does not belong to the selected stream")
        semester = self.refs.get_semester(fields["semester"])
        if not semester:
            raise ReferenceNotFound("Invalid semester ID")
        legal = {s.id for s in semester.subjects_for_department(department.id)}
        if not all(sid in legal for sid in subject_ids):
            raise InvalidSubjects("One or more subject IDs are not valid for this semester and department")

        profile = {k: fields[k] for k in PROFILE_FIELDS if fields.get(k) is not None}
        profile.update(gender=gender, admission_type=admission_type)
        student = models.Student(
            **profile,
            stream_id=stream.id,
            department_id=department.id,
            semester_id=semester.id,
            subject_ids=subject_ids,
        )
        student.semester_records = [self.ledger.pending_record(semester, subject_ids, 0)]
        if not student.student_id:
            student.student_id = self.assigner.assign(department.id, stream.id)
        created = self.students.create(student)
        logger.info("admitted student %s (pk=%s)", created.student_id, created.id)
        return created

    def get(self, pk: int) -> models.Student:
        student = self.students.get(pk)
        if not student:
            raise NotFound("Student not found")
        return student

    def get_by_student_id(self, student_id: str) -> models.Student:
        student = self.students.get_by_student_id(student_id)
        if not student:
            raise NotFound("Student not found")
        return student

    def list(self, admission_type: Optional[str] = None) -> List[models.Student]:
        if admission_type:
            admission_type = _coerce_enum(models.AdmissionType, admission_type, "admissionType")
        return self.students.list(admission_type or None)

    def update(self, pk: int, fields: dict) -> models.Student:
        """Apply a partial update of profile fields and, optionally, the ledger.

        `stream`, `department`, `student_id`, `semester` and `subjects`
        cannot be set directly: the first three are fixed at admission,
        the current semester moves through promote/edit-semester and the
        pending subjects are derived from the ledger. A supplied
        `semester_records` list replaces the whole ledger.
        """
        student = self.get(pk)
        fields = dict(fields)
        records = fields.pop("semester_records", None)
        current = {
            "stream": student.stream_id,
            "department": student.department_id,
            "student_id": student.student_id,
            "semester": student.semester_id,
            "subjects": student.subject_ids,
        }
        for key, value in current.items():
            if key in fields and fields[key] is not None and fields[key] != value:
                raise ValidationError(f"{key} cannot be changed through a profile update")

        changes = {k: fields[k] for k in PROFILE_FIELDS if k in fields}
        if changes.get("admission_date", True) is None:
            del changes["admission_date"]
        for key in ("first_name", "email", "mobile_number", "gender", "admission_type"):
            if key in changes and not changes[key]:
                raise ValidationError(f"{key} cannot be empty")
        if "admission_type" in changes:
            changes["admission_type"] = _coerce_enum(models.AdmissionType, changes["admission_type"], "admissionType")
        if "gender" in changes:
            changes["gender"] = _coerce_enum(models.Gender, changes["gender"], "gender")
        _validate_contact(changes.get("email"), changes.get("mobile_number"))
        if records is not None:
            self.ledger.replace_records(student, records)

        for key, value in changes.items():
            setattr(student, key, value)
        return self.students.save(student)

    def delete(self, pk: int) -> None:
        student = self.get(pk)
        self.students.delete(student)
        logger.info("deleted student %s", student.student_id)


class CatalogService:
    """CRUD for streams, departments, subjects and semesters."""
    def __init__(self, session: Session):
        self.session = session
        self.refs = repositories.ReferenceRepository(session)
        self.catalog = repositories.CatalogRepository(session)
        self.max_semester = settings.MAX_SEMESTER

    def _get(self, model, entity_id, label: str):
        entity = self.session.get(model, entity_id)
        if not entity:
            raise NotFound(f"{label} not found")
        return entity

    def _ensure_unreferenced(self, label: str, checks) -> None:
        for model, column, value in checks:
            if self.refs.count_where(model, column, value):
                raise ValidationError(f"{label} is still referenced by {model.__name__} records")

    @staticmethod
    def _clean_name(name: Optional[str], label: str) -> str:
        if not name or not name.strip():
            raise ValidationError(f"{label} name is required")
        return name.strip()

    def create_stream(self, name: str) -> models.Stream:
        name = self._clean_name(name, "Stream")
        if self.refs.list(models.Stream, name=name):
            raise ValidationError("Stream already exists")
        return self.catalog.create(models.Stream(name=name))

    def create_department(self, name: str, stream_id: int) -> models.Department:
        name = self._clean_name(name, "Department")
        if not self.refs.get_stream(stream_id):
            raise ReferenceNotFound("Invalid stream ID")
        return self.catalog.create(models.Department(name=name, stream_id=stream_id))

    def create_subject(self, name: str, department_id: int) -> models.Subject:
        name = self._clean_name(name, "Subject")
        if not self.refs.get_department(department_id):
            raise ReferenceNotFound("Invalid department ID")
        return self.catalog.create(models.Subject(name=name, department_id=department_id))

    def _subject_links(self, subject_ids: List[int]) -> List[models.SemesterSubjectLink]:
        ordered = list(dict.fromkeys(subject_ids or []))
        found = {s.id for s in self.refs.get_subjects(ordered)}
        missing = [sid for sid in ordered if sid not in found]
        if missing:
            raise ReferenceNotFound(f"Invalid subject IDs: {missing}")
        return [models.SemesterSubjectLink(subject_id=sid, position=i) for i, sid in enumerate(ordered)]

    def create_semester(self, number: int, subject_ids: Optional[List[int]] = None) -> models.Semester:
        if not 1 <= number <= self.max_semester:
            raise ValidationError(f"Semester number must be between 1 and {self.max_semester}")
        if self.refs.get_semester_by_number(number):
            raise ValidationError(f"Semester {number} already exists")
        semester = models.Semester(number=number)
        semester.subject_links = self._subject_links(subject_ids or [])
        return self.catalog.create(semester)

    def set_semester_subjects(self, semester_id: int, subject_ids: List[int]) -> models.Semester:
        """Replace the ordered syllabus of a semester."""
        semester = self._get(models.Semester, semester_id, "Semester")
        semester.subject_links = self._subject_links(subject_ids)
        return self.catalog.save(semester)

    def subjects_for(self, semester_id: int, department_id: int) -> List[models.Subject]:
        semester = self.refs.get_semester(semester_id)
        if not semester:
            raise ReferenceNotFound("Invalid semester ID")
        return semester.subjects_for_department(department_id)

    def get_stream(self, stream_id: int) -> models.Stream:
        return self._get(models.Stream, stream_id, "Stream")

    def get_department(self, department_id: int) -> models.Department:
        return self._get(models.Department, department_id, "Department")

    def get_subject(self, subject_id: int) -> models.Subject:
        return self._get(models.Subject, subject_id, "Subject")

    def get_semester(self, semester_id: int) -> models.Semester:
        return self._get(models.Semester, semester_id, "Semester")

    def list_streams(self) -> List[models.Stream]:
        return self.refs.list(models.Stream)

    def list_departments(self, stream_id: Optional[int] = None) -> List[models.Department]:
        return self.refs.list(models.Department, stream_id=stream_id)

    def list_subjects(self, department_id: Optional[int] = None) -> List[models.Subject]:
        return self.refs.list(models.Subject, department_id=department_id)

    def list_semesters(self) -> List[models.Semester]:
        return sorted(self.refs.list(models.Semester), key=lambda s: s.number)

    def delete_stream(self, stream_id: int) -> None:
        stream = self.get_stream(stream_id)
        self._ensure_unreferenced("Stream", [
            (models.Department, "stream_id", stream.id),
            (models.Student, "stream_id", stream.id),
        ])
        self.catalog.delete(stream)

    def delete_department(self, department_id: int) -> None:
        department = self.get_department(department_id)
        self._ensure_unreferenced("Department", [
            (models.Subject, "department_id", department.id),
            (models.Student, "department_id", department.id),
        ])
        self.catalog.delete(department)

    def delete_subject(self, subject_id: int) -> None:
        subject = self.get_subject(subject_id)
        self._ensure_unreferenced("Subject", [
            (models.SemesterSubjectLink, "subject_id", subject.id),
            (models.SubjectRecord, "subject_id", subject.id),
            (models.Backlog, "subject_id", subject.id),
        ])
        self.catalog.delete(subject)

    def delete_semester(self, semester_id: int) -> None:
        semester = self.get_semester(semester_id)
        self._ensure_unreferenced("Semester", [
            (models.Student, "semester_id", semester.id),
            (models.SemesterRecord, "semester_id", semester.id),
            (models.Backlog, "semester_id", semester.id),
        ])
        self.catalog.delete(semester)


class FacultyService:
    """Register faculty members and manage their employment status."""
    NON_TEACHING = "Non-Teaching"
    TEACHING_ROLES = [models.FacultyRole.TEACHING, models.FacultyRole.HOD]

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.FacultyRepository(session)

    def create(self, name: str, role: str, username: str, password: str,
               employment_status: Optional[str] = None, department: Optional[str] = None) -> models.Faculty:
        """Create a faculty member with a hashed password."""
        if not name or not username or not password:
            raise ValidationError("name, username and password are required")
        role = _coerce_enum(models.FacultyRole, role, "role")
        status = _coerce_enum(models.EmploymentStatus, employment_status or models.EmploymentStatus.PROBATION_PERIOD.value,
                              "employmentStatus")
        if self.repo.get_by_username(username):
            raise ValidationError("Username already exists")
        faculty = models.Faculty(
            name=name,
            role=role,
            employment_status=status,
            username=username,
            password_hash=PWD_CTX.hash(password),
            department=department,
        )
        return self.repo.create(faculty)

    def verify_password(self, faculty: models.Faculty, password: str) -> bool:
        return PWD_CTX.verify(password, faculty.password_hash)

    def list(self, role: Optional[str] = None) -> List[models.Faculty]:
        """List faculty; `role` may be `All`, `Non-Teaching` or a concrete role."""
        if not role or role == "All":
            return self.repo.list()
        if role == self.NON_TEACHING:
            return self.repo.list(self.TEACHING_ROLES, exclude=True)
        return self.repo.list([_coerce_enum(models.FacultyRole, role, "role")])

    def update_status(self, faculty_id: int, employment_status: str) -> models.Faculty:
        status = _coerce_enum(models.EmploymentStatus, employment_status, "employmentStatus")
        faculty = self.repo.get(faculty_id)
        if not faculty:
            raise NotFound("Faculty not found")
        faculty.employment_status = status
        return self.repo.save(faculty)

    def delete(self, faculty_id: int) -> None:
        faculty = self.repo.get(faculty_id)
        if not faculty:
            raise NotFound("Faculty not found")
        self.repo.delete(faculty)
