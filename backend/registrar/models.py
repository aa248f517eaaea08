"""SQLModel data models.

This module defines the application's database tables using SQLModel.
The Student aggregate owns its semester records, subject records and
backlog entries: they are child tables cascaded with `delete-orphan`
and are only ever reached through their student. Streams, departments,
subjects and semesters are reference data the student points at.
"""

from enum import Enum
from typing import Optional
from typing import List
from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship, Column, JSON


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    TRANSGENDER = "Transgender"


class AdmissionType(str, Enum):
    REGULAR = "Regular"
    DIRECT_SECOND_YEAR = "Direct Second Year"
    LATERAL_ENTRY = "Lateral Entry"


class SubjectStatus(str, Enum):
    """Outcome of a subject inside a semester record.

    A subject starts `Pending` and is scored `Passed` or `Failed` by a
    grading update. Once scored it never returns to `Pending`; a
    re-grade may still flip between the two scored states.
    """
    PENDING = "Pending"
    PASSED = "Passed"
    FAILED = "Failed"

    def can_transition_to(self, other: "SubjectStatus") -> bool:
        return other is not SubjectStatus.PENDING


class BacklogStatus(str, Enum):
    PENDING = "Pending"
    CLEARED = "Cleared"


class FacultyRole(str, Enum):
    TEACHING = "Teaching"
    HOD = "HOD"
    STUDENT_MANAGEMENT = "Student Management"
    ACCOUNT_SECTION_MANAGEMENT = "Account Section Management"
    DOCUMENT_SECTION_MANAGEMENT = "Document Section Management"
    NOTIFICATION_SYSTEM_MANAGEMENT = "Notification System Management"
    LIBRARY_MANAGEMENT = "Library Management"
    BUS_MANAGEMENT = "Bus Management"
    HOSTEL_MANAGEMENT = "Hostel Management"


class EmploymentStatus(str, Enum):
    PROBATION_PERIOD = "Probation Period"
    PERMANENT_EMPLOYEE = "Permanent Employee"


class Stream(SQLModel, table=True):
    """An academic stream (e.g. Science, Commerce)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class Department(SQLModel, table=True):
    """A department belonging to a single `Stream`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    stream_id: int = Field(foreign_key='stream.id')
    stream: Optional[Stream] = Relationship()


class Subject(SQLModel, table=True):
    """A subject taught by one department."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    department_id: int = Field(foreign_key='department.id', index=True)
    department: Optional[Department] = Relationship()


class SemesterSubjectLink(SQLModel, table=True):
    """Ordered membership of a `Subject` in a `Semester`'s syllabus."""
    id: Optional[int] = Field(default=None, primary_key=True)
    semester_id: int = Field(foreign_key='semester.id', index=True)
    subject_id: int = Field(foreign_key='subject.id')
    position: int = 0
    semester: Optional['Semester'] = Relationship(back_populates='subject_links')
    subject: Optional[Subject] = Relationship()


class Semester(SQLModel, table=True):
    """A semester identified by its sequence `number` (1..MAX_SEMESTER).

    `subjects` is the ordered syllabus across all departments; callers
    filter it by department where needed.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    number: int = Field(index=True, unique=True)
    subject_links: List[SemesterSubjectLink] = Relationship(
        back_populates='semester',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'SemesterSubjectLink.position'},
    )

    @property
    def subjects(self) -> List[Subject]:
        return [link.subject for link in self.subject_links]

    def subjects_for_department(self, department_id: int) -> List[Subject]:
        return [s for s in self.subjects if s.department_id == department_id]


class Student(SQLModel, table=True):
    """An enrolled student.

    Fields:
    - `student_id`: human readable identifier, assigned once at creation
    - `semester_id`: pointer to the current semester inside the ledger
    - `subject_ids`: the subjects still pending in the latest record
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: Optional[str] = Field(default=None, index=True, unique=True)
    first_name: str
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    father_name: Optional[str] = None
    unicode_father_name: Optional[str] = None
    mother_name: Optional[str] = None
    unicode_mother_name: Optional[str] = None
    unicode_name: Optional[str] = None
    enrollment_number: Optional[str] = None
    gender: Gender
    mobile_number: str
    caste_category: Optional[str] = None
    sub_caste: Optional[str] = None
    email: str
    section: Optional[str] = None
    admission_type: AdmissionType = Field(index=True)
    admission_through: Optional[str] = None
    remark: Optional[str] = None
    stream_id: int = Field(foreign_key='stream.id')
    department_id: int = Field(foreign_key='department.id', index=True)
    semester_id: int = Field(foreign_key='semester.id')
    subject_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    admission_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    stream: Optional[Stream] = Relationship()
    department: Optional[Department] = Relationship()
    semester: Optional[Semester] = Relationship()
    semester_records: List['SemesterRecord'] = Relationship(
        back_populates='student',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'SemesterRecord.position'},
    )
    backlogs: List['Backlog'] = Relationship(
        back_populates='student',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'Backlog.id'},
    )


class SemesterRecord(SQLModel, table=True):
    """One semester of a student's ledger and its subject outcomes."""
    id: Optional[int] = Field(default=None, primary_key=True)
    student_pk: int = Field(foreign_key='student.id', index=True)
    semester_id: int = Field(foreign_key='semester.id')
    position: int = 0
    is_backlog: bool = False
    student: Optional[Student] = Relationship(back_populates='semester_records')
    semester: Optional[Semester] = Relationship()
    subjects: List['SubjectRecord'] = Relationship(
        back_populates='record',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'SubjectRecord.position'},
    )


class SubjectRecord(SQLModel, table=True):
    """Status and marks of one subject inside a `SemesterRecord`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    semester_record_id: int = Field(foreign_key='semesterrecord.id', index=True)
    subject_id: int = Field(foreign_key='subject.id')
    position: int = 0
    status: SubjectStatus = SubjectStatus.PENDING
    marks: float = 0
    record: Optional[SemesterRecord] = Relationship(back_populates='subjects')


class Backlog(SQLModel, table=True):
    """A subject the student still has to clear from a given semester."""
    __table_args__ = (UniqueConstraint('student_pk', 'subject_id', 'semester_id'),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_pk: int = Field(foreign_key='student.id', index=True)
    subject_id: int = Field(foreign_key='subject.id')
    semester_id: int = Field(foreign_key='semester.id')
    status: BacklogStatus = BacklogStatus.PENDING
    student: Optional[Student] = Relationship(back_populates='backlogs')


class StudentCounter(SQLModel, table=True):
    """Monotonic counter per `"{DEPT}-{STREAM}"` key used for student ids."""
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(index=True, unique=True)
    count: int = 0


class Faculty(SQLModel, table=True):
    """A staff member. `password_hash` is never exposed by the API."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    role: FacultyRole
    employment_status: EmploymentStatus = EmploymentStatus.PROBATION_PERIOD
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    department: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
