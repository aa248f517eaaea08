import pytest

from registrar import models, services
from registrar.errors import InvalidStatus, InvalidSubjects, NotFound, ReferenceNotFound, ValidationError


@pytest.fixture
def directory(session):
    return services.StudentDirectory(session)


def test_create_builds_initial_record(make_student, catalog):
    student = make_student()
    assert student.id is not None
    assert student.admission_type == models.AdmissionType.REGULAR
    assert student.semester_id == catalog.semesters[1]
    assert student.subject_ids == catalog.subjects[("cs", 1)]
    assert len(student.semester_records) == 1
    record = student.semester_records[0]
    assert record.semester_id == catalog.semesters[1]
    assert [s.subject_id for s in record.subjects] == catalog.subjects[("cs", 1)]
    assert all(s.status == models.SubjectStatus.PENDING and s.marks == 0 for s in record.subjects)
    assert student.backlogs == []


@pytest.mark.parametrize("missing", ["first_name", "email", "mobile_number", "gender", "stream",
                                     "department", "subjects", "semester", "admission_type"])
def test_create_requires_fields(directory, student_fields, missing):
    fields = student_fields()
    fields[missing] = None
    with pytest.raises(ValidationError) as exc:
        directory.create(fields)
    assert missing in str(exc.value)


@pytest.mark.parametrize("override", [
    {"admission_type": "Evening"},
    {"gender": "Unknown"},
    {"mobile_number": "12345"},
    {"email": "not-an-email"},
    {"subjects": []},
])
def test_create_rejects_malformed_fields(directory, student_fields, override):
    with pytest.raises(ValidationError):
        directory.create(student_fields(**override))


def test_create_rejects_subjects_outside_department(directory, student_fields, catalog):
    fields = student_fields(subjects=catalog.subjects[("cs", 1)] + catalog.subjects[("ee", 1)])
    with pytest.raises(InvalidSubjects):
        directory.create(fields)
    assert directory.list() == []


def test_create_rejects_subjects_from_other_semester(directory, student_fields, catalog):
    with pytest.raises(InvalidSubjects):
        directory.create(student_fields(subjects=catalog.subjects[("cs", 2)]))


def test_create_rejects_dangling_references(directory, student_fields, catalog):
    with pytest.raises(ReferenceNotFound):
        directory.create(student_fields(semester=1, stream=9999))
    with pytest.raises(ReferenceNotFound):
        directory.create(student_fields(semester=1, department=9999))


def test_create_rejects_department_from_other_stream(directory, student_fields, catalog):
    with pytest.raises(ValidationError):
        directory.create(student_fields(stream=catalog.arts))


def test_get_and_list(directory, make_student):
    regular = make_student()
    lateral = make_student(admission_type="Lateral Entry")
    assert directory.get(regular.id).student_id == regular.student_id
    assert directory.get_by_student_id(lateral.student_id).id == lateral.id
    assert [s.id for s in directory.list()] == [regular.id, lateral.id]
    assert [s.id for s in directory.list("Lateral Entry")] == [lateral.id]
    with pytest.raises(ValidationError):
        directory.list("Evening")
    with pytest.raises(NotFound):
        directory.get_by_student_id("NOPE000")


def test_update_profile_fields(directory, make_student):
    student = make_student()
    updated = directory.update(student.id, {"section": "B", "remark": "transfer", "admission_type": "Direct Second Year"})
    assert updated.section == "B"
    assert updated.remark == "transfer"
    assert updated.admission_type == models.AdmissionType.DIRECT_SECOND_YEAR
    assert updated.student_id == student.student_id


def test_update_cannot_change_department_or_stream(directory, make_student, catalog):
    student = make_student()
    with pytest.raises(ValidationError):
        directory.update(student.id, {"department": catalog.ee})
    with pytest.raises(ValidationError):
        directory.update(student.id, {"student_id": "OTHER001"})
    assert directory.update(student.id, {"department": catalog.cs}).department_id == catalog.cs


def test_update_replaces_ledger_and_recomputes_pending(directory, make_student, catalog):
    student = make_student()
    s1 = catalog.subjects[("cs", 1)]
    s2 = catalog.subjects[("cs", 2)]
    records = [
        {"semester": catalog.semesters[1], "subjects": [
            {"subject": s1[0], "status": "Passed"},
            {"subject": s1[1], "status": "Pending"},
        ]},
        {"semester": catalog.semesters[2], "subjects": [
            {"subject": s2[0], "status": "Failed"},
            {"subject": s2[1]},
        ]},
    ]

    updated = directory.update(student.id, {"semester_records": records})

    assert [r.semester_id for r in updated.semester_records] == [catalog.semesters[1], catalog.semesters[2]]
    first, last = updated.semester_records
    assert [(s.status, s.marks) for s in first.subjects] == [
        (models.SubjectStatus.PASSED, 50), (models.SubjectStatus.PENDING, 0)]
    assert [(s.status, s.marks) for s in last.subjects] == [
        (models.SubjectStatus.FAILED, 0), (models.SubjectStatus.PENDING, 0)]
    # only the last record feeds the pending list
    assert updated.subject_ids == [s2[1]]


def test_update_keeps_explicit_marks(directory, make_student, catalog):
    student = make_student()
    subject = catalog.subjects[("cs", 1)][0]
    records = [{"semester": catalog.semesters[1], "subjects": [{"subject": subject, "status": "Passed", "marks": 78}]}]
    updated = directory.update(student.id, {"semester_records": records})
    assert updated.semester_records[0].subjects[0].marks == 78
    assert updated.subject_ids == []


@pytest.mark.parametrize("records, error", [
    ([], ValidationError),
    ([{"subjects": []}], ValidationError),
    ([{"semester": 9999, "subjects": []}], ReferenceNotFound),
])
def test_update_rejects_bad_ledger(directory, make_student, records, error):
    student = make_student()
    with pytest.raises(error):
        directory.update(student.id, {"semester_records": records})
    assert len(directory.get(student.id).semester_records) == 1


def test_update_rejects_foreign_subject_and_bad_status(directory, make_student, catalog):
    student = make_student()
    foreign = [{"semester": catalog.semesters[1], "subjects": [{"subject": catalog.subjects[("ee", 1)][0]}]}]
    with pytest.raises(InvalidSubjects):
        directory.update(student.id, {"semester_records": foreign})
    bad = [{"semester": catalog.semesters[1], "subjects": [{"subject": catalog.subjects[("cs", 1)][0], "status": "Done"}]}]
    with pytest.raises(InvalidStatus):
        directory.update(student.id, {"semester_records": bad})


def test_delete(directory, make_student):
    student = make_student()
    directory.delete(student.id)
    with pytest.raises(NotFound):
        directory.get(student.id)
    with pytest.raises(NotFound):
        directory.delete(student.id)
