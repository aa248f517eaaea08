import pytest

from registrar import models, services
from registrar.errors import (
    InvalidStatus,
    InvalidSubjects,
    NoOp,
    NotFound,
    ReferenceNotFound,
    TerminalSemester,
    ValidationError,
)


@pytest.fixture
def ledger(session):
    return services.SemesterLedger(session)


def _numbers(student):
    return [r.semester.number for r in student.semester_records]


def test_promote_from_seventh_to_final_semester(ledger, make_student, catalog):
    student = make_student(semester=7)
    first = student.semester_records[0]
    first_subjects = [(s.subject_id, s.status) for s in first.subjects]

    student = ledger.promote(student)

    assert student.semester.number == 8
    assert student.semester_id == catalog.semesters[8]
    assert _numbers(student) == [7, 8]
    assert [(s.subject_id, s.status) for s in student.semester_records[0].subjects] == first_subjects
    new = student.semester_records[-1]
    assert [s.subject_id for s in new.subjects] == catalog.subjects[("cs", 8)]
    assert all(s.status == models.SubjectStatus.PENDING and s.marks == 0 for s in new.subjects)
    assert new.is_backlog is False


def test_promote_filters_subjects_by_department(ledger, make_student, catalog):
    student = ledger.promote(make_student(dept="ee"))
    assert [s.subject_id for s in student.semester_records[-1].subjects] == catalog.subjects[("ee", 2)]


def test_promote_past_final_semester_fails(ledger, make_student):
    student = make_student(semester=8)
    with pytest.raises(TerminalSemester):
        ledger.promote(student)
    assert len(student.semester_records) == 1
    assert student.semester.number == 8


def test_promote_fails_when_next_semester_is_missing(session, make_student):
    student = make_student(semester=8)
    with pytest.raises(NotFound):
        services.SemesterLedger(session, max_semester=10).promote(student)


def test_edit_to_current_semester_is_noop(ledger, make_student, catalog):
    student = make_student(semester=3)
    with pytest.raises(NoOp):
        ledger.edit_semester(student, catalog.semesters[3])
    assert _numbers(student) == [3]


def test_edit_to_unknown_semester_fails(ledger, make_student):
    with pytest.raises(ReferenceNotFound):
        ledger.edit_semester(make_student(), 9999)


def test_edit_forward_appends_record(ledger, make_student, catalog):
    student = ledger.edit_semester(make_student(), catalog.semesters[3])
    assert student.semester.number == 3
    assert _numbers(student) == [1, 3]


def test_demotion_prunes_by_semester_number(ledger, make_student, catalog):
    student = make_student()
    student = ledger.promote(student)
    student = ledger.promote(student)
    assert _numbers(student) == [1, 2, 3]

    student = ledger.edit_semester(student, catalog.semesters[2])

    assert student.semester.number == 2
    assert _numbers(student) == [1, 2]


def test_edit_to_semester_already_in_ledger_does_not_duplicate(ledger, make_student, catalog):
    student = ledger.promote(ledger.promote(make_student()))
    student = ledger.edit_semester(student, catalog.semesters[1])
    assert _numbers(student) == [1]


def test_add_backlog_twice_keeps_one_entry(ledger, make_student, catalog):
    student = make_student(semester=2)
    subject = catalog.subjects[("cs", 1)][0]
    student = ledger.add_backlog(student, catalog.semesters[1], [subject])
    student = ledger.add_backlog(student, catalog.semesters[1], [subject, subject])
    assert len(student.backlogs) == 1
    backlog = student.backlogs[0]
    assert (backlog.subject_id, backlog.semester_id) == (subject, catalog.semesters[1])
    assert backlog.status == models.BacklogStatus.PENDING


def test_add_backlog_with_foreign_subject_changes_nothing(ledger, make_student, catalog):
    student = make_student(semester=2)
    foreign = catalog.subjects[("cs", 2)][0]
    with pytest.raises(InvalidSubjects):
        ledger.add_backlog(student, catalog.semesters[1], [catalog.subjects[("cs", 1)][0], foreign])
    assert student.backlogs == []


def test_add_backlog_requires_subjects(ledger, make_student, catalog):
    with pytest.raises(ValidationError):
        ledger.add_backlog(make_student(), catalog.semesters[1], [])


def test_update_backlog_status(ledger, make_student, catalog):
    student = ledger.add_backlog(make_student(semester=2), catalog.semesters[1], catalog.subjects[("cs", 1)])
    backlog_id = student.backlogs[1].id

    student = ledger.update_backlog_status(student, backlog_id, "Cleared")

    statuses = {b.id: b.status for b in student.backlogs}
    assert statuses[backlog_id] == models.BacklogStatus.CLEARED
    assert list(statuses.values()).count(models.BacklogStatus.PENDING) == 1


def test_update_backlog_status_rejects_unknown_status_and_id(ledger, make_student, catalog):
    student = ledger.add_backlog(make_student(semester=2), catalog.semesters[1], catalog.subjects[("cs", 1)][:1])
    with pytest.raises(InvalidStatus):
        ledger.update_backlog_status(student, student.backlogs[0].id, "Passed")
    with pytest.raises(NotFound):
        ledger.update_backlog_status(student, 9999, "Cleared")
    assert student.backlogs[0].status == models.BacklogStatus.PENDING


def test_record_result_scores_and_refreshes_pending(ledger, make_student, catalog):
    student = make_student()
    passed, pending = catalog.subjects[("cs", 1)]

    student = ledger.record_result(student, catalog.semesters[1], passed, "Passed")

    entry = student.semester_records[0].subjects[0]
    assert entry.status == models.SubjectStatus.PASSED
    assert entry.marks == 50
    assert student.subject_ids == [pending]


def test_record_result_never_returns_to_pending(ledger, make_student, catalog):
    student = make_student()
    subject = catalog.subjects[("cs", 1)][0]
    student = ledger.record_result(student, catalog.semesters[1], subject, "Failed", marks=20)
    with pytest.raises(InvalidStatus):
        ledger.record_result(student, catalog.semesters[1], subject, "Pending")
    student = ledger.record_result(student, catalog.semesters[1], subject, "Passed", marks=64)
    assert student.semester_records[0].subjects[0].marks == 64


def test_record_result_unknown_subject(ledger, make_student, catalog):
    with pytest.raises(NotFound):
        ledger.record_result(make_student(), catalog.semesters[1], catalog.subjects[("ee", 1)][0], "Passed")
