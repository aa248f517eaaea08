"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (students,
counters, reference data, faculty). Repositories return SQLModel
objects and perform commits/refreshes where appropriate.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Type
from sqlmodel import Session, SQLModel, select
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from . import models


class StudentRepository:
    """Persistence for the `Student` aggregate and its owned collections."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, student: models.Student) -> models.Student:
        """Insert a new student and commit the surrounding transaction.

        Anything already executed on the session (the counter increment)
        commits or rolls back together with the insert.
        """
        self.session.add(student)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(student)
        return student

    def save(self, student: models.Student) -> models.Student:
        """Commit pending changes on `student` and bump `updated_at`."""
        student.updated_at = datetime.now(timezone.utc)
        self.session.add(student)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(student)
        return student

    def get(self, pk: int) -> Optional[models.Student]:
        """Get a `Student` by primary key."""
        return self.session.get(models.Student, pk)

    def get_by_student_id(self, student_id: str) -> Optional[models.Student]:
        """Return a student by its assigned identifier or `None`."""
        stmt = select(models.Student).where(models.Student.student_id == student_id)
        return self.session.exec(stmt).first()

    def list(self, admission_type: Optional[models.AdmissionType] = None) -> List[models.Student]:
        """Return all students, optionally restricted to one admission type."""
        stmt = select(models.Student).order_by(models.Student.id)
        if admission_type is not None:
            stmt = stmt.where(models.Student.admission_type == admission_type)
        return self.session.exec(stmt).all()

    def delete(self, student: models.Student) -> None:
        self.session.delete(student)
        self.session.commit()


class CounterRepository:
    """Atomic per-key counters backing student identifiers."""
    def __init__(self, session: Session):
        self.session = session

    def increment(self, key: str) -> int:
        """Increment the counter for `key` and return the new value.

        Implemented as a single `INSERT ... ON CONFLICT DO UPDATE ...
        RETURNING` statement so concurrent creations never read the same
        value. The statement runs in the session's open transaction and
        is not committed here.
        """
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == 'postgresql' else sqlite_insert
        table = models.StudentCounter.__table__
        stmt = (
            insert(table)
            .values(key=key, count=1)
            .on_conflict_do_update(index_elements=[table.c['key']], set_={'count': table.c['count'] + 1})
            .returning(table.c['count'])
        )
        return self.session.exec(stmt).scalar_one()

    def current(self, key: str) -> int:
        """Return the last issued value for `key` (0 if never used)."""
        stmt = select(models.StudentCounter.count).where(models.StudentCounter.key == key)
        return self.session.exec(stmt).first() or 0


class ReferenceRepository:
    """Read-only lookups of streams, departments, subjects and semesters."""
    def __init__(self, session: Session):
        self.session = session

    def get_stream(self, stream_id) -> Optional[models.Stream]:
        return self.session.get(models.Stream, stream_id)

    def get_department(self, department_id) -> Optional[models.Department]:
        return self.session.get(models.Department, department_id)

    def get_subject(self, subject_id) -> Optional[models.Subject]:
        return self.session.get(models.Subject, subject_id)

    def get_semester(self, semester_id) -> Optional[models.Semester]:
        """Fetch a semester; its ordered `subjects` load on access."""
        return self.session.get(models.Semester, semester_id)

    def get_semester_by_number(self, number: int) -> Optional[models.Semester]:
        stmt = select(models.Semester).where(models.Semester.number == number)
        return self.session.exec(stmt).first()

    def get_subjects(self, subject_ids: Iterable[int]) -> List[models.Subject]:
        ids = list(subject_ids)
        if not ids:
            return []
        stmt = select(models.Subject).where(models.Subject.id.in_(ids))
        return self.session.exec(stmt).all()

    def list(self, model: Type[SQLModel], **filters) -> List[SQLModel]:
        """List rows of a reference `model`, filtered by column equality."""
        stmt = select(model).order_by(model.id)
        for column, value in filters.items():
            if value is not None:
                stmt = stmt.where(getattr(model, column) == value)
        return self.session.exec(stmt).all()

    def count_where(self, model: Type[SQLModel], column: str, value) -> int:
        """Count rows of `model` whose `column` equals `value`."""
        stmt = select(func.count()).select_from(model).where(getattr(model, column) == value)
        return self.session.exec(stmt).one()


class CatalogRepository:
    """Write operations on reference data."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, entity: SQLModel) -> SQLModel:
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def save(self, entity: SQLModel) -> SQLModel:
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def delete(self, entity: SQLModel) -> None:
        self.session.delete(entity)
        self.session.commit()


class FacultyRepository:
    """CRUD operations for `Faculty` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, faculty: models.Faculty) -> models.Faculty:
        self.session.add(faculty)
        self.session.commit()
        self.session.refresh(faculty)
        return faculty

    def get(self, faculty_id: int) -> Optional[models.Faculty]:
        return self.session.get(models.Faculty, faculty_id)

    def get_by_username(self, username: str) -> Optional[models.Faculty]:
        stmt = select(models.Faculty).where(models.Faculty.username == username)
        return self.session.exec(stmt).first()

    def list(self, roles: Optional[List[models.FacultyRole]] = None, exclude: bool = False) -> List[models.Faculty]:
        """List faculty whose role is in `roles` (or not in it when `exclude`)."""
        stmt = select(models.Faculty).order_by(models.Faculty.id)
        if roles:
            cond = models.Faculty.role.in_(roles)
            stmt = stmt.where(~cond if exclude else cond)
        return self.session.exec(stmt).all()

    def save(self, faculty: models.Faculty) -> models.Faculty:
        self.session.add(faculty)
        self.session.commit()
        self.session.refresh(faculty)
        return faculty

    def delete(self, faculty: models.Faculty) -> None:
        self.session.delete(faculty)
        self.session.commit()
