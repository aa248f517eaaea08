import os

os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from registrar import services
from registrar.database import build_engine, create_db_and_tables, get_session
from registrar.main import app


@pytest.fixture
def engine():
    """A fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client(engine):
    def _session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(session):
    """Two streams, three departments and semesters 1..8.

    Semesters are created from 8 down to 1 so their ids run opposite to
    their numbers. Each semester carries two "Comp Sci" subjects and one
    Electronics subject.
    """
    svc = services.CatalogService(session)
    science = svc.create_stream("B Sc")
    arts = svc.create_stream("Arts")
    cs = svc.create_department("Comp Sci", science.id)
    ee = svc.create_department("Electronics", science.id)
    history = svc.create_department("History", arts.id)
    subjects = {}
    semesters = {}
    for n in range(8, 0, -1):
        cs_ids = [svc.create_subject(f"CS {n}{c}", cs.id).id for c in "AB"]
        ee_ids = [svc.create_subject(f"EE {n}A", ee.id).id]
        subjects[("cs", n)] = cs_ids
        subjects[("ee", n)] = ee_ids
        semesters[n] = svc.create_semester(n, cs_ids + ee_ids).id
    return SimpleNamespace(
        science=science.id, arts=arts.id,
        cs=cs.id, ee=ee.id, history=history.id,
        subjects=subjects, semesters=semesters,
    )


@pytest.fixture
def student_fields(catalog):
    """Build admission fields for a Comp Sci student in `semester`."""
    def _fields(semester=1, dept="cs", **overrides):
        fields = {
            "first_name": "Asha",
            "last_name": "Rao",
            "email": "asha@example.com",
            "mobile_number": "9876543210",
            "gender": "Female",
            "admission_type": "Regular",
            "stream": catalog.science,
            "department": catalog.cs if dept == "cs" else catalog.ee,
            "semester": catalog.semesters[semester],
            "subjects": list(catalog.subjects[(dept, semester)]),
        }
        fields.update(overrides)
        return fields
    return _fields


@pytest.fixture
def make_student(session, student_fields):
    def _make(semester=1, dept="cs", **overrides):
        return services.StudentDirectory(session).create(student_fields(semester, dept, **overrides))
    return _make
