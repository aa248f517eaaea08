"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the student records backend.
Controllers are intentionally thin: they accept requests, delegate to
services, translate service failures into HTTP errors and shape JSON
responses with the camelCase keys of the student documents.

Endpoints implemented:
- GET/POST /api/students, GET /api/students/{studentId}
- PUT/DELETE /api/students/{id}
- PUT /api/students/promote/{id}
- PUT /api/students/edit-semester/{id}
- POST /api/students/{id}/add-backlog
- PUT /api/students/{id}/update-backlog/{backlogId}
- PUT /api/students/{id}/record-result
- GET /api/students/subjects/{semesterId}/{departmentId}
- CRUD /api/streams, /api/departments, /api/subjects, /api/semesters
- GET/POST /api/faculties, PUT /api/faculties/{id}/status, DELETE /api/faculties/{id}
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic.alias_generators import to_camel
from sqlmodel import Session
from typing import Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .config import settings
from .errors import RegistrarError
from .schemas import (
    AddBacklogIn,
    BacklogStatusIn,
    DepartmentIn,
    EditSemesterIn,
    FacultyIn,
    FacultyStatusIn,
    RecordResultIn,
    SemesterIn,
    SemesterSubjectsIn,
    StreamIn,
    StudentIn,
    StudentUpdate,
    SubjectIn,
)

app = FastAPI(title="Student Records Administration API")
logger = logging.getLogger("registrar.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


def _http_error(e: RegistrarError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def _semester_ref(semester: Optional[models.Semester]):
    if semester is None:
        return None
    return {'id': semester.id, 'number': semester.number}


def _subject_out(subject: models.Subject) -> dict:
    return {'id': subject.id, 'name': subject.name, 'department': subject.department_id}


def _student_out(s: models.Student) -> dict:
    """Shape a student and its ledger for JSON responses."""
    out = {'id': s.id, 'studentId': s.student_id}
    out.update({to_camel(f): getattr(s, f) for f in services.PROFILE_FIELDS})
    out.update({
        'stream': {'id': s.stream.id, 'name': s.stream.name} if s.stream else None,
        'department': {'id': s.department.id, 'name': s.department.name} if s.department else None,
        'semester': _semester_ref(s.semester),
        'subjects': list(s.subject_ids or []),
        'semesterRecords': [
            {
                'id': r.id,
                'semester': _semester_ref(r.semester),
                'isBacklog': r.is_backlog,
                'subjects': [
                    {'id': sr.id, 'subject': sr.subject_id, 'status': sr.status, 'marks': sr.marks}
                    for sr in r.subjects
                ],
            }
            for r in s.semester_records
        ],
        'backlogs': [
            {'id': b.id, 'subject': b.subject_id, 'semester': b.semester_id, 'status': b.status}
            for b in s.backlogs
        ],
        'createdAt': s.created_at,
        'updatedAt': s.updated_at,
    })
    return out


def _faculty_out(f: models.Faculty) -> dict:
    return {
        'id': f.id,
        'name': f.name,
        'role': f.role,
        'employmentStatus': f.employment_status,
        'username': f.username,
        'department': f.department,
    }


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


# --- students ---------------------------------------------------------------

@app.get('/api/students')
def list_students(admissionType: Optional[str] = None, db: Session = Depends(get_session)):
    """List students, optionally filtered by `admissionType`."""
    try:
        students = services.StudentDirectory(db).list(admissionType)
    except RegistrarError as e:
        raise _http_error(e)
    return [_student_out(s) for s in students]


@app.post('/api/students', status_code=201)
def create_student(payload: StudentIn, db: Session = Depends(get_session)):
    """Admit a student.

    The student gets one ledger record for the admission semester with
    every requested subject Pending, and a freshly assigned studentId.
    """
    try:
        student = services.StudentDirectory(db).create(payload.model_dump())
    except RegistrarError as e:
        raise _http_error(e)
    return _student_out(student)


@app.get('/api/students/subjects/{semester_id}/{department_id}')
def subjects_for_semester(semester_id: int, department_id: int, db: Session = Depends(get_session)):
    """Subjects of a semester taught by one department."""
    try:
        subjects = services.CatalogService(db).subjects_for(semester_id, department_id)
    except RegistrarError as e:
        raise _http_error(e)
    return [_subject_out(s) for s in subjects]


@app.get('/api/students/{student_id}')
def get_student(student_id: str, db: Session = Depends(get_session)):
    """Fetch a student by its assigned studentId (e.g. `SCIENCECS001`)."""
    try:
        student = services.StudentDirectory(db).get_by_student_id(student_id)
    except RegistrarError as e:
        raise _http_error(e)
    return _student_out(student)


@app.put('/api/students/promote/{pk}')
def promote_student(pk: int, db: Session = Depends(get_session)):
    directory = services.StudentDirectory(db)
    try:
        student = directory.ledger.promote(directory.get(pk))
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': f'Student promoted to semester {student.semester.number}', 'student': _student_out(student)}


@app.put('/api/students/edit-semester/{pk}')
def edit_student_semester(pk: int, payload: EditSemesterIn, db: Session = Depends(get_session)):
    """Move a student to another semester (forwards or backwards)."""
    directory = services.StudentDirectory(db)
    try:
        student = directory.ledger.edit_semester(directory.get(pk), payload.semester_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {
        'message': f"Student's current semester updated to {student.semester.number}",
        'student': _student_out(student),
    }


@app.put('/api/students/{pk}')
def update_student(pk: int, payload: StudentUpdate, db: Session = Depends(get_session)):
    """Partially update a student.

    Sending `semesterRecords` replaces the whole ledger; clients must
    resend every record, not only the changed one.
    """
    try:
        student = services.StudentDirectory(db).update(pk, payload.model_dump(exclude_unset=True))
    except RegistrarError as e:
        raise _http_error(e)
    return _student_out(student)


@app.delete('/api/students/{pk}')
def delete_student(pk: int, db: Session = Depends(get_session)):
    try:
        services.StudentDirectory(db).delete(pk)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Student deleted successfully'}


@app.post('/api/students/{pk}/add-backlog')
def add_backlog(pk: int, payload: AddBacklogIn, db: Session = Depends(get_session)):
    directory = services.StudentDirectory(db)
    try:
        student = directory.ledger.add_backlog(directory.get(pk), payload.semester_id, payload.subject_ids)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Backlog(s) added', 'student': _student_out(student)}


@app.put('/api/students/{pk}/update-backlog/{backlog_id}')
def update_backlog(pk: int, backlog_id: int, payload: BacklogStatusIn, db: Session = Depends(get_session)):
    directory = services.StudentDirectory(db)
    try:
        student = directory.ledger.update_backlog_status(directory.get(pk), backlog_id, payload.status)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Backlog status updated', 'student': _student_out(student)}


@app.put('/api/students/{pk}/record-result')
def record_result(pk: int, payload: RecordResultIn, db: Session = Depends(get_session)):
    """Score one subject of a semester record as Passed or Failed."""
    directory = services.StudentDirectory(db)
    try:
        student = directory.ledger.record_result(
            directory.get(pk), payload.semester_id, payload.subject_id, payload.status, payload.marks
        )
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Result recorded', 'student': _student_out(student)}


# --- catalog ----------------------------------------------------------------

@app.get('/api/streams')
def list_streams(db: Session = Depends(get_session)):
    return [{'id': s.id, 'name': s.name} for s in services.CatalogService(db).list_streams()]


@app.post('/api/streams', status_code=201)
def create_stream(payload: StreamIn, db: Session = Depends(get_session)):
    try:
        s = services.CatalogService(db).create_stream(payload.name)
    except RegistrarError as e:
        raise _http_error(e)
    return {'id': s.id, 'name': s.name}


@app.get('/api/streams/{stream_id}')
def get_stream(stream_id: int, db: Session = Depends(get_session)):
    try:
        s = services.CatalogService(db).get_stream(stream_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'id': s.id, 'name': s.name}


@app.delete('/api/streams/{stream_id}')
def delete_stream(stream_id: int, db: Session = Depends(get_session)):
    try:
        services.CatalogService(db).delete_stream(stream_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Stream deleted successfully'}


@app.get('/api/departments')
def list_departments(stream: Optional[int] = None, db: Session = Depends(get_session)):
    return [
        {'id': d.id, 'name': d.name, 'stream': d.stream_id}
        for d in services.CatalogService(db).list_departments(stream)
    ]


@app.post('/api/departments', status_code=201)
def create_department(payload: DepartmentIn, db: Session = Depends(get_session)):
    try:
        d = services.CatalogService(db).create_department(payload.name, payload.stream)
    except RegistrarError as e:
        raise _http_error(e)
    return {'id': d.id, 'name': d.name, 'stream': d.stream_id}


@app.get('/api/departments/{department_id}')
def get_department(department_id: int, db: Session = Depends(get_session)):
    try:
        d = services.CatalogService(db).get_department(department_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'id': d.id, 'name': d.name, 'stream': d.stream_id}


@app.delete('/api/departments/{department_id}')
def delete_department(department_id: int, db: Session = Depends(get_session)):
    try:
        services.CatalogService(db).delete_department(department_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Department deleted successfully'}


@app.get('/api/subjects')
def list_subjects(department: Optional[int] = None, db: Session = Depends(get_session)):
    return [_subject_out(s) for s in services.CatalogService(db).list_subjects(department)]


@app.post('/api/subjects', status_code=201)
def create_subject(payload: SubjectIn, db: Session = Depends(get_session)):
    try:
        s = services.CatalogService(db).create_subject(payload.name, payload.department)
    except RegistrarError as e:
        raise _http_error(e)
    return _subject_out(s)


@app.get('/api/subjects/{subject_id}')
def get_subject(subject_id: int, db: Session = Depends(get_session)):
    try:
        s = services.CatalogService(db).get_subject(subject_id)
    except RegistrarError as e:
        raise _http_error(e)
    return _subject_out(s)


@app.delete('/api/subjects/{subject_id}')
def delete_subject(subject_id: int, db: Session = Depends(get_session)):
    try:
        services.CatalogService(db).delete_subject(subject_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Subject deleted successfully'}


def _semester_out(semester: models.Semester) -> dict:
    return {
        'id': semester.id,
        'number': semester.number,
        'subjects': [_subject_out(s) for s in semester.subjects],
    }


@app.get('/api/semesters')
def list_semesters(db: Session = Depends(get_session)):
    return [_semester_out(s) for s in services.CatalogService(db).list_semesters()]


@app.post('/api/semesters', status_code=201)
def create_semester(payload: SemesterIn, db: Session = Depends(get_session)):
    try:
        s = services.CatalogService(db).create_semester(payload.number, payload.subjects)
    except RegistrarError as e:
        raise _http_error(e)
    return _semester_out(s)


@app.get('/api/semesters/{semester_id}')
def get_semester(semester_id: int, db: Session = Depends(get_session)):
    try:
        s = services.CatalogService(db).get_semester(semester_id)
    except RegistrarError as e:
        raise _http_error(e)
    return _semester_out(s)


@app.put('/api/semesters/{semester_id}/subjects')
def set_semester_subjects(semester_id: int, payload: SemesterSubjectsIn, db: Session = Depends(get_session)):
    """Replace the ordered subject list of a semester."""
    try:
        s = services.CatalogService(db).set_semester_subjects(semester_id, payload.subjects)
    except RegistrarError as e:
        raise _http_error(e)
    return _semester_out(s)


@app.delete('/api/semesters/{semester_id}')
def delete_semester(semester_id: int, db: Session = Depends(get_session)):
    try:
        services.CatalogService(db).delete_semester(semester_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Semester deleted successfully'}


# --- faculty ----------------------------------------------------------------

@app.get('/api/faculties')
def list_faculty(role: Optional[str] = None, db: Session = Depends(get_session)):
    """List faculty; `role` may be `All`, `Non-Teaching` or a concrete role."""
    try:
        faculty = services.FacultyService(db).list(role)
    except RegistrarError as e:
        raise _http_error(e)
    return [_faculty_out(f) for f in faculty]


@app.post('/api/faculties', status_code=201)
def create_faculty(payload: FacultyIn, db: Session = Depends(get_session)):
    """Create a faculty member. The password is stored hashed and never returned."""
    try:
        f = services.FacultyService(db).create(
            payload.name, payload.role, payload.username, payload.password,
            employment_status=payload.employment_status, department=payload.department,
        )
    except RegistrarError as e:
        raise _http_error(e)
    return _faculty_out(f)


@app.put('/api/faculties/{faculty_id}/status')
def update_faculty_status(faculty_id: int, payload: FacultyStatusIn, db: Session = Depends(get_session)):
    try:
        f = services.FacultyService(db).update_status(faculty_id, payload.employment_status)
    except RegistrarError as e:
        raise _http_error(e)
    return _faculty_out(f)


@app.delete('/api/faculties/{faculty_id}')
def delete_faculty(faculty_id: int, db: Session = Depends(get_session)):
    try:
        services.FacultyService(db).delete(faculty_id)
    except RegistrarError as e:
        raise _http_error(e)
    return {'message': 'Faculty deleted successfully.'}
