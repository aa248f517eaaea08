"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable. Clients send the camelCase keys
of the original student documents (`firstName`, `semesterRecords`);
`model_dump()` hands the services the snake_case attribute names.
Domain rules (required fields, enums, legal subjects) are checked by
the services so they are reported the same way from every caller.
"""

from datetime import datetime
from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Optional


def _unwrap_id(value):
    """Accept either an id or a populated object carrying `id`.

    Lets clients send back a ledger exactly as `GET` returned it.
    """
    if isinstance(value, dict):
        return value.get("id", value.get("_id"))
    return value


RefId = Annotated[Optional[int], BeforeValidator(_unwrap_id)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudentIn(CamelModel):
    """Admission payload; ids refer to stream, department, semester and subjects."""
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    father_name: Optional[str] = None
    unicode_father_name: Optional[str] = None
    mother_name: Optional[str] = None
    unicode_mother_name: Optional[str] = None
    unicode_name: Optional[str] = None
    enrollment_number: Optional[str] = None
    gender: Optional[str] = None
    mobile_number: Optional[str] = None
    caste_category: Optional[str] = None
    sub_caste: Optional[str] = None
    email: Optional[str] = None
    section: Optional[str] = None
    admission_type: Optional[str] = None
    admission_through: Optional[str] = None
    remark: Optional[str] = None
    admission_date: Optional[datetime] = None
    stream: RefId = None
    department: RefId = None
    semester: RefId = None
    subjects: Optional[List[int]] = None


class SubjectRecordIn(CamelModel):
    subject: RefId = None
    status: Optional[str] = None
    marks: Optional[float] = None


class SemesterRecordIn(CamelModel):
    semester: RefId = None
    subjects: List[SubjectRecordIn] = []
    is_backlog: bool = False


class StudentUpdate(StudentIn):
    """Partial update; `semesterRecords`, when sent, replaces the whole ledger."""
    student_id: Optional[str] = None
    semester_records: Optional[List[SemesterRecordIn]] = None


class EditSemesterIn(CamelModel):
    semester_id: int


class AddBacklogIn(CamelModel):
    semester_id: int
    subject_ids: List[int] = []


class BacklogStatusIn(CamelModel):
    status: str


class RecordResultIn(CamelModel):
    """Grading update for one subject of one semester record."""
    semester_id: int
    subject_id: int
    status: str
    marks: Optional[float] = None


class StreamIn(CamelModel):
    name: str


class DepartmentIn(CamelModel):
    name: str
    stream: int


class SubjectIn(CamelModel):
    name: str
    department: int


class SemesterIn(CamelModel):
    number: int
    subjects: List[int] = []


class SemesterSubjectsIn(CamelModel):
    subjects: List[int]


class FacultyIn(CamelModel):
    name: str
    role: str
    username: str
    password: str
    employment_status: Optional[str] = None
    department: Optional[str] = None


class FacultyStatusIn(CamelModel):
    employment_status: str
