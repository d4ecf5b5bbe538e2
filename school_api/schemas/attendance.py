import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from school_api.core.dates import to_school_date
from school_api.models.attendance import AttendanceStatus
from school_api.schemas.base import CamelModel


class StudentAttendanceIn(CamelModel):
    student_id: str = Field(..., min_length=1)
    status: AttendanceStatus


class MarkAttendanceRequest(CamelModel):
    section_id: str = Field(..., min_length=1)
    date: datetime.date
    attendances: List[StudentAttendanceIn] = Field(..., min_length=1)

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_day(cls, v):
        return to_school_date(v)

    @field_validator("attendances")
    @classmethod
    def _unique_students(cls, v: List[StudentAttendanceIn]):
        ids = [a.student_id for a in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each student may appear only once per submission")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "sectionId": "SEC1",
                "date": "2024-01-10",
                "attendances": [
                    {"studentId": "S1", "status": "PRESENT"},
                    {"studentId": "S2", "status": "ABSENT"},
                ],
            }
        }
    }


class MarkAttendanceResponse(CamelModel):
    message: str
    date: datetime.date
    class_name: str
    section: str
    count: int


# ── Read models ───────────────────────────────────────────────────────
class ClassRef(CamelModel):
    id: str
    name: str


class SectionRef(CamelModel):
    id: str
    name: str
    school_class: ClassRef = Field(..., alias="class")


class StudentBrief(CamelModel):
    id: str
    name: str
    roll_no: Optional[str] = None
    class_name: Optional[str] = None
    section_name: Optional[str] = None


class StudentStatusOut(CamelModel):
    id: str
    name: str
    roll_no: Optional[str] = None
    status: Optional[AttendanceStatus] = None


class SectionDaySummary(CamelModel):
    total_students: int
    present: int
    absent: int
    late: int
    excused: int
    not_marked: int
    is_marked: bool


class SectionDayAttendanceOut(CamelModel):
    date: datetime.date
    section: SectionRef
    students: List[StudentStatusOut]
    summary: SectionDaySummary


class AttendanceEntryOut(CamelModel):
    id: str
    student_id: str
    date: datetime.date
    status: AttendanceStatus
    student: StudentBrief


class StudentAttendanceHistoryOut(CamelModel):
    student: StudentBrief
    attendance: List[AttendanceEntryOut]
