# school_api/controllers/attendance_controller.py
from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_api.core.access import RequestUser
from school_api.core.dates import school_today, to_school_date
from school_api.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from school_api.models.attendance import Attendance, AttendanceStatus, SectionAttendanceRecord
from school_api.models.school import Section
from school_api.models.student import ParentStudent, Student
from school_api.models.teacher import Teacher, TeacherAssignment
from school_api.models.user import Role
from school_api.schemas.attendance import (
    AttendanceEntryOut,
    ClassRef,
    MarkAttendanceRequest,
    MarkAttendanceResponse,
    SectionDayAttendanceOut,
    SectionDaySummary,
    SectionRef,
    StudentAttendanceHistoryOut,
    StudentBrief,
    StudentStatusOut,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────

def parse_day(value: Optional[str], field: str = "date") -> Optional[datetime.date]:
    if value is None or not str(value).strip():
        return None
    try:
        return to_school_date(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}. Use YYYY-MM-DD")


def _date_range(start: Optional[str], end: Optional[str]) -> tuple[Optional[datetime.date], Optional[datetime.date]]:
    start_day = parse_day(start, "startDate")
    end_day = parse_day(end, "endDate")
    if start_day and end_day and start_day > end_day:
        raise ValidationError("startDate must be on or before endDate")
    return start_day, end_day


def _student_brief(s: Student) -> StudentBrief:
    return StudentBrief(
        id=s.id,
        name=s.name,
        roll_no=s.roll_no,
        class_name=s.school_class.name if s.school_class else None,
        section_name=s.section.name if s.section else None,
    )


def _entry_out(a: Attendance) -> AttendanceEntryOut:
    return AttendanceEntryOut(
        id=a.id,
        student_id=a.student_id,
        date=a.date,
        status=a.status,
        student=_student_brief(a.student),
    )


def _violates(exc: IntegrityError, *markers: str) -> bool:
    """True if the driver message names one of `markers` (constraint name or SQLite column list)."""
    message = str(exc.orig)
    return any(m in message for m in markers)


async def _section_in_school(db: AsyncSession, school_id: str, section_id: str) -> Section | None:
    q = await db.execute(
        select(Section).where(Section.id == section_id, Section.school_id == school_id)
    )
    return q.scalar_one_or_none()


async def _ensure_teacher_assigned(db: AsyncSession, user_id: str, section_id: str) -> None:
    q = await db.execute(select(Teacher.id).where(Teacher.user_id == user_id))
    teacher_id = q.scalar_one_or_none()
    if not teacher_id:
        raise AuthorizationError("Teacher profile not found")

    q = await db.execute(
        select(TeacherAssignment.id).where(
            TeacherAssignment.teacher_id == teacher_id,
            TeacherAssignment.section_id == section_id,
        )
    )
    if not q.scalar_one_or_none():
        raise AuthorizationError(
            "You are not assigned to this section. Please contact your administrator."
        )


# ─────────────────────────────────────────────────────────────
# MARK
# ─────────────────────────────────────────────────────────────

async def mark_attendance(
    db: AsyncSession,
    school_id: str,
    user_id: str,
    user_role: Role,
    payload: MarkAttendanceRequest,
    *,
    today: Optional[datetime.date] = None,
) -> MarkAttendanceResponse:
    """
    Records one submission for (section, day), all or nothing.

    Order inside the transaction:
      1. section must belong to the school
      2. teachers must be assigned to the section (school admins skip this)
      3. INSERT the section/day tracking row; its unique constraint is the
         only "already marked" check, so concurrent duplicates lose here
      4. every student must belong to this school and section
      5. bulk insert the entries
    """
    attendance_date = payload.date
    if attendance_date > (today or school_today()):
        raise ValidationError("Cannot mark attendance for future dates")

    try:
        section = await _section_in_school(db, school_id, payload.section_id)
        if not section:
            raise ValidationError("Section not found in this school")

        if user_role == Role.TEACHER:
            await _ensure_teacher_assigned(db, user_id, section.id)

        db.add(
            SectionAttendanceRecord(
                section_id=section.id,
                school_id=school_id,
                date=attendance_date,
                marked_by=user_id,
            )
        )
        try:
            await db.flush()
        except IntegrityError as exc:
            if not _violates(exc, "uq_section_attendance_section_date", "section_attendance_records.section_id"):
                raise
            logger.info(
                "Duplicate attendance submission for section %s on %s rejected",
                payload.section_id,
                attendance_date,
            )
            raise ConflictError("Attendance already marked for this section on this date")

        student_ids = [a.student_id for a in payload.attendances]
        q = await db.execute(
            select(Student.id).where(
                Student.id.in_(student_ids),
                Student.school_id == school_id,
                Student.section_id == section.id,
            )
        )
        if len(q.scalars().all()) != len(student_ids):
            raise ValidationError("One or more students not found in this section")

        db.add_all(
            [
                Attendance(
                    student_id=a.student_id,
                    school_id=school_id,
                    date=attendance_date,
                    status=a.status,
                )
                for a in payload.attendances
            ]
        )
        try:
            await db.flush()
        except IntegrityError as exc:
            if not _violates(exc, "uq_attendance_student_date", "attendance.student_id"):
                raise
            # the section/day row is new, so the clash is a student counted under another section
            raise ConflictError("Attendance already marked for one or more students on this date")

        class_name = section.school_class.name
        section_name = section.name
        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Attendance marked: section=%s date=%s count=%d by=%s",
        payload.section_id,
        attendance_date,
        len(payload.attendances),
        user_id,
    )
    return MarkAttendanceResponse(
        message="Attendance marked successfully",
        date=attendance_date,
        class_name=class_name,
        section=section_name,
        count=len(payload.attendances),
    )


# ─────────────────────────────────────────────────────────────
# READ MODELS
# ─────────────────────────────────────────────────────────────

async def get_attendance_by_section_and_date(
    db: AsyncSession,
    school_id: str,
    section_id: str,
    day: str,
) -> SectionDayAttendanceOut:
    """Roster of the section with each student's status for `day` (None if not marked)."""
    attendance_date = parse_day(day)
    if attendance_date is None:
        raise ValidationError("date is required")

    section = await _section_in_school(db, school_id, section_id)
    if not section:
        raise NotFoundError("Section not found in this school")

    q = await db.execute(
        select(Student)
        .where(Student.section_id == section_id, Student.school_id == school_id)
        .order_by(Student.roll_no.asc(), Student.name.asc())
    )
    students = list(q.scalars().all())

    q = await db.execute(
        select(Attendance)
        .join(Student, Attendance.student_id == Student.id)
        .where(
            Attendance.date == attendance_date,
            Attendance.school_id == school_id,
            Student.section_id == section_id,
        )
    )
    existing = list(q.scalars().all())
    status_by_student = {a.student_id: a.status for a in existing}

    q = await db.execute(
        select(SectionAttendanceRecord.id).where(
            SectionAttendanceRecord.section_id == section_id,
            SectionAttendanceRecord.school_id == school_id,
            SectionAttendanceRecord.date == attendance_date,
        )
    )
    is_marked = q.scalar_one_or_none() is not None

    def _count(status: AttendanceStatus) -> int:
        return sum(1 for a in existing if a.status == status)

    return SectionDayAttendanceOut(
        date=attendance_date,
        section=SectionRef(
            id=section.id,
            name=section.name,
            school_class=ClassRef(id=section.school_class.id, name=section.school_class.name),
        ),
        students=[
            StudentStatusOut(
                id=s.id,
                name=s.name,
                roll_no=s.roll_no,
                status=status_by_student.get(s.id),
            )
            for s in students
        ],
        summary=SectionDaySummary(
            total_students=len(students),
            present=_count(AttendanceStatus.PRESENT),
            absent=_count(AttendanceStatus.ABSENT),
            late=_count(AttendanceStatus.LATE),
            excused=_count(AttendanceStatus.EXCUSED),
            not_marked=len(students) - len(existing),
            is_marked=is_marked,
        ),
    )


async def get_attendance_by_section(
    db: AsyncSession,
    school_id: str,
    section_id: str,
    day: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> list[AttendanceEntryOut]:
    section = await _section_in_school(db, school_id, section_id)
    if not section:
        raise NotFoundError("Section not found in this school")

    stmt = (
        select(Attendance)
        .join(Student, Attendance.student_id == Student.id)
        .where(Attendance.school_id == school_id, Student.section_id == section_id)
    )

    # an exact date wins over a range
    exact = parse_day(day)
    if exact:
        stmt = stmt.where(Attendance.date == exact)
    else:
        start_day, end_day = _date_range(start_date, end_date)
        if start_day:
            stmt = stmt.where(Attendance.date >= start_day)
        if end_day:
            stmt = stmt.where(Attendance.date <= end_day)

    stmt = stmt.order_by(Attendance.date.desc(), Student.roll_no.asc(), Student.name.asc())
    q = await db.execute(stmt)
    return [_entry_out(a) for a in q.scalars().all()]


async def get_attendance_by_student(
    db: AsyncSession,
    user: RequestUser,
    school_id: str,
    student_id: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> StudentAttendanceHistoryOut:
    q = await db.execute(
        select(Student).where(Student.id == student_id, Student.school_id == school_id)
    )
    student = q.scalar_one_or_none()
    if not student:
        raise NotFoundError("Student not found in this school")

    # parents only see their own children
    if user.role == Role.PARENT:
        q = await db.execute(
            select(ParentStudent.id).where(
                ParentStudent.parent_id == user.sub,
                ParentStudent.student_id == student_id,
            )
        )
        if not q.scalar_one_or_none():
            raise AuthorizationError("You can only view attendance of your own children")

    start_day, end_day = _date_range(start_date, end_date)
    stmt = select(Attendance).where(
        Attendance.school_id == school_id,
        Attendance.student_id == student_id,
    )
    if start_day:
        stmt = stmt.where(Attendance.date >= start_day)
    if end_day:
        stmt = stmt.where(Attendance.date <= end_day)

    q = await db.execute(stmt.order_by(Attendance.date.desc()))
    return StudentAttendanceHistoryOut(
        student=_student_brief(student),
        attendance=[_entry_out(a) for a in q.scalars().all()],
    )


async def get_my_children_attendance(
    db: AsyncSession,
    school_id: str,
    parent_id: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> list[AttendanceEntryOut]:
    start_day, end_day = _date_range(start_date, end_date)

    q = await db.execute(
        select(ParentStudent.student_id)
        .join(Student, ParentStudent.student_id == Student.id)
        .where(ParentStudent.parent_id == parent_id, Student.school_id == school_id)
    )
    student_ids = list(q.scalars().all())
    if not student_ids:
        return []

    stmt = (
        select(Attendance)
        .join(Student, Attendance.student_id == Student.id)
        .where(Attendance.school_id == school_id, Attendance.student_id.in_(student_ids))
    )
    if start_day:
        stmt = stmt.where(Attendance.date >= start_day)
    if end_day:
        stmt = stmt.where(Attendance.date <= end_day)

    q = await db.execute(stmt.order_by(Attendance.date.desc(), Student.name.asc()))
    return [_entry_out(a) for a in q.scalars().all()]
