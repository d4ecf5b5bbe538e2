from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from school_api.controllers import attendance_controller
from school_api.core.access import RequestContext
from school_api.core.database import get_db
from school_api.core.dependencies import RouteAccess
from school_api.models.user import Role
from school_api.schemas.attendance import (
    AttendanceEntryOut,
    MarkAttendanceRequest,
    MarkAttendanceResponse,
    SectionDayAttendanceOut,
    StudentAttendanceHistoryOut,
)

router = APIRouter(prefix="/attendance", tags=["Attendance"])

staff_access = RouteAccess(Role.TEACHER, Role.SCHOOL_ADMIN)
staff_or_parent_access = RouteAccess(Role.TEACHER, Role.SCHOOL_ADMIN, Role.PARENT)
parent_access = RouteAccess(Role.PARENT)


@router.post("/mark", response_model=MarkAttendanceResponse, summary="Mark attendance for a section")
async def mark_attendance(
    payload: MarkAttendanceRequest,
    ctx: RequestContext = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_controller.mark_attendance(
        db, ctx.school_id, ctx.user.sub, ctx.user.role, payload
    )


@router.get(
    "/section/{section_id}/date/{day}",
    response_model=SectionDayAttendanceOut,
    summary="Section roster with status for one day",
)
async def get_section_day(
    section_id: str,
    day: str,
    ctx: RequestContext = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_controller.get_attendance_by_section_and_date(
        db, ctx.school_id, section_id, day
    )


@router.get("/section/{section_id}", response_model=list[AttendanceEntryOut], summary="Section attendance")
async def get_section_attendance(
    section_id: str,
    date: str | None = Query(None, description="Exact day (YYYY-MM-DD); overrides the range"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    ctx: RequestContext = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_controller.get_attendance_by_section(
        db, ctx.school_id, section_id, date, start_date, end_date
    )


@router.get(
    "/student/{student_id}",
    response_model=StudentAttendanceHistoryOut,
    summary="Attendance history of one student",
)
async def get_student_attendance(
    student_id: str,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    ctx: RequestContext = Depends(staff_or_parent_access),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_controller.get_attendance_by_student(
        db, ctx.user, ctx.school_id, student_id, start_date, end_date
    )


@router.get("/my-children", response_model=list[AttendanceEntryOut], summary="Attendance of my children")
async def get_my_children_attendance(
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    ctx: RequestContext = Depends(parent_access),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_controller.get_my_children_attendance(
        db, ctx.school_id, ctx.user.sub, start_date, end_date
    )
