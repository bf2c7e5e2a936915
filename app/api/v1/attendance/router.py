"""Attendance API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_parent, require_student, require_teacher
from app.auth.schemas import CurrentUser
from app.core.cache import CacheService, get_cache
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import AttendanceHistory, AttendanceMarkRequest, AttendanceMarkResult, TeacherAttendanceOverview

router = APIRouter(prefix="/api/v1/attendance", tags=["attendance"])


@router.get("/me", response_model=AttendanceHistory, dependencies=[Depends(require_student)])
async def get_my_attendance(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Student's own attendance history."""
    try:
        return await service.get_student_attendance(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/children/{student_id}",
    response_model=AttendanceHistory,
    dependencies=[Depends(require_parent)],
)
async def get_child_attendance(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Attendance history of a linked child."""
    try:
        return await service.get_child_attendance(db, cache, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/teacher", response_model=TeacherAttendanceOverview, dependencies=[Depends(require_teacher)])
async def get_teacher_overview(
    section_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Teacher's sections with today's marking state and one section's roster."""
    try:
        return await service.get_teacher_attendance_overview(db, cache, current_user, section_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/mark",
    response_model=AttendanceMarkResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_teacher)],
)
async def mark_attendance(
    payload: AttendanceMarkRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Mark or re-mark attendance for a section. Teacher: assigned sections only."""
    try:
        return await service.mark_attendance(db, cache, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
