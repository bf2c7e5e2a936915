"""Dashboard router: one summary view per role, plus the student timetable and teacher classes."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_admin, require_parent, require_student, require_teacher
from app.auth.schemas import CurrentUser
from app.core.cache import CacheService, get_cache
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import (
    AdminDashboard,
    ParentDashboard,
    StudentDashboard,
    StudentTimetable,
    TeacherClasses,
    TeacherDashboard,
)

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("/student", response_model=StudentDashboard, dependencies=[Depends(require_student)])
async def get_student_dashboard(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_student_dashboard(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/student/timetable", response_model=StudentTimetable, dependencies=[Depends(require_student)])
async def get_student_timetable(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Weekly timetable of the student's section, grouped by day (0=Monday)."""
    try:
        return await service.get_student_timetable(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/teacher", response_model=TeacherDashboard, dependencies=[Depends(require_teacher)])
async def get_teacher_dashboard(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_teacher_dashboard(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/teacher/classes", response_model=TeacherClasses, dependencies=[Depends(require_teacher)])
async def get_teacher_classes(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Sections with class-teacher flag, capacity and roster, plus the subjects taught."""
    try:
        return await service.get_teacher_classes(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

@router.get("/parent", response_model=ParentDashboard, dependencies=[Depends(require_parent)])
async def get_parent_dashboard(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_parent_dashboard(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/admin", response_model=AdminDashboard, dependencies=[Depends(require_admin)])
async def get_admin_dashboard(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """School-wide counts, fee totals by effective status and approval progress."""
    try:
        return await service.get_admin_dashboard(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
