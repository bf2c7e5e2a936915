"""Grades API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_parent, require_student, require_teacher
from app.auth.schemas import CurrentUser
from app.core.cache import CacheService, get_cache
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import Gradebook, GradesReport, RecordResultsRequest, RecordResultsResult, TeacherAssessments

router = APIRouter(prefix="/api/v1/grades", tags=["grades"])


@router.get("/me", response_model=GradesReport, dependencies=[Depends(require_student)])
async def get_my_grades(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_student_grades(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/children/{student_id}", response_model=GradesReport, dependencies=[Depends(require_parent)])
async def get_child_grades(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Grades of a linked child."""
    try:
        return await service.get_child_grades(db, cache, current_user, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/gradebook", response_model=Gradebook, dependencies=[Depends(require_teacher)])
async def get_gradebook(
    section_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Marks matrix for a section (teacher's first section when omitted)."""
    try:
        return await service.get_gradebook(db, cache, current_user, section_id, subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/assessments", response_model=TeacherAssessments, dependencies=[Depends(require_teacher)])
async def get_teacher_assessments(
    section_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Assessments the teacher created with graded/total counts, optionally filtered."""
    try:
        return await service.get_teacher_assessments(db, cache, current_user, section_id, subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

@router.put(
    "/assessments/{assessment_id}/results",
    response_model=RecordResultsResult,
    dependencies=[Depends(require_teacher)],
)
async def record_results(
    assessment_id: UUID,
    payload: RecordResultsRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Record or correct marks for an assessment. Teacher: assigned sections only."""
    try:
        return await service.record_results(db, cache, current_user, assessment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
