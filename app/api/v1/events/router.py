"""Events router: admin event management, parent approvals."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_admin, require_parent
from app.auth.schemas import CurrentUser
from app.core.aggregates.dashboard import PendingEventApproval
from app.core.cache import CacheService, get_cache
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import (
    AdminEventsView,
    ApprovalItem,
    ApprovalRespond,
    BulkRespondResult,
    EventCreate,
    EventCreateResult,
    EventResponse,
    EventUpdate,
    FanOutResult,
    ParentEventsView,
)

router = APIRouter(prefix="/api/v1/events", tags=["events"])


# ----- Admin -----
@router.post(
    "",
    response_model=EventCreateResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_event(
    payload: EventCreate,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create an event; approvals are fanned out to linked parents when required."""
    try:
        return await service.create_event(db, cache, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/admin", response_model=AdminEventsView, dependencies=[Depends(require_admin)])
async def get_admin_events(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_admin_events(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{event_id}/fan-out", response_model=FanOutResult, dependencies=[Depends(require_admin)])
async def rerun_fan_out(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Re-run approval fan-out for an event. Only missing approvals are created."""
    try:
        return await service.rerun_event_fan_out(db, cache, current_user, event_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{event_id}", response_model=EventResponse, dependencies=[Depends(require_admin)])
async def update_event(
    event_id: UUID,
    payload: EventUpdate,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_event(db, cache, current_user, event_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_admin)])
async def delete_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_event(db, cache, current_user, event_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Parent -----
@router.get("/parent", response_model=ParentEventsView, dependencies=[Depends(require_parent)])
async def get_parent_events(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_parent_events(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/parent/pending",
    response_model=List[PendingEventApproval],
    dependencies=[Depends(require_parent)],
)
async def get_pending_approvals(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Open approvals grouped per event, flagged urgent near the deadline."""
    try:
        return await service.get_parent_pending_approvals(db, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/approvals/{approval_id}/respond",
    response_model=ApprovalItem,
    dependencies=[Depends(require_parent)],
)
async def respond_to_approval(
    approval_id: UUID,
    payload: ApprovalRespond,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.respond_to_approval(db, cache, current_user, approval_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{event_id}/respond",
    response_model=BulkRespondResult,
    dependencies=[Depends(require_parent)],
)
async def bulk_respond(
    event_id: UUID,
    payload: ApprovalRespond,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Answer all of the parent's pending approvals for an event at once."""
    try:
        return await service.bulk_respond(db, cache, current_user, event_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
