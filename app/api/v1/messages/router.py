"""Messaging router: parent-teacher conversations."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.cache import CacheService, get_cache
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import (
    Contacts,
    ConversationList,
    ConversationStart,
    ConversationStartResult,
    ConversationThread,
    MessageCreate,
    MessageItem,
    UnreadTotal,
)

router = APIRouter(
    prefix="/api/v1/messages",
    tags=["messages"],
    dependencies=[Depends(require_roles(UserRole.TEACHER, UserRole.PARENT))],
)


@router.get("/conversations", response_model=ConversationList)
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_conversations(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/conversations", response_model=ConversationStartResult, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    payload: ConversationStart,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Start a conversation about a student, or append to the existing one."""
    try:
        return await service.start_conversation(db, cache, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/conversations/{conversation_id}", response_model=ConversationThread)
async def open_conversation(
    conversation_id: UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Full thread. Marks the other participant's messages as read."""
    try:
        return await service.open_conversation(db, cache, current_user, conversation_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageItem,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    payload: MessageCreate,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.send_message(db, cache, current_user, conversation_id, payload.content)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/unread", response_model=UnreadTotal)
async def get_unread_total(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.unread_total(db, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/contacts", response_model=Contacts)
async def get_contacts(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_contacts(db, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
