"""Parent-teacher messaging.

A conversation is identified by (student, teacher, parent). Starting a conversation that
already exists appends to it instead of creating a second one.
"""
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import ParentProfile, ParentStudent, TeacherProfile, User
from app.auth.profiles import (
    ensure_parent_of,
    get_child_ids,
    get_parent_profile,
    get_section_teacher_ids,
    get_teacher_profile,
    get_teacher_section_ids,
)
from app.auth.schemas import CurrentUser
from app.core.aggregates.common import utc_now
from app.core.cache import CacheService
from app.core.cache.invalidation import AffectedEntities, Mutation, invalidate
from app.core.cache.keys import ViewKind
from app.core.cache.readthrough import cached_view
from app.core.enums import SenderRole, UserRole
from app.core.exceptions import ServiceError, access_denied, not_found
from app.core.logging import get_logger
from app.core.models import Conversation, Message
from app.core.services import get_section_students, get_sections, get_student, get_students

from .schemas import (
    ContactEntry,
    ContactPerson,
    Contacts,
    ConversationList,
    ConversationStart,
    ConversationStartResult,
    ConversationSummary,
    ConversationThread,
    MessageItem,
    UnreadTotal,
)

log = get_logger("messages")


# ----- Helpers -----
async def _viewer(db: AsyncSession, user: CurrentUser) -> Tuple[SenderRole, UUID]:
    """The caller's messaging side and profile id. Only teachers and parents take part."""
    if user.role == UserRole.TEACHER.value:
        return SenderRole.TEACHER, (await get_teacher_profile(db, user)).id
    if user.role == UserRole.PARENT.value:
        return SenderRole.PARENT, (await get_parent_profile(db, user)).id
    raise access_denied("Only teachers and parents can use messaging")


async def _teacher_names(db: AsyncSession, teacher_ids: Iterable[UUID]) -> Dict[UUID, str]:
    ids = list(set(teacher_ids))
    if not ids:
        return {}
    stmt = select(TeacherProfile.id, User.full_name).join(User, User.id == TeacherProfile.user_id).where(
        TeacherProfile.id.in_(ids)
    )
    return dict((await db.execute(stmt)).all())


async def _parent_names(db: AsyncSession, parent_ids: Iterable[UUID]) -> Dict[UUID, str]:
    ids = list(set(parent_ids))
    if not ids:
        return {}
    stmt = select(ParentProfile.id, User.full_name).join(User, User.id == ParentProfile.user_id).where(
        ParentProfile.id.in_(ids)
    )
    return dict((await db.execute(stmt)).all())


def _participant_id(conversation: Conversation, role: SenderRole) -> UUID:
    return conversation.teacher_id if role is SenderRole.TEACHER else conversation.parent_id


async def _get_conversation(db: AsyncSession, user: CurrentUser, conversation_id: UUID) -> Tuple[Conversation, SenderRole]:
    """Conversation the caller takes part in: 404 when missing, 403 for anyone else."""
    stmt = select(Conversation).where(Conversation.id == conversation_id, Conversation.tenant_id == user.tenant_id)
    conversation = (await db.execute(stmt)).scalar_one_or_none()
    if conversation is None:
        raise not_found("Conversation")
    role, profile_id = await _viewer(db, user)
    if _participant_id(conversation, role) != profile_id:
        raise access_denied()
    return conversation, role


async def _find_conversation(db: AsyncSession, student_id: UUID, teacher_id: UUID, parent_id: UUID) -> Optional[Conversation]:
    stmt = select(Conversation).where(
        Conversation.student_id == student_id,
        Conversation.teacher_id == teacher_id,
        Conversation.parent_id == parent_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _append(
    db: AsyncSession, conversation: Conversation, user: CurrentUser, role: SenderRole, content: str
) -> Message:
    now = utc_now()
    message = Message(
        conversation_id=conversation.id,
        sender_id=user.id,
        sender_role=role.value,
        content=content,
        created_at=now,
    )
    db.add(message)
    conversation.updated_at = now
    await db.commit()
    return message


def _message_item(message: Message, sender_name: str) -> MessageItem:
    return MessageItem(
        id=message.id,
        content=message.content,
        sender_role=message.sender_role,
        sender_name=sender_name,
        is_read=message.is_read,
        created_at=message.created_at,
    )


async def _sender_name(db: AsyncSession, user: CurrentUser) -> str:
    return (await db.execute(select(User.full_name).where(User.id == user.id))).scalar_one()


async def _invalidate_inbox(cache: CacheService, conversation: Conversation) -> None:
    await invalidate(
        cache,
        Mutation.MESSAGE_SENT,
        AffectedEntities.of(teachers=[conversation.teacher_id], parents=[conversation.parent_id]),
    )


# ----- Commands -----
async def start_conversation(
    db: AsyncSession, cache: CacheService, user: CurrentUser, payload: ConversationStart
) -> ConversationStartResult:
    role, profile_id = await _viewer(db, user)
    student = await get_student(db, user.tenant_id, payload.student_id)
    if student is None:
        raise not_found("Student")

    if role is SenderRole.TEACHER:
        if payload.parent_id is None:
            raise ServiceError("Parent is required", status.HTTP_400_BAD_REQUEST)
        teacher_id, parent_id = profile_id, payload.parent_id
        if student.section_id not in await get_teacher_section_ids(db, user.tenant_id, teacher_id):
            raise access_denied("Access denied to this student")
    else:
        if payload.teacher_id is None:
            raise ServiceError("Teacher is required", status.HTTP_400_BAD_REQUEST)
        teacher_id, parent_id = payload.teacher_id, profile_id
        if student.section_id is None or teacher_id not in await get_section_teacher_ids(db, [student.section_id]):
            raise access_denied("Teacher does not teach this student")
    await ensure_parent_of(db, parent_id, student.id)

    created = False
    conversation = await _find_conversation(db, student.id, teacher_id, parent_id)
    if conversation is not None:
        message = await _append(db, conversation, user, role, payload.message)
    else:
        now = utc_now()
        conversation = Conversation(
            tenant_id=user.tenant_id,
            student_id=student.id,
            teacher_id=teacher_id,
            parent_id=parent_id,
            subject=payload.subject,
            created_at=now,
            updated_at=now,
        )
        try:
            db.add(conversation)
            await db.flush()
            message = Message(
                conversation_id=conversation.id,
                sender_id=user.id,
                sender_role=role.value,
                content=payload.message,
                created_at=now,
            )
            db.add(message)
            await db.commit()
            created = True
        except IntegrityError:
            # The other participant created it first.
            await db.rollback()
            log.warning("Conversation for student %s created concurrently; appending", student.id)
            conversation = await _find_conversation(db, student.id, teacher_id, parent_id)
            if conversation is None:
                raise
            message = await _append(db, conversation, user, role, payload.message)

    log.info("Message %s conversation %s", "opened" if created else "appended to", conversation.id)
    await _invalidate_inbox(cache, conversation)
    return ConversationStartResult(
        conversation_id=conversation.id,
        created=created,
        message=_message_item(message, await _sender_name(db, user)),
    )


async def send_message(
    db: AsyncSession, cache: CacheService, user: CurrentUser, conversation_id: UUID, content: str
) -> MessageItem:
    conversation, role = await _get_conversation(db, user, conversation_id)
    message = await _append(db, conversation, user, role, content)
    await _invalidate_inbox(cache, conversation)
    return _message_item(message, await _sender_name(db, user))


async def open_conversation(
    db: AsyncSession, cache: CacheService, user: CurrentUser, conversation_id: UUID
) -> ConversationThread:
    """Return the thread and mark the other side's messages as read for the caller."""
    conversation, role = await _get_conversation(db, user, conversation_id)
    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.sender_role == role.opposite.value,
            Message.is_read.is_(False),
        )
        .values(is_read=True)
    )
    await db.commit()

    if result.rowcount:
        viewer = _participant_id(conversation, role)
        affected = (
            AffectedEntities.of(teachers=[viewer]) if role is SenderRole.TEACHER else AffectedEntities.of(parents=[viewer])
        )
        await invalidate(cache, Mutation.CONVERSATION_READ, affected)

    student = await get_student(db, user.tenant_id, conversation.student_id)
    teacher_name = (await _teacher_names(db, [conversation.teacher_id])).get(conversation.teacher_id, "")
    parent_name = (await _parent_names(db, [conversation.parent_id])).get(conversation.parent_id, "")
    messages = (
        await db.execute(
            select(Message).where(Message.conversation_id == conversation.id).order_by(Message.created_at)
        )
    ).scalars().all()
    return ConversationThread(
        id=conversation.id,
        student_id=conversation.student_id,
        student_name=student.full_name if student else "",
        teacher_id=conversation.teacher_id,
        teacher_name=teacher_name,
        parent_id=conversation.parent_id,
        parent_name=parent_name,
        subject=conversation.subject,
        messages=[
            _message_item(m, teacher_name if m.sender_role == SenderRole.TEACHER.value else parent_name)
            for m in messages
        ],
    )


# ----- Views -----
async def _compute_conversations(
    db: AsyncSession, tenant_id: UUID, role: SenderRole, profile_id: UUID
) -> ConversationList:
    owner = Conversation.teacher_id if role is SenderRole.TEACHER else Conversation.parent_id
    stmt = (
        select(Conversation)
        .where(Conversation.tenant_id == tenant_id, owner == profile_id)
        .order_by(Conversation.updated_at.desc())
    )
    conversations = list((await db.execute(stmt)).scalars().all())
    if not conversations:
        return ConversationList(conversations=[], total_unread=0)
    ids = [c.id for c in conversations]

    last: Dict[UUID, Message] = {}
    messages_stmt = select(Message).where(Message.conversation_id.in_(ids)).order_by(Message.created_at)
    for message in (await db.execute(messages_stmt)).scalars():
        last[message.conversation_id] = message

    unread_stmt = (
        select(Message.conversation_id, func.count(Message.id))
        .where(
            Message.conversation_id.in_(ids),
            Message.sender_role == role.opposite.value,
            Message.is_read.is_(False),
        )
        .group_by(Message.conversation_id)
    )
    unread = dict((await db.execute(unread_stmt)).all())

    students = {s.id: s.full_name for s in await get_students(db, tenant_id, {c.student_id for c in conversations})}
    if role is SenderRole.TEACHER:
        counterparts = await _parent_names(db, (c.parent_id for c in conversations))
    else:
        counterparts = await _teacher_names(db, (c.teacher_id for c in conversations))

    summaries = []
    for c in conversations:
        counterpart_id = c.parent_id if role is SenderRole.TEACHER else c.teacher_id
        latest = last.get(c.id)
        summaries.append(
            ConversationSummary(
                id=c.id,
                student_id=c.student_id,
                student_name=students.get(c.student_id, ""),
                counterpart_id=counterpart_id,
                counterpart_name=counterparts.get(counterpart_id, ""),
                subject=c.subject,
                last_message=latest.content if latest else None,
                last_message_at=latest.created_at if latest else None,
                unread_count=unread.get(c.id, 0),
                updated_at=c.updated_at,
            )
        )
    return ConversationList(conversations=summaries, total_unread=sum(unread.values()))


async def list_conversations(db: AsyncSession, cache: CacheService, user: CurrentUser) -> ConversationList:
    role, profile_id = await _viewer(db, user)
    if role is SenderRole.TEACHER:
        view_kind, tag_ids = ViewKind.TEACHER_CONVERSATIONS, {"teacher": profile_id}
    else:
        view_kind, tag_ids = ViewKind.PARENT_CONVERSATIONS, {"parent": profile_id}
    return await cached_view(
        cache,
        user.tenant_id,
        view_kind,
        profile_id,
        ConversationList,
        lambda: _compute_conversations(db, user.tenant_id, role, profile_id),
        tag_ids,
    )


async def unread_total(db: AsyncSession, user: CurrentUser) -> UnreadTotal:
    """Unread badge count. Read straight from the store."""
    role, profile_id = await _viewer(db, user)
    owner = Conversation.teacher_id if role is SenderRole.TEACHER else Conversation.parent_id
    stmt = (
        select(func.count(Message.id))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            Conversation.tenant_id == user.tenant_id,
            owner == profile_id,
            Message.sender_role == role.opposite.value,
            Message.is_read.is_(False),
        )
    )
    return UnreadTotal(unread=(await db.execute(stmt)).scalar_one())


async def get_contacts(db: AsyncSession, user: CurrentUser) -> Contacts:
    """Teacher: students of their sections with linked parents. Parent: each child with the child's teachers."""
    role, profile_id = await _viewer(db, user)
    entries: List[ContactEntry] = []

    if role is SenderRole.TEACHER:
        section_ids = await get_teacher_section_ids(db, user.tenant_id, profile_id)
        labels = {s.id: s.label for s in await get_sections(db, user.tenant_id, section_ids)}
        students = await get_section_students(db, user.tenant_id, section_ids)
        links: Dict[UUID, List[UUID]] = {}
        if students:
            stmt = select(ParentStudent.student_id, ParentStudent.parent_id).where(
                ParentStudent.student_id.in_([s.id for s in students])
            )
            for student_id, parent_id in (await db.execute(stmt)).all():
                links.setdefault(student_id, []).append(parent_id)
        names = await _parent_names(db, (p for ps in links.values() for p in ps))
        for s in students:
            entries.append(
                ContactEntry(
                    student_id=s.id,
                    student_name=s.full_name,
                    section_label=labels.get(s.section_id),
                    contacts=[ContactPerson(id=p, name=names.get(p, "")) for p in links.get(s.id, [])],
                )
            )
        return Contacts(entries=entries)

    children = await get_students(db, user.tenant_id, await get_child_ids(db, profile_id))
    labels = {
        s.id: s.label
        for s in await get_sections(db, user.tenant_id, [c.section_id for c in children if c.section_id])
    }
    for child in children:
        teacher_ids = await get_section_teacher_ids(db, [child.section_id]) if child.section_id else []
        names = await _teacher_names(db, teacher_ids)
        entries.append(
            ContactEntry(
                student_id=child.id,
                student_name=child.full_name,
                section_label=labels.get(child.section_id),
                contacts=[ContactPerson(id=t, name=names.get(t, "")) for t in teacher_ids],
            )
        )
    return Contacts(entries=entries)
