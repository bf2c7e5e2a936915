"""Events, approval fan-out and parent responses.

Fan-out writes one PENDING approval per (event, student, linked parent). The unique
constraint on that triple is the idempotency guard: re-running fan-out for an event
only fills gaps. Approvals are a snapshot of the audience at fan-out time; editing
target_audience later does not add or remove rows.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import ParentStudent, StudentProfile, User
from app.auth.profiles import get_child_ids, get_parent_profile
from app.auth.schemas import CurrentUser
from app.core.aggregates.common import to_naive_utc, utc_now
from app.core.aggregates.dashboard import PendingEventApproval, approval_counts, group_pending_approvals
from app.core.cache import CacheService
from app.core.cache.invalidation import AffectedEntities, Mutation, invalidate
from app.core.cache.keys import ViewKind
from app.core.cache.readthrough import cached_view
from app.core.config import settings
from app.core.enums import ApprovalStatus
from app.core.exceptions import ServiceError, not_found
from app.core.logging import get_logger
from app.core.models import Event, EventApproval, SchoolClass, Section
from app.core.services import get_students, targets_everyone

from .schemas import (
    AdminEventEntry,
    AdminEventsView,
    ApprovalItem,
    ApprovalRespond,
    BulkRespondResult,
    EventCreate,
    EventCreateResult,
    EventResponse,
    EventUpdate,
    FanOutResult,
    ParentEventEntry,
    ParentEventsView,
)

log = get_logger("events")

PAST_EVENTS_LIMIT = 10
_NOT_NULL_FIELDS = {"title", "type", "start_date", "deadline", "target_audience", "requires_approval"}


# ----- Targeting -----
async def resolve_target_students(db: AsyncSession, tenant_id: UUID, audience: Iterable[str]) -> List[UUID]:
    """ACTIVE placed students of the tenant reached by the audience.

    "All" (any case) or an empty audience reaches everyone; otherwise class names are
    matched exactly against SchoolClass.name.
    """
    audience = [str(a) for a in (audience or [])]
    stmt = (
        select(StudentProfile.id)
        .join(User, User.id == StudentProfile.user_id)
        .join(Section, Section.id == StudentProfile.section_id)
        .join(SchoolClass, SchoolClass.id == Section.class_id)
        .where(
            User.tenant_id == tenant_id,
            SchoolClass.tenant_id == tenant_id,
            StudentProfile.status == "ACTIVE",
        )
        .order_by(StudentProfile.created_at)
    )
    if not targets_everyone(audience):
        stmt = stmt.where(SchoolClass.name.in_(audience))
    return list((await db.execute(stmt)).scalars().all())


async def _student_parent_pairs(db: AsyncSession, student_ids: Sequence[UUID]) -> List[Tuple[UUID, UUID]]:
    if not student_ids:
        return []
    stmt = (
        select(ParentStudent.student_id, ParentStudent.parent_id)
        .where(ParentStudent.student_id.in_(student_ids))
        .order_by(ParentStudent.student_id, ParentStudent.parent_id)
    )
    return [(s, p) for s, p in (await db.execute(stmt)).all()]


async def _audience_entities(db: AsyncSession, tenant_id: UUID, audience: Iterable[str]) -> Tuple[Set[UUID], Set[UUID]]:
    students = await resolve_target_students(db, tenant_id, audience)
    pairs = await _student_parent_pairs(db, students)
    return set(students), {p for _, p in pairs}


async def _approval_entities(db: AsyncSession, event_id: UUID) -> Tuple[Set[UUID], Set[UUID]]:
    stmt = select(EventApproval.student_id, EventApproval.parent_id).where(EventApproval.event_id == event_id)
    rows = (await db.execute(stmt)).all()
    return {s for s, _ in rows}, {p for _, p in rows}


# ----- Fan-out -----
async def _insert_one_by_one(db: AsyncSession, event_id: UUID, batch: List[Tuple[UUID, UUID]]) -> Tuple[int, int]:
    created = skipped = 0
    for student_id, parent_id in batch:
        db.add(EventApproval(event_id=event_id, student_id=student_id, parent_id=parent_id))
        try:
            await db.commit()
            created += 1
        except IntegrityError:
            await db.rollback()
            skipped += 1
    return created, skipped


async def fan_out_event_approvals(db: AsyncSession, event: Event, batch_size: Optional[int] = None) -> FanOutResult:
    """Create the missing PENDING approvals for an event. Safe to run any number of times.

    A rollback in the retry path expires every loaded instance, so only plain ids are used
    below and the event is reloaded before returning.
    """
    batch_size = batch_size or settings.fan_out_batch_size
    event_id = event.id
    student_ids = await resolve_target_students(db, event.tenant_id, list(event.target_audience or []))
    pairs = await _student_parent_pairs(db, student_ids)

    existing_stmt = select(EventApproval.student_id, EventApproval.parent_id).where(
        EventApproval.event_id == event_id
    )
    existing = {(s, p) for s, p in (await db.execute(existing_stmt)).all()}
    todo = [pair for pair in pairs if pair not in existing]
    skipped = len(pairs) - len(todo)
    created = 0
    rolled_back = False

    for start in range(0, len(todo), batch_size):
        batch = todo[start:start + batch_size]
        try:
            db.add_all(
                EventApproval(event_id=event_id, student_id=s, parent_id=p) for s, p in batch
            )
            await db.commit()
            created += len(batch)
        except IntegrityError:
            # Another run wrote some of these rows first.
            await db.rollback()
            rolled_back = True
            log.warning("Approval batch for event %s hit duplicates; retrying row by row", event_id)
            batch_created, batch_skipped = await _insert_one_by_one(db, event_id, batch)
            created += batch_created
            skipped += batch_skipped

    if rolled_back:
        await db.refresh(event)

    result = FanOutResult(targeted_students=len(student_ids), created=created, skipped=skipped)
    log.info(
        "Fan-out for event %s: %d students, %d approvals created, %d skipped",
        event_id, result.targeted_students, result.created, result.skipped,
    )
    return result


# ----- Admin -----
async def _get_event(db: AsyncSession, tenant_id: UUID, event_id: UUID) -> Event:
    stmt = select(Event).where(Event.id == event_id, Event.tenant_id == tenant_id)
    event = (await db.execute(stmt)).scalar_one_or_none()
    if event is None:
        raise not_found("Event")
    return event


async def _invalidate_event(
    cache: CacheService,
    mutation: Mutation,
    tenant_id: UUID,
    students: Set[UUID],
    parents: Set[UUID],
) -> None:
    await invalidate(cache, mutation, AffectedEntities.of(schools=[tenant_id], students=students, parents=parents))


async def create_event(db: AsyncSession, cache: CacheService, user: CurrentUser, payload: EventCreate) -> EventCreateResult:
    event = Event(
        tenant_id=user.tenant_id,
        title=payload.title.strip(),
        description=payload.description,
        type=payload.type.value,
        location=payload.location,
        start_date=to_naive_utc(payload.start_date),
        end_date=to_naive_utc(payload.end_date),
        deadline=to_naive_utc(payload.deadline),
        target_audience=list(payload.target_audience),
        requires_approval=payload.requires_approval,
        capacity=payload.capacity,
        fee=payload.fee,
        created_by=user.id,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)
    audience = list(event.target_audience or [])

    fan_out = None
    if event.requires_approval:
        fan_out = await fan_out_event_approvals(db, event)

    students, parents = await _audience_entities(db, user.tenant_id, audience)
    await _invalidate_event(cache, Mutation.EVENT_CREATED, user.tenant_id, students, parents)
    return EventCreateResult(event=EventResponse.model_validate(event), fan_out=fan_out)


async def rerun_event_fan_out(db: AsyncSession, cache: CacheService, user: CurrentUser, event_id: UUID) -> FanOutResult:
    """Fill approvals missing after a partial or failed fan-out."""
    event = await _get_event(db, user.tenant_id, event_id)
    if not event.requires_approval:
        raise ServiceError("Event does not require approval", status.HTTP_400_BAD_REQUEST)
    result = await fan_out_event_approvals(db, event)
    if result.created:
        students, parents = await _approval_entities(db, event_id)
        await _invalidate_event(cache, Mutation.EVENT_UPDATED, user.tenant_id, students, parents)
    return result


async def update_event(
    db: AsyncSession, cache: CacheService, user: CurrentUser, event_id: UUID, payload: EventUpdate
) -> EventResponse:
    event = await _get_event(db, user.tenant_id, event_id)
    before_students, before_parents = await _audience_entities(db, user.tenant_id, event.target_audience)

    data = payload.model_dump(exclude_unset=True)
    for field, value in data.items():
        if value is None and field in _NOT_NULL_FIELDS:
            continue
        if field in ("start_date", "end_date", "deadline"):
            value = to_naive_utc(value)
        elif field == "type" and value is not None:
            value = value.value
        setattr(event, field, value)
    if event.end_date is not None and to_naive_utc(event.end_date) < to_naive_utc(event.start_date):
        raise ServiceError("end_date cannot be before start_date", status.HTTP_400_BAD_REQUEST)
    await db.commit()
    await db.refresh(event)

    after_students, after_parents = await _audience_entities(db, user.tenant_id, event.target_audience)
    approval_students, approval_parents = await _approval_entities(db, event.id)
    await _invalidate_event(
        cache,
        Mutation.EVENT_UPDATED,
        user.tenant_id,
        before_students | after_students | approval_students,
        before_parents | after_parents | approval_parents,
    )
    return EventResponse.model_validate(event)


async def delete_event(db: AsyncSession, cache: CacheService, user: CurrentUser, event_id: UUID) -> None:
    event = await _get_event(db, user.tenant_id, event_id)
    students, parents = await _audience_entities(db, user.tenant_id, event.target_audience)
    approval_students, approval_parents = await _approval_entities(db, event.id)

    await db.execute(delete(EventApproval).where(EventApproval.event_id == event.id))
    await db.delete(event)
    await db.commit()

    await _invalidate_event(
        cache, Mutation.EVENT_DELETED, user.tenant_id, students | approval_students, parents | approval_parents
    )


async def _compute_admin_events(db: AsyncSession, tenant_id: UUID) -> AdminEventsView:
    now = utc_now()
    events = list(
        (await db.execute(select(Event).where(Event.tenant_id == tenant_id).order_by(Event.start_date.desc())))
        .scalars()
        .all()
    )
    statuses: Dict[UUID, List[str]] = {e.id: [] for e in events}
    if events:
        stmt = select(EventApproval.event_id, EventApproval.status).where(
            EventApproval.event_id.in_(list(statuses))
        )
        for event_id, approval_status in (await db.execute(stmt)).all():
            statuses[event_id].append(approval_status)

    entries = [
        AdminEventEntry(event=EventResponse.model_validate(e), stats=approval_counts(statuses[e.id]))
        for e in events
    ]
    upcoming = sum(1 for e in events if to_naive_utc(e.start_date) > now)
    return AdminEventsView(
        events=entries,
        total=len(entries),
        upcoming=upcoming,
        past=len(entries) - upcoming,
        pending_approvals=sum(entry.stats.pending for entry in entries),
    )


async def get_admin_events(db: AsyncSession, cache: CacheService, user: CurrentUser) -> AdminEventsView:
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.ADMIN_EVENTS,
        user.tenant_id,
        AdminEventsView,
        lambda: _compute_admin_events(db, user.tenant_id),
        {"school": user.tenant_id},
    )


# ----- Parent -----
async def _compute_parent_events(db: AsyncSession, tenant_id: UUID, parent_id: UUID) -> ParentEventsView:
    now = utc_now()
    child_ids = await get_child_ids(db, parent_id)
    names = {s.id: s.full_name for s in await get_students(db, tenant_id, child_ids)}

    stmt = (
        select(EventApproval, Event)
        .join(Event, Event.id == EventApproval.event_id)
        .where(EventApproval.parent_id == parent_id, Event.tenant_id == tenant_id)
        .order_by(Event.start_date)
    )
    grouped: Dict[UUID, Tuple[Event, List[EventApproval]]] = {}
    for approval, event in (await db.execute(stmt)).all():
        if approval.student_id not in names:
            continue
        grouped.setdefault(event.id, (event, []))[1].append(approval)

    pending: List[ParentEventEntry] = []
    upcoming: List[ParentEventEntry] = []
    past: List[ParentEventEntry] = []
    all_statuses: List[str] = []
    for event, approvals in grouped.values():
        counts = approval_counts(a.status for a in approvals)
        all_statuses.extend(a.status for a in approvals)
        entry = ParentEventEntry(
            event=EventResponse.model_validate(event),
            approvals=[
                ApprovalItem(
                    id=a.id,
                    event_id=a.event_id,
                    student_id=a.student_id,
                    student_name=names[a.student_id],
                    status=a.status,
                    remarks=a.remarks,
                    responded_at=a.responded_at,
                )
                for a in approvals
            ],
            is_expired=to_naive_utc(event.deadline) < now,
            counts=counts,
        )
        if to_naive_utc(event.start_date) < now:
            past.append(entry)
        elif counts.pending > 0 and not entry.is_expired:
            pending.append(entry)
        else:
            upcoming.append(entry)

    pending.sort(key=lambda e: to_naive_utc(e.event.deadline))
    upcoming.sort(key=lambda e: to_naive_utc(e.event.start_date))
    past.sort(key=lambda e: to_naive_utc(e.event.start_date), reverse=True)
    return ParentEventsView(
        pending=pending,
        upcoming=upcoming,
        past=past[:PAST_EVENTS_LIMIT],
        totals=approval_counts(all_statuses),
    )


async def get_parent_events(db: AsyncSession, cache: CacheService, user: CurrentUser) -> ParentEventsView:
    parent = await get_parent_profile(db, user)
    # Keyed per parent: one family's view is never served to another.
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.PARENT_EVENTS,
        parent.id,
        ParentEventsView,
        lambda: _compute_parent_events(db, user.tenant_id, parent.id),
        {"parent": parent.id},
    )


class _PendingRow:
    __slots__ = ("event_id", "event_title", "event_type", "deadline", "student_name")

    def __init__(self, event: Event, student_name: str) -> None:
        self.event_id = event.id
        self.event_title = event.title
        self.event_type = event.type
        self.deadline = event.deadline
        self.student_name = student_name


async def get_pending_approvals(
    db: AsyncSession, tenant_id: UUID, parent_id: UUID, now: Optional[datetime] = None
) -> List[PendingEventApproval]:
    """The parent's open approvals for events that have neither started nor closed, grouped per event."""
    now = now or utc_now()
    child_ids = await get_child_ids(db, parent_id)
    names = {s.id: s.first_name for s in await get_students(db, tenant_id, child_ids)}
    stmt = (
        select(EventApproval.student_id, Event)
        .join(Event, Event.id == EventApproval.event_id)
        .where(
            EventApproval.parent_id == parent_id,
            EventApproval.status == ApprovalStatus.PENDING.value,
            Event.tenant_id == tenant_id,
            Event.deadline >= now,
            Event.start_date >= now,
        )
        .order_by(Event.deadline)
    )
    rows = [
        _PendingRow(event, names[student_id])
        for student_id, event in (await db.execute(stmt)).all()
        if student_id in names
    ]
    return group_pending_approvals(rows, now, settings.urgent_deadline_days)


async def get_parent_pending_approvals(db: AsyncSession, user: CurrentUser) -> List[PendingEventApproval]:
    parent = await get_parent_profile(db, user)
    return await get_pending_approvals(db, user.tenant_id, parent.id)


def _ensure_open(event: Event) -> None:
    if to_naive_utc(event.deadline) < utc_now():
        raise ServiceError("Deadline has passed", status.HTTP_400_BAD_REQUEST)


async def respond_to_approval(
    db: AsyncSession, cache: CacheService, user: CurrentUser, approval_id: UUID, payload: ApprovalRespond
) -> ApprovalItem:
    parent = await get_parent_profile(db, user)
    stmt = (
        select(EventApproval, Event)
        .join(Event, Event.id == EventApproval.event_id)
        .where(EventApproval.id == approval_id, EventApproval.parent_id == parent.id, Event.tenant_id == user.tenant_id)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        raise not_found("Approval")
    approval, event = row
    _ensure_open(event)

    approval.status = payload.status.value
    approval.remarks = payload.remarks
    approval.responded_at = utc_now()
    await db.commit()

    await invalidate(
        cache,
        Mutation.APPROVAL_RESPONDED,
        AffectedEntities.of(parents=[parent.id], schools=[user.tenant_id]),
    )
    students = await get_students(db, user.tenant_id, [approval.student_id])
    return ApprovalItem(
        id=approval.id,
        event_id=approval.event_id,
        student_id=approval.student_id,
        student_name=students[0].full_name if students else "",
        status=approval.status,
        remarks=approval.remarks,
        responded_at=approval.responded_at,
    )


async def bulk_respond(
    db: AsyncSession, cache: CacheService, user: CurrentUser, event_id: UUID, payload: ApprovalRespond
) -> BulkRespondResult:
    """Answer every PENDING approval of this parent for one event."""
    parent = await get_parent_profile(db, user)
    event = await _get_event(db, user.tenant_id, event_id)
    _ensure_open(event)

    result = await db.execute(
        update(EventApproval)
        .where(
            EventApproval.event_id == event.id,
            EventApproval.parent_id == parent.id,
            EventApproval.status == ApprovalStatus.PENDING.value,
        )
        .values(status=payload.status.value, remarks=payload.remarks, responded_at=utc_now())
    )
    await db.commit()

    if result.rowcount:
        await invalidate(
            cache,
            Mutation.APPROVAL_RESPONDED,
            AffectedEntities.of(parents=[parent.id], schools=[user.tenant_id]),
        )
    return BulkRespondResult(event_id=event.id, updated=result.rowcount or 0)
