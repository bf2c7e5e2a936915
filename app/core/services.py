"""Shared read helpers over the school directory (students, sections, announcements, events).

All helpers are tenant-scoped and return plain schemas, never ORM rows, so callers can
hand the results straight to the aggregators.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import StudentProfile, User
from app.core.aggregates.common import utc_now
from app.core.enums import AUDIENCE_ALL
from app.core.models import Announcement, Event, SchoolClass, Section, SectionSubjectTeacher, Subject
from app.core.schemas import AnnouncementItem, EventItem, SectionInfo, StudentInfo, SubjectInfo


def _student_query(tenant_id: UUID):
    return (
        select(
            StudentProfile.id,
            StudentProfile.user_id,
            StudentProfile.roll_number,
            StudentProfile.section_id,
            User.full_name,
            Section.name.label("section_name"),
            SchoolClass.id.label("class_id"),
            SchoolClass.name.label("class_name"),
        )
        .join(User, User.id == StudentProfile.user_id)
        .outerjoin(Section, Section.id == StudentProfile.section_id)
        .outerjoin(SchoolClass, SchoolClass.id == Section.class_id)
        .where(User.tenant_id == tenant_id)
    )


def _to_student_info(row) -> StudentInfo:
    return StudentInfo(
        id=row.id,
        user_id=row.user_id,
        full_name=row.full_name,
        roll_number=row.roll_number,
        section_id=row.section_id,
        section_name=row.section_name,
        class_id=row.class_id,
        class_name=row.class_name,
    )


async def get_students(db: AsyncSession, tenant_id: UUID, student_ids: Iterable[UUID]) -> List[StudentInfo]:
    """Students by id, in the order given. Ids outside the tenant are dropped."""
    ids = list(student_ids)
    if not ids:
        return []
    rows = (await db.execute(_student_query(tenant_id).where(StudentProfile.id.in_(ids)))).all()
    by_id = {row.id: _to_student_info(row) for row in rows}
    return [by_id[i] for i in ids if i in by_id]


async def get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Optional[StudentInfo]:
    found = await get_students(db, tenant_id, [student_id])
    return found[0] if found else None


async def get_section_students(
    db: AsyncSession,
    tenant_id: UUID,
    section_ids: Sequence[UUID],
    active_only: bool = True,
) -> List[StudentInfo]:
    if not section_ids:
        return []
    stmt = _student_query(tenant_id).where(StudentProfile.section_id.in_(section_ids))
    if active_only:
        stmt = stmt.where(StudentProfile.status == "ACTIVE")
    stmt = stmt.order_by(StudentProfile.roll_number, User.full_name)
    return [_to_student_info(row) for row in (await db.execute(stmt)).all()]


async def count_section_students(db: AsyncSession, section_ids: Sequence[UUID]) -> Dict[UUID, int]:
    if not section_ids:
        return {}
    stmt = (
        select(StudentProfile.section_id, func.count(StudentProfile.id))
        .where(StudentProfile.section_id.in_(section_ids), StudentProfile.status == "ACTIVE")
        .group_by(StudentProfile.section_id)
    )
    return {section_id: count for section_id, count in (await db.execute(stmt)).all()}


async def get_sections(db: AsyncSession, tenant_id: UUID, section_ids: Sequence[UUID]) -> List[SectionInfo]:
    """Sections by id, in the order given."""
    if not section_ids:
        return []
    stmt = (
        select(Section.id, Section.name, SchoolClass.id.label("class_id"), SchoolClass.name.label("class_name"))
        .join(SchoolClass, SchoolClass.id == Section.class_id)
        .where(Section.tenant_id == tenant_id, Section.id.in_(section_ids))
    )
    by_id = {
        row.id: SectionInfo(id=row.id, name=row.name, class_id=row.class_id, class_name=row.class_name)
        for row in (await db.execute(stmt)).all()
    }
    return [by_id[i] for i in section_ids if i in by_id]


async def get_teacher_subjects(db: AsyncSession, tenant_id: UUID, teacher_id: UUID) -> List[SubjectInfo]:
    """Subjects the teacher teaches in any section, by name."""
    taught = select(SectionSubjectTeacher.subject_id).where(SectionSubjectTeacher.teacher_id == teacher_id)
    stmt = (
        select(Subject)
        .where(Subject.tenant_id == tenant_id, Subject.id.in_(taught))
        .order_by(Subject.name)
    )
    return [SubjectInfo.model_validate(s) for s in (await db.execute(stmt)).scalars()]


async def get_announcements(
    db: AsyncSession,
    tenant_id: UUID,
    audience: str,
    limit: int = 3,
    now: Optional[datetime] = None,
) -> List[AnnouncementItem]:
    """Published announcements visible to an audience (STUDENTS, PARENTS, TEACHERS), newest first."""
    now = now or utc_now()
    stmt = (
        select(Announcement)
        .where(Announcement.tenant_id == tenant_id, Announcement.publish_at <= now)
        .order_by(Announcement.publish_at.desc())
    )
    items: List[AnnouncementItem] = []
    # audience is a JSON list, filtered here so the query stays portable
    for announcement in (await db.execute(stmt)).scalars():
        targets = {str(a).upper() for a in (announcement.audience or [])}
        if not targets or "ALL" in targets or audience.upper() in targets:
            items.append(AnnouncementItem.model_validate(announcement))
            if len(items) >= limit:
                break
    return items


def targets_everyone(target_audience: Iterable[str]) -> bool:
    """Empty audience and the "All" sentinel (any case) reach every student."""
    targets = [str(t) for t in (target_audience or [])]
    return not targets or any(t.lower() == AUDIENCE_ALL.lower() for t in targets)


def audience_includes(target_audience: Iterable[str], class_name: Optional[str]) -> bool:
    """True when an event's audience reaches a student of class_name."""
    if targets_everyone(target_audience):
        return True
    targets = [str(t) for t in target_audience]
    return class_name is not None and class_name in targets


async def get_upcoming_events_for_class(
    db: AsyncSession,
    tenant_id: UUID,
    class_name: Optional[str],
    limit: int = 5,
    now: Optional[datetime] = None,
) -> List[EventItem]:
    now = now or utc_now()
    stmt = (
        select(Event)
        .where(Event.tenant_id == tenant_id, Event.start_date >= now)
        .order_by(Event.start_date)
    )
    items: List[EventItem] = []
    for event in (await db.execute(stmt)).scalars():
        if audience_includes(event.target_audience, class_name):
            items.append(EventItem.model_validate(event))
            if len(items) >= limit:
                break
    return items
