"""Attendance views and marking.

Re-marking a (student, date) updates the existing row. A concurrent first mark that
loses the unique-constraint race is retried once as an update.
"""
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.profiles import (
    ensure_parent_of,
    ensure_teacher_of_section,
    get_parent_ids,
    get_parent_profile,
    get_section_teacher_ids,
    get_student_profile,
    get_teacher_profile,
    get_teacher_section_ids,
)
from app.auth.schemas import CurrentUser
from app.core.aggregates.attendance import monthly_attendance, summarize_attendance
from app.core.aggregates.common import utc_today
from app.core.cache import CacheService
from app.core.cache.invalidation import AffectedEntities, Mutation, invalidate
from app.core.cache.keys import ViewKind
from app.core.cache.readthrough import cached_view
from app.core.exceptions import ServiceError, not_found
from app.core.logging import get_logger
from app.core.models import Attendance
from app.core.schemas import StudentInfo
from app.core.services import count_section_students, get_section_students, get_sections, get_student

from .schemas import (
    AttendanceHistory,
    AttendanceMarkRequest,
    AttendanceMarkResult,
    AttendanceRecordItem,
    RosterEntry,
    TeacherAttendanceOverview,
    TeacherSectionAttendance,
)

log = get_logger("attendance")


# ----- History (student / parent) -----
async def compute_attendance_history(db: AsyncSession, student: StudentInfo) -> AttendanceHistory:
    stmt = select(Attendance).where(Attendance.student_id == student.id).order_by(Attendance.date.desc())
    records = list((await db.execute(stmt)).scalars().all())
    return AttendanceHistory(
        student_id=student.id,
        student_name=student.full_name,
        class_name=student.class_name,
        section_name=student.section_name,
        records=[AttendanceRecordItem.model_validate(r) for r in records],
        stats=summarize_attendance(records),
        monthly_stats=monthly_attendance(records),
    )


async def get_student_attendance(db: AsyncSession, cache: CacheService, user: CurrentUser) -> AttendanceHistory:
    profile = await get_student_profile(db, user)
    student = await get_student(db, user.tenant_id, profile.id)
    if student is None:
        raise not_found("Student")
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.STUDENT_ATTENDANCE,
        student.id,
        AttendanceHistory,
        lambda: compute_attendance_history(db, student),
        {"student": student.id},
    )


async def get_child_attendance(
    db: AsyncSession, cache: CacheService, user: CurrentUser, student_id: UUID
) -> AttendanceHistory:
    parent = await get_parent_profile(db, user)
    await ensure_parent_of(db, parent.id, student_id)
    student = await get_student(db, user.tenant_id, student_id)
    if student is None:
        raise not_found("Student")
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.PARENT_CHILD_ATTENDANCE,
        student.id,
        AttendanceHistory,
        lambda: compute_attendance_history(db, student),
        {"student": student.id},
    )


# ----- Teacher overview -----
async def sections_marked_on(db: AsyncSession, section_ids: List[UUID], on_date: date) -> List[UUID]:
    if not section_ids:
        return []
    stmt = (
        select(Attendance.section_id)
        .where(Attendance.section_id.in_(section_ids), Attendance.date == on_date)
        .distinct()
    )
    return list((await db.execute(stmt)).scalars().all())


async def _compute_teacher_overview(
    db: AsyncSession, tenant_id: UUID, teacher_id: UUID, section_id: Optional[UUID]
) -> TeacherAttendanceOverview:
    today = utc_today()
    section_ids = await get_teacher_section_ids(db, tenant_id, teacher_id)
    sections = await get_sections(db, tenant_id, section_ids)
    counts = await count_section_students(db, section_ids)
    marked = set(await sections_marked_on(db, section_ids, today))

    selected = section_id or (section_ids[0] if section_ids else None)
    roster: List[RosterEntry] = []
    if selected is not None:
        students = await get_section_students(db, tenant_id, [selected])
        stmt = select(Attendance).where(Attendance.section_id == selected, Attendance.date == today)
        today_rows = {row.student_id: row for row in (await db.execute(stmt)).scalars()}
        for student in students:
            row = today_rows.get(student.id)
            roster.append(
                RosterEntry(
                    student_id=student.id,
                    student_name=student.full_name,
                    roll_number=student.roll_number,
                    status=row.status if row else None,
                    remarks=row.remarks if row else None,
                )
            )

    return TeacherAttendanceOverview(
        date=today,
        sections=[
            TeacherSectionAttendance(
                section_id=s.id,
                label=s.label,
                student_count=counts.get(s.id, 0),
                is_marked_today=s.id in marked,
            )
            for s in sections
        ],
        selected_section_id=selected,
        roster=roster,
    )


async def get_teacher_attendance_overview(
    db: AsyncSession, cache: CacheService, user: CurrentUser, section_id: Optional[UUID] = None
) -> TeacherAttendanceOverview:
    teacher = await get_teacher_profile(db, user)
    if section_id is not None:
        await ensure_teacher_of_section(db, user.tenant_id, teacher.id, section_id)
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.TEACHER_ATTENDANCE,
        f"{teacher.id}:{section_id or 'default'}",
        TeacherAttendanceOverview,
        lambda: _compute_teacher_overview(db, user.tenant_id, teacher.id, section_id),
        {"teacher": teacher.id},
    )


# ----- Marking -----
async def _apply_marks(
    db: AsyncSession, tenant_id: UUID, teacher_id: UUID, payload: AttendanceMarkRequest
) -> AttendanceMarkResult:
    entries = {entry.student_id: entry for entry in payload.entries}
    stmt = select(Attendance).where(Attendance.student_id.in_(list(entries)), Attendance.date == payload.date)
    existing: Dict[UUID, Attendance] = {row.student_id: row for row in (await db.execute(stmt)).scalars()}

    created = updated = 0
    for student_id, entry in entries.items():
        row = existing.get(student_id)
        if row is None:
            db.add(
                Attendance(
                    tenant_id=tenant_id,
                    student_id=student_id,
                    section_id=payload.section_id,
                    date=payload.date,
                    status=entry.status.value,
                    remarks=entry.remarks,
                    marked_by=teacher_id,
                )
            )
            created += 1
        else:
            row.status = entry.status.value
            row.remarks = entry.remarks
            row.section_id = payload.section_id
            row.marked_by = teacher_id
            updated += 1
    await db.commit()
    return AttendanceMarkResult(section_id=payload.section_id, date=payload.date, created=created, updated=updated)


async def mark_attendance(
    db: AsyncSession, cache: CacheService, user: CurrentUser, payload: AttendanceMarkRequest
) -> AttendanceMarkResult:
    teacher = await get_teacher_profile(db, user)
    await ensure_teacher_of_section(db, user.tenant_id, teacher.id, payload.section_id)

    if payload.date > utc_today():
        raise ServiceError("Cannot mark attendance for a future date", status.HTTP_400_BAD_REQUEST)

    roster = {s.id for s in await get_section_students(db, user.tenant_id, [payload.section_id])}
    outsiders = [e.student_id for e in payload.entries if e.student_id not in roster]
    if outsiders:
        raise ServiceError("Student does not belong to this section", status.HTTP_400_BAD_REQUEST)

    teacher_id = teacher.id
    try:
        result = await _apply_marks(db, user.tenant_id, teacher_id, payload)
    except IntegrityError:
        # Rollback expires the loaded profile; only the captured id is used from here.
        await db.rollback()
        log.warning("Attendance insert raced for section %s on %s; retrying as update", payload.section_id, payload.date)
        result = await _apply_marks(db, user.tenant_id, teacher_id, payload)

    student_ids = list({e.student_id for e in payload.entries})
    await invalidate(
        cache,
        Mutation.ATTENDANCE_MARKED,
        AffectedEntities.of(
            students=student_ids,
            sections=[payload.section_id],
            teachers=await get_section_teacher_ids(db, [payload.section_id]),
            parents=await get_parent_ids(db, student_ids),
        ),
    )
    return result
