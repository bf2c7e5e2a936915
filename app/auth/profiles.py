"""Server-side profile resolution and relationship guards.

Every check fails closed: a missing profile is 404, a missing relationship is 403.
All lookups stay inside the caller's tenant.
"""
from typing import List
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import ParentProfile, ParentStudent, StudentProfile, TeacherProfile, User
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import access_denied, not_found
from app.core.models import Section, SectionSubjectTeacher, SectionTeacher


async def get_student_profile(db: AsyncSession, user: CurrentUser) -> StudentProfile:
    if user.role != UserRole.STUDENT.value:
        raise access_denied()
    stmt = (
        select(StudentProfile)
        .join(User, User.id == StudentProfile.user_id)
        .where(StudentProfile.user_id == user.id, User.tenant_id == user.tenant_id)
    )
    profile = (await db.execute(stmt)).scalar_one_or_none()
    if profile is None:
        raise not_found("Student profile")
    return profile


async def get_teacher_profile(db: AsyncSession, user: CurrentUser) -> TeacherProfile:
    if user.role != UserRole.TEACHER.value:
        raise access_denied()
    stmt = (
        select(TeacherProfile)
        .join(User, User.id == TeacherProfile.user_id)
        .where(TeacherProfile.user_id == user.id, User.tenant_id == user.tenant_id)
    )
    profile = (await db.execute(stmt)).scalar_one_or_none()
    if profile is None:
        raise not_found("Teacher profile")
    return profile


async def get_parent_profile(db: AsyncSession, user: CurrentUser) -> ParentProfile:
    if user.role != UserRole.PARENT.value:
        raise access_denied()
    stmt = (
        select(ParentProfile)
        .join(User, User.id == ParentProfile.user_id)
        .where(ParentProfile.user_id == user.id, User.tenant_id == user.tenant_id)
    )
    profile = (await db.execute(stmt)).scalar_one_or_none()
    if profile is None:
        raise not_found("Parent profile")
    return profile


async def get_child_ids(db: AsyncSession, parent_id: UUID) -> List[UUID]:
    stmt = (
        select(ParentStudent.student_id)
        .where(ParentStudent.parent_id == parent_id)
        .order_by(ParentStudent.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_parent_ids(db: AsyncSession, student_ids: List[UUID]) -> List[UUID]:
    if not student_ids:
        return []
    stmt = select(ParentStudent.parent_id).where(ParentStudent.student_id.in_(student_ids)).distinct()
    return list((await db.execute(stmt)).scalars().all())


async def ensure_parent_of(db: AsyncSession, parent_id: UUID, student_id: UUID) -> None:
    stmt = select(ParentStudent.id).where(
        ParentStudent.parent_id == parent_id,
        ParentStudent.student_id == student_id,
    )
    if (await db.execute(stmt)).first() is None:
        raise access_denied("Access denied to this student")


async def get_teacher_section_ids(db: AsyncSession, tenant_id: UUID, teacher_id: UUID) -> List[UUID]:
    """Sections the teacher is attached to, directly or through a subject, in a stable order."""
    direct = select(SectionTeacher.section_id).where(SectionTeacher.teacher_id == teacher_id)
    by_subject = select(SectionSubjectTeacher.section_id).where(SectionSubjectTeacher.teacher_id == teacher_id)
    stmt = (
        select(Section.id)
        .where(Section.tenant_id == tenant_id, or_(Section.id.in_(direct), Section.id.in_(by_subject)))
        .order_by(Section.created_at, Section.name)
    )
    return list((await db.execute(stmt)).scalars().all())


async def ensure_teacher_of_section(db: AsyncSession, tenant_id: UUID, teacher_id: UUID, section_id: UUID) -> None:
    if section_id not in await get_teacher_section_ids(db, tenant_id, teacher_id):
        raise access_denied("Access denied to this section")


async def get_section_teacher_ids(db: AsyncSession, section_ids: List[UUID]) -> List[UUID]:
    """Every teacher attached to any of the sections, for cache invalidation fan-out."""
    if not section_ids:
        return []
    direct = select(SectionTeacher.teacher_id).where(SectionTeacher.section_id.in_(section_ids))
    by_subject = select(SectionSubjectTeacher.teacher_id).where(SectionSubjectTeacher.section_id.in_(section_ids))
    return list((await db.execute(direct.union(by_subject))).scalars().all())
