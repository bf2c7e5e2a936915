"""Role dashboards and the student timetable. Every view is read-through cached."""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.attendance.service import sections_marked_on
from app.api.v1.events.service import get_pending_approvals
from app.api.v1.fees.service import get_student_invoices
from app.api.v1.grades.service import graded_counts, student_results
from app.auth.models import StudentProfile, TeacherProfile, User
from app.auth.profiles import (
    get_child_ids,
    get_parent_profile,
    get_student_profile,
    get_teacher_profile,
    get_teacher_section_ids,
)
from app.auth.schemas import CurrentUser
from app.core.aggregates.attendance import attendance_by_student, summarize_attendance
from app.core.aggregates.common import round_half_up, start_of_month, utc_now, utc_today
from app.core.aggregates.dashboard import approval_counts, assessments_needing_grading, sections_pending_attendance
from app.core.aggregates.fees import outstanding_by_student, summarize_invoices
from app.core.cache import CacheService
from app.core.cache.keys import ViewKind
from app.core.cache.readthrough import cached_view
from app.core.enums import UserRole
from app.core.exceptions import not_found
from app.core.logging import get_logger
from app.core.models import (
    Assessment,
    Attendance,
    Event,
    EventApproval,
    FeeInvoice,
    SchoolClass,
    Section,
    SectionTeacher,
    Subject,
    TimetableSlot,
)
from app.core.schemas import StudentInfo
from app.core.services import (
    count_section_students,
    get_announcements,
    get_section_students,
    get_sections,
    get_student,
    get_students,
    get_teacher_subjects,
    get_upcoming_events_for_class,
)

from .schemas import (
    AdminDashboard,
    AssessmentSummary,
    ChildSummary,
    ClassEnrollment,
    ParentDashboard,
    RecentGrade,
    StudentDashboard,
    StudentTimetable,
    TeacherClasses,
    TeacherClassSection,
    TeacherDashboard,
    TeacherSectionSummary,
    TimetableEntry,
)

log = get_logger("dashboard")

RECENT_GRADES_LIMIT = 5
RECENT_ASSESSMENTS_LIMIT = 5
ANNOUNCEMENTS_LIMIT = 3


# ----- Shared helpers -----
async def timetable_entries(
    db: AsyncSession,
    section_ids: Sequence[UUID] = (),
    teacher_id: Optional[UUID] = None,
    day_of_week: Optional[int] = None,
) -> List[TimetableEntry]:
    """Timetable slots of some sections or one teacher, ordered by day then start time."""
    stmt = (
        select(
            TimetableSlot,
            Subject.name.label("subject_name"),
            Subject.color.label("subject_color"),
            User.full_name.label("teacher_name"),
            Section.name.label("section_name"),
            SchoolClass.name.label("class_name"),
        )
        .join(Subject, Subject.id == TimetableSlot.subject_id)
        .join(Section, Section.id == TimetableSlot.section_id)
        .join(SchoolClass, SchoolClass.id == Section.class_id)
        .outerjoin(TeacherProfile, TeacherProfile.id == TimetableSlot.teacher_id)
        .outerjoin(User, User.id == TeacherProfile.user_id)
    )
    if section_ids:
        stmt = stmt.where(TimetableSlot.section_id.in_(list(section_ids)))
    if teacher_id is not None:
        stmt = stmt.where(TimetableSlot.teacher_id == teacher_id)
    if day_of_week is not None:
        stmt = stmt.where(TimetableSlot.day_of_week == day_of_week)
    stmt = stmt.order_by(TimetableSlot.day_of_week, TimetableSlot.start_time)

    return [
        TimetableEntry(
            id=slot.id,
            day_of_week=slot.day_of_week,
            start_time=slot.start_time,
            end_time=slot.end_time,
            subject_id=slot.subject_id,
            subject_name=subject_name,
            subject_color=subject_color,
            teacher_name=teacher_name,
            section_label=f"{class_name} - {section_name}",
            room=slot.room,
        )
        for slot, subject_name, subject_color, teacher_name, section_name, class_name in (await db.execute(stmt)).all()
    ]


async def recent_grades(db: AsyncSession, student_id: UUID, limit: int = RECENT_GRADES_LIMIT) -> List[RecentGrade]:
    return [
        RecentGrade(
            assessment_id=r.assessment_id,
            title=r.title,
            subject_name=r.subject_name,
            subject_color=r.subject_color,
            marks_obtained=r.marks_obtained,
            total_marks=r.total_marks,
            percentage=r.percentage,
            grade=r.grade,
            date=r.date,
        )
        for r in (await student_results(db, student_id))[:limit]
    ]


async def _month_attendance(db: AsyncSession, student_ids: Sequence[UUID]) -> List[Attendance]:
    if not student_ids:
        return []
    stmt = select(Attendance).where(
        Attendance.student_id.in_(list(student_ids)),
        Attendance.date >= start_of_month(utc_today()),
    )
    return list((await db.execute(stmt)).scalars().all())


async def _resolve_student(db: AsyncSession, user: CurrentUser) -> StudentInfo:
    profile = await get_student_profile(db, user)
    student = await get_student(db, user.tenant_id, profile.id)
    if student is None:
        raise not_found("Student")
    return student


# ----- Student -----
async def _compute_student_dashboard(db: AsyncSession, tenant_id: UUID, student: StudentInfo) -> StudentDashboard:
    today = utc_today()
    attendance = summarize_attendance(await _month_attendance(db, [student.id]))

    assessment_count = 0
    today_classes: List[TimetableEntry] = []
    if student.section_id is not None:
        assessment_count = (
            await db.execute(select(func.count(Assessment.id)).where(Assessment.section_id == student.section_id))
        ).scalar_one()
        today_classes = await timetable_entries(db, [student.section_id], day_of_week=today.weekday())

    return StudentDashboard(
        student_id=student.id,
        student_name=student.full_name,
        class_name=student.class_name,
        section_name=student.section_name,
        attendance_percentage=attendance.percentage,
        assessment_count=assessment_count,
        upcoming_events=await get_upcoming_events_for_class(db, tenant_id, student.class_name),
        today_classes=today_classes,
        recent_grades=await recent_grades(db, student.id),
        announcements=await get_announcements(db, tenant_id, "STUDENTS", ANNOUNCEMENTS_LIMIT),
    )


async def get_student_dashboard(db: AsyncSession, cache: CacheService, user: CurrentUser) -> StudentDashboard:
    student = await _resolve_student(db, user)
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.STUDENT_DASHBOARD,
        student.id,
        StudentDashboard,
        lambda: _compute_student_dashboard(db, user.tenant_id, student),
        {"student": student.id, "section": student.section_id},
    )


async def _compute_student_timetable(db: AsyncSession, section_id: Optional[UUID]) -> StudentTimetable:
    days: Dict[int, List[TimetableEntry]] = defaultdict(list)
    if section_id is not None:
        for entry in await timetable_entries(db, [section_id]):
            days[entry.day_of_week].append(entry)
    return StudentTimetable(section_id=section_id, days=dict(days))


async def get_student_timetable(db: AsyncSession, cache: CacheService, user: CurrentUser) -> StudentTimetable:
    student = await _resolve_student(db, user)
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.STUDENT_TIMETABLE,
        student.id,
        StudentTimetable,
        lambda: _compute_student_timetable(db, student.section_id),
        {"section": student.section_id},
    )


# ----- Teacher -----
async def _compute_teacher_dashboard(
    db: AsyncSession, tenant_id: UUID, teacher_id: UUID, teacher_name: str
) -> TeacherDashboard:
    today = utc_today()
    section_ids = await get_teacher_section_ids(db, tenant_id, teacher_id)
    sections = await get_sections(db, tenant_id, section_ids)
    counts = await count_section_students(db, section_ids)
    summaries = {
        s.id: TeacherSectionSummary(section_id=s.id, label=s.label, student_count=counts.get(s.id, 0))
        for s in sections
    }

    pending = sections_pending_attendance(
        [s.id for s in sections], await sections_marked_on(db, section_ids, today)
    )

    assessments = []
    if section_ids:
        stmt = (
            select(Assessment, Subject.name)
            .join(Subject, Subject.id == Assessment.subject_id)
            .where(Assessment.tenant_id == tenant_id, Assessment.section_id.in_(section_ids))
            .order_by(Assessment.date.desc(), Assessment.created_at.desc())
        )
        assessments = (await db.execute(stmt)).all()
    graded = await graded_counts(db, [a.id for a, _ in assessments])

    def _summary(assessment: Assessment, subject_name: str) -> AssessmentSummary:
        section = summaries.get(assessment.section_id)
        return AssessmentSummary(
            id=assessment.id,
            title=assessment.title,
            type=assessment.type,
            section_id=assessment.section_id,
            section_label=section.label if section else None,
            subject_name=subject_name,
            date=assessment.date,
            total_marks=assessment.total_marks,
            graded_count=graded.get(assessment.id, 0),
            student_count=counts.get(assessment.section_id, 0),
        )

    # Assessments dated in the future cannot be graded yet.
    enrolled = {a.id: counts.get(a.section_id, 0) for a, _ in assessments if a.date <= today}
    needing = set(assessments_needing_grading(graded, enrolled))

    return TeacherDashboard(
        teacher_id=teacher_id,
        teacher_name=teacher_name,
        sections=list(summaries.values()),
        total_students=sum(counts.get(s.id, 0) for s in sections),
        today_classes=await timetable_entries(db, teacher_id=teacher_id, day_of_week=today.weekday()),
        sections_pending_attendance=[summaries[sid] for sid in pending],
        assessments_needing_grading=[_summary(a, name) for a, name in assessments if a.id in needing],
        recent_assessments=[_summary(a, name) for a, name in assessments[:RECENT_ASSESSMENTS_LIMIT]],
    )


async def get_teacher_dashboard(db: AsyncSession, cache: CacheService, user: CurrentUser) -> TeacherDashboard:
    teacher = await get_teacher_profile(db, user)
    teacher_name = (await db.execute(select(User.full_name).where(User.id == user.id))).scalar_one()
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.TEACHER_DASHBOARD,
        teacher.id,
        TeacherDashboard,
        lambda: _compute_teacher_dashboard(db, user.tenant_id, teacher.id, teacher_name),
        {"teacher": teacher.id},
    )


async def _compute_teacher_classes(db: AsyncSession, tenant_id: UUID, teacher_id: UUID) -> TeacherClasses:
    section_ids = await get_teacher_section_ids(db, tenant_id, teacher_id)
    if not section_ids:
        return TeacherClasses(teacher_id=teacher_id, subjects=await get_teacher_subjects(db, tenant_id, teacher_id))

    stmt = (
        select(Section, SchoolClass.name.label("class_name"))
        .join(SchoolClass, SchoolClass.id == Section.class_id)
        .where(Section.id.in_(section_ids))
        .order_by(SchoolClass.display_order, SchoolClass.name, Section.name)
    )
    rows = (await db.execute(stmt)).all()
    class_teacher_of = set(
        (await db.execute(select(SectionTeacher.section_id).where(SectionTeacher.teacher_id == teacher_id))).scalars()
    )
    rosters: Dict[UUID, List[StudentInfo]] = defaultdict(list)
    for student in await get_section_students(db, tenant_id, section_ids):
        rosters[student.section_id].append(student)

    return TeacherClasses(
        teacher_id=teacher_id,
        sections=[
            TeacherClassSection(
                section_id=section.id,
                name=section.name,
                class_id=section.class_id,
                class_name=class_name,
                is_class_teacher=section.id in class_teacher_of,
                capacity=section.capacity,
                student_count=len(rosters[section.id]),
                students=rosters[section.id],
            )
            for section, class_name in rows
        ],
        subjects=await get_teacher_subjects(db, tenant_id, teacher_id),
    )


async def get_teacher_classes(db: AsyncSession, cache: CacheService, user: CurrentUser) -> TeacherClasses:
    teacher = await get_teacher_profile(db, user)
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.TEACHER_CLASSES,
        teacher.id,
        TeacherClasses,
        lambda: _compute_teacher_classes(db, user.tenant_id, teacher.id),
        {"teacher": teacher.id},
    )


# ----- Parent -----
async def _compute_parent_dashboard(db: AsyncSession, tenant_id: UUID, parent_id: UUID) -> ParentDashboard:
    today = utc_today()
    children = await get_students(db, tenant_id, await get_child_ids(db, parent_id))
    child_ids = [c.id for c in children]

    month_records = await _month_attendance(db, child_ids)
    attendance = attendance_by_student(month_records)
    outstanding = outstanding_by_student(await get_student_invoices(db, tenant_id, child_ids), today)

    summaries = []
    for child in children:
        latest = await recent_grades(db, child.id, limit=1)
        summaries.append(
            ChildSummary(
                student_id=child.id,
                student_name=child.full_name,
                class_name=child.class_name,
                section_name=child.section_name,
                attendance_percentage=attendance.get(child.id, 0),
                outstanding_fees=outstanding.get(child.id, 0),
                latest_grade=latest[0] if latest else None,
            )
        )

    # Children with no records this month do not pull the average down.
    with_records = [attendance[c.id] for c in children if c.id in attendance]
    return ParentDashboard(
        parent_id=parent_id,
        children=summaries,
        average_attendance=round_half_up(sum(with_records) / len(with_records)) if with_records else None,
        total_outstanding=sum(outstanding.values(), 0),
        announcements=await get_announcements(db, tenant_id, "PARENTS", ANNOUNCEMENTS_LIMIT),
        pending_approvals=await get_pending_approvals(db, tenant_id, parent_id),
    )


async def get_parent_dashboard(db: AsyncSession, cache: CacheService, user: CurrentUser) -> ParentDashboard:
    parent = await get_parent_profile(db, user)
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.PARENT_DASHBOARD,
        parent.id,
        ParentDashboard,
        lambda: _compute_parent_dashboard(db, user.tenant_id, parent.id),
        {"parent": parent.id},
    )


# ----- Admin -----
async def _count(db: AsyncSession, stmt) -> int:
    return (await db.execute(stmt)).scalar_one()


async def _compute_admin_dashboard(db: AsyncSession, tenant_id: UUID) -> AdminDashboard:
    role_rows = await db.execute(
        select(User.role, func.count(User.id)).where(User.tenant_id == tenant_id).group_by(User.role)
    )
    users_by_role = {role: count for role, count in role_rows.all()}

    enrollment_stmt = (
        select(SchoolClass.id, SchoolClass.name, func.count(StudentProfile.id))
        .outerjoin(Section, Section.class_id == SchoolClass.id)
        .outerjoin(
            StudentProfile,
            and_(StudentProfile.section_id == Section.id, StudentProfile.status == "ACTIVE"),
        )
        .where(SchoolClass.tenant_id == tenant_id)
        .group_by(SchoolClass.id, SchoolClass.name, SchoolClass.display_order)
        .order_by(SchoolClass.display_order, SchoolClass.name)
    )
    students_per_class = [
        ClassEnrollment(class_id=class_id, class_name=name, student_count=count)
        for class_id, name, count in (await db.execute(enrollment_stmt)).all()
    ]

    invoices = (await db.execute(select(FeeInvoice).where(FeeInvoice.tenant_id == tenant_id))).scalars().all()
    statuses = (
        await db.execute(
            select(EventApproval.status)
            .join(Event, Event.id == EventApproval.event_id)
            .where(Event.tenant_id == tenant_id)
        )
    ).scalars().all()

    return AdminDashboard(
        users_by_role=users_by_role,
        total_students=users_by_role.get(UserRole.STUDENT.value, 0),
        total_teachers=users_by_role.get(UserRole.TEACHER.value, 0),
        total_parents=users_by_role.get(UserRole.PARENT.value, 0),
        total_classes=len(students_per_class),
        total_sections=await _count(db, select(func.count(Section.id)).where(Section.tenant_id == tenant_id)),
        total_subjects=await _count(db, select(func.count(Subject.id)).where(Subject.tenant_id == tenant_id)),
        fees=summarize_invoices(invoices, utc_today()),
        students_per_class=students_per_class,
        approvals=approval_counts(statuses),
        generated_at=utc_now(),
    )


async def get_admin_dashboard(db: AsyncSession, cache: CacheService, user: CurrentUser) -> AdminDashboard:
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.ADMIN_DASHBOARD,
        user.tenant_id,
        AdminDashboard,
        lambda: _compute_admin_dashboard(db, user.tenant_id),
        {"school": user.tenant_id},
    )
