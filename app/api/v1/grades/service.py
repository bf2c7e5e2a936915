"""Grade views, gradebook and result recording. Percentages and grades are derived from marks."""

from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
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
from app.core.aggregates.grades import (
    grade_for_percentage,
    gradebook_row,
    gradebook_stats,
    percentage,
    subject_breakdown,
    summarize_scores,
)
from app.core.aggregates.trends import classify_trend
from app.core.cache import CacheService
from app.core.cache.invalidation import AffectedEntities, Mutation, invalidate
from app.core.cache.keys import ViewKind
from app.core.cache.readthrough import cached_view
from app.core.config import settings
from app.core.exceptions import ServiceError, not_found
from app.core.logging import get_logger
from app.core.models import Assessment, AssessmentResult, Subject
from app.core.schemas import StudentInfo
from app.core.services import (
    count_section_students,
    get_section_students,
    get_sections,
    get_student,
    get_teacher_subjects,
)

from .schemas import (
    Gradebook,
    GradebookAssessment,
    GradeResultItem,
    GradesReport,
    RecordResultsRequest,
    RecordResultsResult,
    TeacherAssessmentItem,
    TeacherAssessments,
)

log = get_logger("grades")


# ----- Student / parent report -----
async def student_results(db: AsyncSession, student_id: UUID) -> List[GradeResultItem]:
    """Results of one student, newest assessment first."""
    stmt = (
        select(AssessmentResult, Assessment, Subject)
        .join(Assessment, Assessment.id == AssessmentResult.assessment_id)
        .join(Subject, Subject.id == Assessment.subject_id)
        .where(AssessmentResult.student_id == student_id)
        .order_by(Assessment.date.desc(), Assessment.created_at.desc())
    )
    items = []
    for result, assessment, subject in (await db.execute(stmt)).all():
        items.append(
            GradeResultItem(
                id=result.id,
                assessment_id=assessment.id,
                title=assessment.title,
                type=assessment.type,
                subject_id=subject.id,
                subject_name=subject.name,
                subject_color=subject.color,
                marks_obtained=result.marks_obtained,
                total_marks=assessment.total_marks,
                percentage=percentage(result.marks_obtained, assessment.total_marks),
                grade=result.grade,
                date=assessment.date,
                remarks=result.remarks,
            )
        )
    return items


async def section_average(db: AsyncSession, section_id: Optional[UUID]) -> Optional[float]:
    """Average percentage over every result recorded in the section. None without results."""
    if section_id is None:
        return None
    stmt = (
        select(AssessmentResult.marks_obtained, Assessment.total_marks)
        .join(Assessment, Assessment.id == AssessmentResult.assessment_id)
        .where(Assessment.section_id == section_id)
    )
    stats = summarize_scores(percentage(marks, total) for marks, total in (await db.execute(stmt)).all())
    return stats.average


async def compute_grades_report(db: AsyncSession, student: StudentInfo) -> GradesReport:
    results = await student_results(db, student.id)
    overall = summarize_scores(r.percentage for r in results)
    cohort = await section_average(db, student.section_id)
    return GradesReport(
        student_id=student.id,
        student_name=student.full_name,
        class_name=student.class_name,
        section_name=student.section_name,
        results=results,
        subject_stats=subject_breakdown(results),
        overall=overall,
        section_average=cohort,
        trend=classify_trend(overall.average, cohort, settings.trend_margin),
    )


async def get_student_grades(db: AsyncSession, cache: CacheService, user: CurrentUser) -> GradesReport:
    profile = await get_student_profile(db, user)
    student = await get_student(db, user.tenant_id, profile.id)
    if student is None:
        raise not_found("Student")
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.STUDENT_GRADES,
        student.id,
        GradesReport,
        lambda: compute_grades_report(db, student),
        {"student": student.id, "section": student.section_id},
    )


async def get_child_grades(db: AsyncSession, cache: CacheService, user: CurrentUser, student_id: UUID) -> GradesReport:
    parent = await get_parent_profile(db, user)
    await ensure_parent_of(db, parent.id, student_id)
    student = await get_student(db, user.tenant_id, student_id)
    if student is None:
        raise not_found("Student")
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.PARENT_CHILD_GRADES,
        student.id,
        GradesReport,
        lambda: compute_grades_report(db, student),
        {"student": student.id, "section": student.section_id},
    )


# ----- Teacher gradebook -----
async def _compute_gradebook(
    db: AsyncSession,
    tenant_id: UUID,
    section_id: Optional[UUID],
    subject_id: Optional[UUID],
) -> Gradebook:
    if section_id is None:
        return Gradebook(subject_id=subject_id, assessments=[], rows=[], stats=gradebook_stats([], 0))

    sections = await get_sections(db, tenant_id, [section_id])
    students = await get_section_students(db, tenant_id, [section_id])

    stmt = (
        select(Assessment, Subject)
        .join(Subject, Subject.id == Assessment.subject_id)
        .where(Assessment.section_id == section_id)
        .order_by(Assessment.date.desc(), Assessment.created_at.desc())
    )
    if subject_id is not None:
        stmt = stmt.where(Assessment.subject_id == subject_id)
    pairs = (await db.execute(stmt)).all()
    assessments = [a for a, _ in pairs]

    by_student: Dict[UUID, Dict[UUID, AssessmentResult]] = {}
    if assessments:
        results_stmt = select(AssessmentResult).where(
            AssessmentResult.assessment_id.in_([a.id for a in assessments])
        )
        for result in (await db.execute(results_stmt)).scalars():
            by_student.setdefault(result.student_id, {})[result.assessment_id] = result

    rows = [
        gradebook_row(s.id, s.full_name, s.roll_number, assessments, by_student.get(s.id, {}))
        for s in students
    ]
    return Gradebook(
        section_id=section_id,
        section_label=sections[0].label if sections else None,
        subject_id=subject_id,
        assessments=[
            GradebookAssessment(
                id=a.id,
                title=a.title,
                type=a.type,
                total_marks=a.total_marks,
                date=a.date,
                subject_id=subj.id,
                subject_name=subj.name,
                subject_color=subj.color,
            )
            for a, subj in pairs
        ],
        rows=rows,
        stats=gradebook_stats(rows, len(assessments)),
    )


async def get_gradebook(
    db: AsyncSession,
    cache: CacheService,
    user: CurrentUser,
    section_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
) -> Gradebook:
    """Gradebook for one section; defaults to the teacher's first section."""
    teacher = await get_teacher_profile(db, user)
    if section_id is not None:
        await ensure_teacher_of_section(db, user.tenant_id, teacher.id, section_id)
    else:
        section_ids = await get_teacher_section_ids(db, user.tenant_id, teacher.id)
        section_id = section_ids[0] if section_ids else None

    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.TEACHER_GRADEBOOK,
        f"{teacher.id}:{section_id}:{subject_id or 'all'}",
        Gradebook,
        lambda: _compute_gradebook(db, user.tenant_id, section_id, subject_id),
        {"teacher": teacher.id},
    )


async def graded_counts(db: AsyncSession, assessment_ids: List[UUID]) -> Dict[UUID, int]:
    """Number of recorded results per assessment."""
    if not assessment_ids:
        return {}
    stmt = (
        select(AssessmentResult.assessment_id, func.count(AssessmentResult.id))
        .where(AssessmentResult.assessment_id.in_(assessment_ids))
        .group_by(AssessmentResult.assessment_id)
    )
    return {assessment_id: count for assessment_id, count in (await db.execute(stmt)).all()}


async def _compute_teacher_assessments(db: AsyncSession, tenant_id: UUID, teacher_id: UUID) -> TeacherAssessments:
    sections = await get_sections(db, tenant_id, await get_teacher_section_ids(db, tenant_id, teacher_id))

    stmt = (
        select(Assessment, Subject)
        .join(Subject, Subject.id == Assessment.subject_id)
        .where(Assessment.tenant_id == tenant_id, Assessment.created_by == teacher_id)
        .order_by(Assessment.date.desc(), Assessment.created_at.desc())
    )
    pairs = (await db.execute(stmt)).all()
    # An assessment can outlive the teacher's assignment to its section.
    labels = {s.id: s.label for s in await get_sections(db, tenant_id, list({a.section_id for a, _ in pairs}))}
    graded = await graded_counts(db, [a.id for a, _ in pairs])
    enrolled = await count_section_students(db, list(labels))

    return TeacherAssessments(
        assessments=[
            TeacherAssessmentItem(
                id=a.id,
                title=a.title,
                type=a.type,
                total_marks=a.total_marks,
                date=a.date,
                description=a.description,
                section_id=a.section_id,
                section_label=labels.get(a.section_id, ""),
                subject_id=subject.id,
                subject_name=subject.name,
                subject_color=subject.color,
                graded_count=graded.get(a.id, 0),
                total_students=enrolled.get(a.section_id, 0),
                created_at=a.created_at,
            )
            for a, subject in pairs
        ],
        sections=sections,
        subjects=await get_teacher_subjects(db, tenant_id, teacher_id),
    )


async def get_teacher_assessments(
    db: AsyncSession,
    cache: CacheService,
    user: CurrentUser,
    section_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
) -> TeacherAssessments:
    """The teacher's assessments, newest first. Filters apply to the cached list."""
    teacher = await get_teacher_profile(db, user)
    view = await cached_view(
        cache,
        user.tenant_id,
        ViewKind.TEACHER_ASSESSMENTS,
        teacher.id,
        TeacherAssessments,
        lambda: _compute_teacher_assessments(db, user.tenant_id, teacher.id),
        {"teacher": teacher.id},
    )
    view.assessments = [
        a
        for a in view.assessments
        if (section_id is None or a.section_id == section_id) and (subject_id is None or a.subject_id == subject_id)
    ]
    return view


# ----- Recording -----
async def _apply_results(db: AsyncSession, assessment: Assessment, payload: RecordResultsRequest) -> RecordResultsResult:
    entries = {entry.student_id: entry for entry in payload.entries}
    stmt = select(AssessmentResult).where(
        AssessmentResult.assessment_id == assessment.id,
        AssessmentResult.student_id.in_(list(entries)),
    )
    existing = {row.student_id: row for row in (await db.execute(stmt)).scalars()}

    created = updated = 0
    for student_id, entry in entries.items():
        grade = grade_for_percentage(percentage(entry.marks_obtained, assessment.total_marks))
        row = existing.get(student_id)
        if row is None:
            db.add(
                AssessmentResult(
                    assessment_id=assessment.id,
                    student_id=student_id,
                    marks_obtained=entry.marks_obtained,
                    grade=grade,
                    remarks=entry.remarks,
                )
            )
            created += 1
        else:
            row.marks_obtained = entry.marks_obtained
            row.grade = grade
            row.remarks = entry.remarks
            updated += 1
    await db.commit()
    return RecordResultsResult(assessment_id=assessment.id, created=created, updated=updated)


async def record_results(
    db: AsyncSession,
    cache: CacheService,
    user: CurrentUser,
    assessment_id: UUID,
    payload: RecordResultsRequest,
) -> RecordResultsResult:
    teacher = await get_teacher_profile(db, user)
    stmt = select(Assessment).where(Assessment.id == assessment_id, Assessment.tenant_id == user.tenant_id)
    assessment = (await db.execute(stmt)).scalar_one_or_none()
    if assessment is None:
        raise not_found("Assessment")
    await ensure_teacher_of_section(db, user.tenant_id, teacher.id, assessment.section_id)

    for entry in payload.entries:
        if entry.marks_obtained > assessment.total_marks:
            raise ServiceError(
                f"Marks cannot exceed total marks ({assessment.total_marks})",
                status.HTTP_400_BAD_REQUEST,
            )
    roster = {s.id for s in await get_section_students(db, user.tenant_id, [assessment.section_id])}
    if any(e.student_id not in roster for e in payload.entries):
        raise ServiceError("Student does not belong to this section", status.HTTP_400_BAD_REQUEST)

    section_id, author_id = assessment.section_id, assessment.created_by
    try:
        result = await _apply_results(db, assessment, payload)
    except IntegrityError:
        await db.rollback()
        log.warning("Result insert raced for assessment %s; retrying as update", assessment_id)
        assessment = (await db.execute(stmt)).scalar_one()
        result = await _apply_results(db, assessment, payload)

    student_ids = list({e.student_id for e in payload.entries})
    await invalidate(
        cache,
        Mutation.RESULTS_RECORDED,
        AffectedEntities.of(
            students=student_ids,
            sections=[section_id],
            teachers=[author_id, *await get_section_teacher_ids(db, [section_id])],
            parents=await get_parent_ids(db, student_ids),
        ),
    )
    return result
