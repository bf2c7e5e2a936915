from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.aggregates.common import round_half_up


GRADE_BANDS = ((90, "A+"), (80, "A"), (70, "B"))
LOWEST_GRADE = "C"


class ScoreStats(BaseModel):
    """Summary of percentage scores. has_data False means "no data", not zero."""

    count: int = 0
    average: Optional[int] = None
    highest: Optional[float] = None
    lowest: Optional[float] = None
    has_data: bool = False


class SubjectScores(BaseModel):
    subject_id: UUID
    subject_name: str
    color: Optional[str] = None
    stats: ScoreStats


class GradebookCell(BaseModel):
    marks_obtained: float
    percentage: float
    grade: Optional[str] = None


class GradebookRow(BaseModel):
    student_id: UUID
    student_name: str
    roll_number: Optional[str] = None
    # assessment id (str) -> cell, None where the student has no result yet
    results: Dict[str, Optional[GradebookCell]]
    average: Optional[float] = None
    total_obtained: float = 0
    total_max: int = 0


class GradebookStats(BaseModel):
    total_students: int = 0
    total_assessments: int = 0
    average_score: Optional[float] = None
    highest_average: Optional[float] = None
    lowest_average: Optional[float] = None
    has_data: bool = False


def percentage(marks_obtained: float, total_marks: float) -> int:
    if not total_marks or total_marks <= 0:
        return 0
    return round_half_up(100 * float(marks_obtained) / float(total_marks))


def grade_for_percentage(value: float) -> str:
    for threshold, grade in GRADE_BANDS:
        if value >= threshold:
            return grade
    return LOWEST_GRADE


def summarize_scores(percentages: Iterable[float]) -> ScoreStats:
    values = [float(p) for p in percentages]
    if not values:
        return ScoreStats()
    return ScoreStats(
        count=len(values),
        average=round_half_up(sum(values) / len(values)),
        highest=max(values),
        lowest=min(values),
        has_data=True,
    )


def subject_breakdown(results: Iterable[Any]) -> List[SubjectScores]:
    """Per-subject stats, subjects in first-seen order.

    Each item needs subject_id, subject_name, subject_color and percentage.
    """
    order: List[UUID] = []
    meta: Dict[UUID, Any] = {}
    values: Dict[UUID, List[float]] = {}
    for item in results:
        if item.subject_id not in values:
            order.append(item.subject_id)
            meta[item.subject_id] = item
            values[item.subject_id] = []
        values[item.subject_id].append(item.percentage)
    return [
        SubjectScores(
            subject_id=sid,
            subject_name=meta[sid].subject_name,
            color=meta[sid].subject_color,
            stats=summarize_scores(values[sid]),
        )
        for sid in order
    ]


def gradebook_row(
    student_id: UUID,
    student_name: str,
    roll_number: Optional[str],
    assessments: Iterable[Any],
    results: Mapping[UUID, Any],
) -> GradebookRow:
    """One gradebook line. results maps assessment id -> result row for this student.

    average is summed marks over summed maximum of the graded assessments only.
    """
    cells: Dict[str, Optional[GradebookCell]] = {}
    obtained = 0.0
    maximum = 0
    for assessment in assessments:
        result = results.get(assessment.id)
        if result is None:
            cells[str(assessment.id)] = None
            continue
        marks = float(result.marks_obtained)
        cells[str(assessment.id)] = GradebookCell(
            marks_obtained=marks,
            percentage=round_half_up(100 * marks / assessment.total_marks, 1) if assessment.total_marks else 0.0,
            grade=result.grade,
        )
        obtained += marks
        maximum += assessment.total_marks

    return GradebookRow(
        student_id=student_id,
        student_name=student_name,
        roll_number=roll_number,
        results=cells,
        average=round_half_up(100 * obtained / maximum, 1) if maximum > 0 else None,
        total_obtained=obtained,
        total_max=maximum,
    )


def gradebook_stats(rows: List[GradebookRow], total_assessments: int) -> GradebookStats:
    averages = [row.average for row in rows if row.average is not None]
    if not averages:
        return GradebookStats(total_students=len(rows), total_assessments=total_assessments)
    return GradebookStats(
        total_students=len(rows),
        total_assessments=total_assessments,
        average_score=round_half_up(sum(averages) / len(averages), 1),
        highest_average=max(averages),
        lowest_average=min(averages),
        has_data=True,
    )
