from collections import Counter, defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.aggregates.common import MONTH_LABELS, enum_value, round_half_up
from app.core.enums import AttendanceStatus


class AttendanceStats(BaseModel):
    total_days: int = 0
    # PRESENT only. LATE is reported separately but still counts towards percentage.
    present_days: int = 0
    absent_days: int = 0
    late_days: int = 0
    excused_days: int = 0
    percentage: int = 0


class MonthlyAttendance(BaseModel):
    year: int
    month: int
    label: str
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    total: int = 0
    percentage: int = 0


def participation_percentage(present: int, late: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(100 * (present + late) / total)


def _stats_from_counts(counts: Counter) -> AttendanceStats:
    present = counts[AttendanceStatus.PRESENT.value]
    late = counts[AttendanceStatus.LATE.value]
    total = sum(counts.values())
    return AttendanceStats(
        total_days=total,
        present_days=present,
        absent_days=counts[AttendanceStatus.ABSENT.value],
        late_days=late,
        excused_days=counts[AttendanceStatus.EXCUSED.value],
        percentage=participation_percentage(present, late, total),
    )


def summarize_attendance(records: Iterable[Any], since: Optional[date] = None) -> AttendanceStats:
    """Counts per status over records (anything with .status and .date).

    since: only records on or after this date are counted (e.g. start of month).
    """
    counts: Counter = Counter()
    for record in records:
        if since is not None and record.date < since:
            continue
        counts[enum_value(record.status)] += 1
    return _stats_from_counts(counts)


def monthly_attendance(records: Iterable[Any], limit: int = 6) -> List[MonthlyAttendance]:
    """Bucket records by calendar month, newest month first, at most `limit` buckets."""
    buckets: Dict[tuple, Counter] = defaultdict(Counter)
    for record in records:
        buckets[(record.date.year, record.date.month)][enum_value(record.status)] += 1

    months: List[MonthlyAttendance] = []
    for (year, month) in sorted(buckets, reverse=True)[:limit]:
        stats = _stats_from_counts(buckets[(year, month)])
        months.append(
            MonthlyAttendance(
                year=year,
                month=month,
                label=MONTH_LABELS[month - 1],
                present=stats.present_days,
                absent=stats.absent_days,
                late=stats.late_days,
                excused=stats.excused_days,
                total=stats.total_days,
                percentage=stats.percentage,
            )
        )
    return months


def attendance_by_student(records: Iterable[Any]) -> Dict[UUID, int]:
    """Participation percentage per student_id."""
    per_student: Dict[UUID, Counter] = defaultdict(Counter)
    for record in records:
        per_student[record.student_id][enum_value(record.status)] += 1
    return {sid: _stats_from_counts(counts).percentage for sid, counts in per_student.items()}
