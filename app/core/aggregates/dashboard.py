import math
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Sequence
from uuid import UUID

from pydantic import BaseModel

from app.core.aggregates.common import enum_value, to_naive_utc
from app.core.enums import ApprovalStatus

SECONDS_PER_DAY = 24 * 60 * 60


class ApprovalCounts(BaseModel):
    pending: int = 0
    approved: int = 0
    declined: int = 0
    total: int = 0


class PendingEventApproval(BaseModel):
    event_id: UUID
    event_title: str
    event_type: str
    deadline: datetime
    children_pending: List[str]
    is_urgent: bool


def sections_pending_attendance(assigned: Sequence[UUID], marked_today: Iterable[UUID]) -> List[UUID]:
    """Assigned sections with no attendance yet today, in assigned order."""
    marked = set(marked_today)
    return [section_id for section_id in assigned if section_id not in marked]


def assessments_needing_grading(
    graded_counts: Mapping[UUID, int],
    enrolled_counts: Mapping[UUID, int],
) -> List[UUID]:
    """Assessments with fewer results than students enrolled. Keys of enrolled_counts are assessment ids."""
    return [
        assessment_id
        for assessment_id, enrolled in enrolled_counts.items()
        if graded_counts.get(assessment_id, 0) < enrolled
    ]


def approval_counts(statuses: Iterable[Any]) -> ApprovalCounts:
    counts = Counter(enum_value(s) for s in statuses)
    return ApprovalCounts(
        pending=counts[ApprovalStatus.PENDING.value],
        approved=counts[ApprovalStatus.APPROVED.value],
        declined=counts[ApprovalStatus.DECLINED.value],
        total=sum(counts.values()),
    )


def days_until(deadline: datetime, now: datetime) -> int:
    delta = to_naive_utc(deadline) - to_naive_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def is_urgent(deadline: datetime, now: datetime, days: int = 2) -> bool:
    return days_until(deadline, now) <= days


def group_pending_approvals(rows: Iterable[Any], now: datetime, urgent_days: int = 2) -> List[PendingEventApproval]:
    """Group a parent's pending approval rows per event, keeping row order.

    Each row needs event_id, event_title, event_type, deadline and student_name.
    """
    grouped: Dict[UUID, PendingEventApproval] = {}
    for row in rows:
        entry = grouped.get(row.event_id)
        if entry is None:
            entry = PendingEventApproval(
                event_id=row.event_id,
                event_title=row.event_title,
                event_type=enum_value(row.event_type),
                deadline=row.deadline,
                children_pending=[],
                is_urgent=is_urgent(row.deadline, now, urgent_days),
            )
            grouped[row.event_id] = entry
        entry.children_pending.append(row.student_name)
    return list(grouped.values())
