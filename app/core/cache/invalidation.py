"""Which cache tags a committed write must drop.

INVALIDATION_TABLE is the single source of truth. Write paths describe what they
touched as AffectedEntities and call invalidate() after commit; they never name tags.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple

from app.core.cache.backend import CacheService
from app.core.cache.keys import (
    PARENT_MESSAGES_TAG,
    PARENT_TAG,
    SCHOOL_TAG,
    SECTION_TAG,
    STUDENT_TAG,
    TEACHER_MESSAGES_TAG,
    TEACHER_TAG,
    placeholder,
)
from app.core.logging import get_logger

log = get_logger("cache.invalidation")


class Mutation(str, Enum):
    ATTENDANCE_MARKED = "ATTENDANCE_MARKED"
    RESULTS_RECORDED = "RESULTS_RECORDED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    EVENT_CREATED = "EVENT_CREATED"
    EVENT_UPDATED = "EVENT_UPDATED"
    EVENT_DELETED = "EVENT_DELETED"
    APPROVAL_RESPONDED = "APPROVAL_RESPONDED"
    MESSAGE_SENT = "MESSAGE_SENT"
    # Carries only the viewer's id; the other participant's unread count is unchanged.
    CONVERSATION_READ = "CONVERSATION_READ"


_CLASSROOM = (STUDENT_TAG, SECTION_TAG, TEACHER_TAG, PARENT_TAG)
_BILLING = (STUDENT_TAG, PARENT_TAG, SCHOOL_TAG)
_EVENTS = (SCHOOL_TAG, STUDENT_TAG, PARENT_TAG)
_INBOX = (TEACHER_MESSAGES_TAG, PARENT_MESSAGES_TAG)

INVALIDATION_TABLE: Dict[Mutation, Tuple[str, ...]] = {
    Mutation.ATTENDANCE_MARKED: _CLASSROOM,
    Mutation.RESULTS_RECORDED: _CLASSROOM,
    Mutation.PAYMENT_RECORDED: _BILLING,
    Mutation.INVOICE_CANCELLED: _BILLING,
    Mutation.EVENT_CREATED: _EVENTS,
    Mutation.EVENT_UPDATED: _EVENTS,
    Mutation.EVENT_DELETED: _EVENTS,
    Mutation.APPROVAL_RESPONDED: (PARENT_TAG, SCHOOL_TAG),
    Mutation.MESSAGE_SENT: _INBOX,
    Mutation.CONVERSATION_READ: _INBOX,
}


@dataclass(frozen=True)
class AffectedEntities:
    """Ids touched by one write, grouped by entity kind."""

    schools: FrozenSet[Any] = field(default_factory=frozenset)
    students: FrozenSet[Any] = field(default_factory=frozenset)
    sections: FrozenSet[Any] = field(default_factory=frozenset)
    teachers: FrozenSet[Any] = field(default_factory=frozenset)
    parents: FrozenSet[Any] = field(default_factory=frozenset)

    @classmethod
    def of(cls, **ids: Iterable[Any]) -> "AffectedEntities":
        return cls(**{name: frozenset(i for i in values if i is not None) for name, values in ids.items()})


_ENTITY_SETS = {
    "school": "schools",
    "student": "students",
    "section": "sections",
    "teacher": "teachers",
    "parent": "parents",
}


def tags_for(mutation: Mutation, affected: AffectedEntities) -> List[str]:
    tags: List[str] = []
    for template in INVALIDATION_TABLE[mutation]:
        name = placeholder(template)
        for entity_id in sorted(getattr(affected, _ENTITY_SETS[name]), key=str):
            tags.append(template.format(**{name: entity_id}))
    return tags


async def invalidate(cache: CacheService, mutation: Mutation, affected: AffectedEntities) -> int:
    """Call only after the write has committed."""
    tags = tags_for(mutation, affected)
    removed = await cache.invalidate_tags(tags)
    log.debug("%s invalidated %d tags, %d entries", mutation.value, len(tags), removed)
    return removed
