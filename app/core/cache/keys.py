"""Cache keys, tags and per-view policies.

A key is "{tenant}:{view-kind}:{entity}". The tenant prefix keeps schools apart even
if an entity id were ever reused; view kind and entity keep views apart within a school.
"""
from enum import Enum
from string import Formatter
from typing import Any, Dict, List, NamedTuple, Tuple

from app.core.config import settings

# Entity tag templates. The placeholder names the entity set they expand over.
SCHOOL_TAG = "school-{school}"
STUDENT_TAG = "student-{student}"
SECTION_TAG = "section-{section}"
TEACHER_TAG = "teacher-{teacher}"
PARENT_TAG = "parent-{parent}"
TEACHER_MESSAGES_TAG = "teacher-{teacher}-messages"
PARENT_MESSAGES_TAG = "parent-{parent}-messages"


class ViewKind(str, Enum):
    STUDENT_DASHBOARD = "student-dashboard"
    STUDENT_TIMETABLE = "student-timetable"
    STUDENT_ATTENDANCE = "student-attendance"
    STUDENT_GRADES = "student-grades"
    TEACHER_DASHBOARD = "teacher-dashboard"
    TEACHER_ATTENDANCE = "teacher-attendance"
    TEACHER_GRADEBOOK = "teacher-gradebook"
    TEACHER_CLASSES = "teacher-classes"
    TEACHER_ASSESSMENTS = "teacher-assessments"
    TEACHER_CONVERSATIONS = "teacher-conversations"
    PARENT_DASHBOARD = "parent-dashboard"
    PARENT_CHILD_ATTENDANCE = "parent-child-attendance"
    PARENT_CHILD_GRADES = "parent-child-grades"
    PARENT_FEES = "parent-fees"
    PARENT_EVENTS = "parent-events"
    PARENT_CONVERSATIONS = "parent-conversations"
    ADMIN_DASHBOARD = "admin-dashboard"
    ADMIN_EVENTS = "admin-events"


class TTLTier(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class ViewPolicy(NamedTuple):
    ttl: TTLTier
    tags: Tuple[str, ...]


VIEW_POLICIES: Dict[ViewKind, ViewPolicy] = {
    ViewKind.STUDENT_DASHBOARD: ViewPolicy(TTLTier.MEDIUM, (STUDENT_TAG, SECTION_TAG)),
    ViewKind.STUDENT_TIMETABLE: ViewPolicy(TTLTier.LONG, (SECTION_TAG,)),
    ViewKind.STUDENT_ATTENDANCE: ViewPolicy(TTLTier.SHORT, (STUDENT_TAG,)),
    ViewKind.STUDENT_GRADES: ViewPolicy(TTLTier.MEDIUM, (STUDENT_TAG, SECTION_TAG)),
    ViewKind.TEACHER_DASHBOARD: ViewPolicy(TTLTier.MEDIUM, (TEACHER_TAG,)),
    ViewKind.TEACHER_ATTENDANCE: ViewPolicy(TTLTier.SHORT, (TEACHER_TAG,)),
    ViewKind.TEACHER_GRADEBOOK: ViewPolicy(TTLTier.MEDIUM, (TEACHER_TAG,)),
    ViewKind.TEACHER_CLASSES: ViewPolicy(TTLTier.MEDIUM, (TEACHER_TAG,)),
    ViewKind.TEACHER_ASSESSMENTS: ViewPolicy(TTLTier.MEDIUM, (TEACHER_TAG,)),
    ViewKind.TEACHER_CONVERSATIONS: ViewPolicy(TTLTier.SHORT, (TEACHER_MESSAGES_TAG,)),
    ViewKind.PARENT_DASHBOARD: ViewPolicy(TTLTier.MEDIUM, (PARENT_TAG,)),
    ViewKind.PARENT_CHILD_ATTENDANCE: ViewPolicy(TTLTier.SHORT, (STUDENT_TAG,)),
    ViewKind.PARENT_CHILD_GRADES: ViewPolicy(TTLTier.MEDIUM, (STUDENT_TAG, SECTION_TAG)),
    ViewKind.PARENT_FEES: ViewPolicy(TTLTier.MEDIUM, (PARENT_TAG,)),
    ViewKind.PARENT_EVENTS: ViewPolicy(TTLTier.SHORT, (PARENT_TAG,)),
    ViewKind.PARENT_CONVERSATIONS: ViewPolicy(TTLTier.SHORT, (PARENT_MESSAGES_TAG,)),
    ViewKind.ADMIN_DASHBOARD: ViewPolicy(TTLTier.MEDIUM, (SCHOOL_TAG,)),
    ViewKind.ADMIN_EVENTS: ViewPolicy(TTLTier.SHORT, (SCHOOL_TAG,)),
}


def placeholder(template: str) -> str:
    """Entity name a tag template expands over, e.g. 'student' for STUDENT_TAG."""
    return next(name for _, name, _, _ in Formatter().parse(template) if name)


def ttl_seconds(view_kind: ViewKind) -> int:
    tier = VIEW_POLICIES[view_kind].ttl
    return {
        TTLTier.SHORT: settings.cache_ttl_short,
        TTLTier.MEDIUM: settings.cache_ttl_medium,
        TTLTier.LONG: settings.cache_ttl_long,
    }[tier]


def cache_key(tenant_id: Any, view_kind: ViewKind, entity_id: Any) -> str:
    return f"{tenant_id}:{view_kind.value}:{entity_id}"


def view_kind_tag(view_kind: ViewKind) -> str:
    return f"view-{view_kind.value}"


def view_tags(view_kind: ViewKind, **ids: Any) -> List[str]:
    """Entity tags for one cached view plus its view-kind tag.

    ids maps placeholder name to id, e.g. view_tags(STUDENT_GRADES, student=s, section=sec).
    A template whose id is missing or None is skipped.
    """
    tags = []
    for template in VIEW_POLICIES[view_kind].tags:
        value = ids.get(placeholder(template))
        if value is not None:
            tags.append(template.format(**{placeholder(template): value}))
    tags.append(view_kind_tag(view_kind))
    return tags
