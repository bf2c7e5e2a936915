from uuid import uuid4

import pytest
from pydantic import BaseModel

from app.core.cache import InMemoryCacheService, RedisCacheService, build_cache_service
from app.core.cache.invalidation import INVALIDATION_TABLE, AffectedEntities, Mutation, invalidate, tags_for
from app.core.cache.keys import VIEW_POLICIES, ViewKind, cache_key, ttl_seconds, view_tags
from app.core.cache.readthrough import cached_view
from app.core.config import settings


class Counter(BaseModel):
    value: int


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_in_memory_entry_expires_after_ttl() -> None:
    clock = FakeClock()
    cache = InMemoryCacheService(clock=clock)
    await cache.set("k", "v", ttl=30)

    clock.now += 29
    assert await cache.get("k") == "v"
    clock.now += 1
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_invalidate_tags_drops_every_tagged_entry() -> None:
    cache = InMemoryCacheService()
    await cache.set("a", "1", 60, ["student-1", "section-9"])
    await cache.set("b", "2", 60, ["student-2", "section-9"])
    await cache.set("c", "3", 60, ["student-3"])

    removed = await cache.invalidate_tags(["section-9", "student-1"])

    assert removed == 2
    assert await cache.get("a") is None
    assert await cache.get("b") is None
    assert await cache.get("c") == "3"
    assert len(cache) == 1


def test_cache_key_is_tenant_scoped() -> None:
    entity = uuid4()
    key_a = cache_key("tenant-a", ViewKind.STUDENT_DASHBOARD, entity)
    key_b = cache_key("tenant-b", ViewKind.STUDENT_DASHBOARD, entity)
    assert key_a == f"tenant-a:student-dashboard:{entity}"
    assert key_a != key_b


def test_view_tags_skip_missing_ids() -> None:
    student = uuid4()
    assert view_tags(ViewKind.STUDENT_GRADES, student=student, section=None) == [
        f"student-{student}",
        "view-student-grades",
    ]


def test_every_view_kind_has_a_policy() -> None:
    assert set(VIEW_POLICIES) == set(ViewKind)
    assert ttl_seconds(ViewKind.STUDENT_ATTENDANCE) == settings.cache_ttl_short
    assert ttl_seconds(ViewKind.STUDENT_DASHBOARD) == settings.cache_ttl_medium
    assert ttl_seconds(ViewKind.STUDENT_TIMETABLE) == settings.cache_ttl_long


def test_every_mutation_is_in_the_invalidation_table() -> None:
    assert set(INVALIDATION_TABLE) == set(Mutation)


def test_attendance_marked_reaches_all_classroom_views() -> None:
    affected = AffectedEntities.of(students=["s1"], sections=["sec"], teachers=["t1"], parents=["p1", None])
    tags = tags_for(Mutation.ATTENDANCE_MARKED, affected)
    assert set(tags) == {"student-s1", "section-sec", "teacher-t1", "parent-p1"}


def test_message_sent_targets_both_inboxes() -> None:
    tags = tags_for(Mutation.MESSAGE_SENT, AffectedEntities.of(teachers=["t1"], parents=["p1"]))
    assert set(tags) == {"teacher-t1-messages", "parent-p1-messages"}


@pytest.mark.asyncio
async def test_cached_view_computes_once_until_invalidated() -> None:
    cache = InMemoryCacheService()
    calls = []

    async def compute() -> Counter:
        calls.append(1)
        return Counter(value=len(calls))

    student = uuid4()
    first = await cached_view(cache, "t", ViewKind.STUDENT_ATTENDANCE, student, Counter, compute, {"student": student})
    second = await cached_view(cache, "t", ViewKind.STUDENT_ATTENDANCE, student, Counter, compute, {"student": student})
    assert first.value == second.value == 1
    assert len(calls) == 1

    await invalidate(cache, Mutation.ATTENDANCE_MARKED, AffectedEntities.of(students=[student]))
    third = await cached_view(cache, "t", ViewKind.STUDENT_ATTENDANCE, student, Counter, compute, {"student": student})
    assert third.value == 2


@pytest.mark.asyncio
async def test_cached_view_does_not_store_failures() -> None:
    cache = InMemoryCacheService()

    async def broken() -> Counter:
        raise RuntimeError("database down")

    with pytest.raises(RuntimeError):
        await cached_view(cache, "t", ViewKind.ADMIN_DASHBOARD, "t", Counter, broken)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_tenants_do_not_share_entries() -> None:
    cache = InMemoryCacheService()
    entity = uuid4()

    async def for_a() -> Counter:
        return Counter(value=1)

    async def for_b() -> Counter:
        return Counter(value=2)

    a = await cached_view(cache, "tenant-a", ViewKind.PARENT_FEES, entity, Counter, for_a)
    b = await cached_view(cache, "tenant-b", ViewKind.PARENT_FEES, entity, Counter, for_b)
    assert (a.value, b.value) == (1, 2)


def test_backend_selection() -> None:
    memory = build_cache_service(settings.model_copy(update={"cache_backend": "memory"}))
    redis_backed = build_cache_service(settings.model_copy(update={"cache_backend": "redis"}))
    assert isinstance(memory, InMemoryCacheService)
    assert isinstance(redis_backed, RedisCacheService)


def test_every_view_tag_template_is_invalidated_by_some_mutation() -> None:
    invalidated = {template for templates in INVALIDATION_TABLE.values() for template in templates}
    for view_kind, policy in VIEW_POLICIES.items():
        missing = set(policy.tags) - invalidated
        assert not missing, f"{view_kind.value} carries tags no mutation drops: {missing}"


@pytest.mark.asyncio
async def test_tag_index_forgets_expired_and_rewritten_keys() -> None:
    clock = FakeClock()
    cache = InMemoryCacheService(clock=clock)
    await cache.set("a", "1", ttl=10, tags=["student-1"])
    await cache.set("b", "2", ttl=10, tags=["student-2"])
    await cache.set("b", "3", ttl=100, tags=["student-3"])
    assert cache.tag_count() == 2

    clock.now += 11
    assert await cache.get("a") is None
    assert cache.tag_count() == 1

    # Only the tag from the latest write still reaches the rewritten key.
    assert await cache.invalidate_tags(["student-2"]) == 0
    assert await cache.get("b") == "3"


@pytest.mark.asyncio
async def test_unread_expired_entries_are_swept_on_write() -> None:
    clock = FakeClock()
    cache = InMemoryCacheService(clock=clock)
    for i in range(InMemoryCacheService.SWEEP_EVERY - 1):
        await cache.set(f"k{i}", "v", ttl=5, tags=[f"student-{i}"])

    clock.now += 6
    await cache.set("fresh", "v", ttl=5, tags=["school-1"])

    assert len(cache) == 1
    assert cache.tag_count() == 1
