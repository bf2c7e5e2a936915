"""Cache backends for derived views.

Values are JSON strings. Every entry carries a TTL and a set of tags; writers
invalidate by tag, the TTL only bounds staleness if an invalidation is missed.
"""
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

import redis.asyncio as redis

from app.core.logging import get_logger

log = get_logger("cache")


class CacheService(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int, tags: Iterable[str] = ()) -> None:
        ...

    @abstractmethod
    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of the tags. Returns the number of keys removed."""

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        return None


class InMemoryCacheService(CacheService):
    """Process-local cache. Default backend and the one tests use.

    A key leaves the tag index whenever its entry goes away or is rewritten.
    Expired entries nobody reads again are swept every SWEEP_EVERY writes.
    """

    SWEEP_EVERY = 100

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._key_tags: Dict[str, Set[str]] = {}
        self._writes = 0

    def _drop(self, key: str) -> bool:
        found = self._entries.pop(key, None) is not None
        for tag in self._key_tags.pop(key, set()):
            keys = self._tags.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tags[tag]
        return found

    def _sweep(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]:
            self._drop(key)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._drop(key)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int, tags: Iterable[str] = ()) -> None:
        self._writes += 1
        if self._writes % self.SWEEP_EVERY == 0:
            self._sweep()
        self._drop(key)
        self._entries[key] = (value, self._clock() + ttl)
        tag_set = set(tags)
        self._key_tags[key] = tag_set
        for tag in tag_set:
            self._tags.setdefault(tag, set()).add(key)

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        for tag in tags:
            for key in list(self._tags.get(tag, ())):
                if self._drop(key):
                    removed += 1
        return removed

    async def clear(self) -> None:
        self._entries.clear()
        self._tags.clear()
        self._key_tags.clear()

    def tag_count(self) -> int:
        """Tags that still point at a live or not yet swept entry."""
        return len(self._tags)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheService(CacheService):
    """
    Shared cache across workers.

    Entry value lives at `${prefix}${key}` with EX=ttl. Each tag is a Redis set at
    `${prefix}tag:${tag}` holding the full entry keys; invalidation deletes the
    members and the set in one pipeline.
    """

    # Outlives any entry TTL so a tag never forgets a live key.
    TAG_TTL_SEC = 24 * 60 * 60

    def __init__(self, url: str, prefix: str = "insights:", client: Optional[redis.Redis] = None) -> None:
        self._r = client if client is not None else redis.from_url(url, decode_responses=True)
        self._p = prefix
        log.info("RedisCacheService initialized: prefix=%s", prefix)

    def _k(self, key: str) -> str:
        return f"{self._p}{key}"

    def _t(self, tag: str) -> str:
        return f"{self._p}tag:{tag}"

    async def get(self, key: str) -> Optional[str]:
        return await self._r.get(self._k(key))

    async def set(self, key: str, value: str, ttl: int, tags: Iterable[str] = ()) -> None:
        full_key = self._k(key)
        async with self._r.pipeline(transaction=True) as pipe:
            pipe.set(full_key, value, ex=ttl)
            for tag in tags:
                pipe.sadd(self._t(tag), full_key)
                pipe.expire(self._t(tag), self.TAG_TTL_SEC)
            await pipe.execute()
        log.debug("SET %s (ttl=%s)", full_key, ttl)

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        tag_keys = [self._t(tag) for tag in tags]
        if not tag_keys:
            return 0
        members: Set[str] = set()
        for tag_key in tag_keys:
            members.update(await self._r.smembers(tag_key))
        async with self._r.pipeline(transaction=True) as pipe:
            if members:
                pipe.delete(*members)
            pipe.delete(*tag_keys)
            results = await pipe.execute()
        removed = int(results[0]) if members else 0
        log.debug("INVALIDATE %s -> %s keys", tag_keys, removed)
        return removed

    async def clear(self) -> None:
        batch = []
        async for key in self._r.scan_iter(match=self._k("*")):
            batch.append(key)
            if len(batch) >= 500:
                await self._r.delete(*batch)
                batch = []
        if batch:
            await self._r.delete(*batch)

    async def close(self) -> None:
        await self._r.aclose()
