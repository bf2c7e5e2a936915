from typing import Any, Awaitable, Callable, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from app.core.cache.backend import CacheService
from app.core.cache.keys import ViewKind, cache_key, ttl_seconds, view_tags
from app.core.logging import get_logger

log = get_logger("cache")

M = TypeVar("M", bound=BaseModel)


async def cached_view(
    cache: CacheService,
    tenant_id: Any,
    view_kind: ViewKind,
    entity_id: Any,
    model: Type[M],
    compute: Callable[[], Awaitable[M]],
    tag_ids: Optional[Mapping[str, Any]] = None,
) -> M:
    """Return the cached view or compute, store and return it.

    Errors from compute propagate and nothing is stored. Two concurrent misses
    both compute; the last write wins and both values are equally fresh.
    """
    key = cache_key(tenant_id, view_kind, entity_id)
    raw = await cache.get(key)
    if raw is not None:
        log.debug("HIT %s", key)
        return model.model_validate_json(raw)

    log.debug("MISS %s", key)
    value = await compute()
    await cache.set(key, value.model_dump_json(), ttl_seconds(view_kind), view_tags(view_kind, **(tag_ids or {})))
    return value
