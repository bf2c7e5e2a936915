from fastapi import Request

from app.core.cache.backend import CacheService, InMemoryCacheService, RedisCacheService
from app.core.config import Settings, settings as default_settings


def build_cache_service(config: Settings = default_settings) -> CacheService:
    if config.cache_backend.lower() == "redis":
        return RedisCacheService(config.redis_url, prefix=config.cache_key_prefix)
    return InMemoryCacheService()


def get_cache(request: Request) -> CacheService:
    """FastAPI dependency: the cache built for this app in create_app()."""
    return request.app.state.cache


__all__ = [
    "CacheService",
    "InMemoryCacheService",
    "RedisCacheService",
    "build_cache_service",
    "get_cache",
]
