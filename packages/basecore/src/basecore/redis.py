"""
Redis client utilities for basecore.

Provides lazy-initialized Redis clients to avoid import-time connections.
Redis is optional: when REDIS_URL is unset the helpers return None and
callers fall back to in-process coordination.
"""

import functools

import redis.asyncio as aioredis

from basecore.settings import get_settings


@functools.lru_cache()
def get_redis_url() -> str | None:
    """Get Redis URL from settings."""
    return get_settings().REDIS_URL


@functools.lru_cache()
def get_async_redis_client() -> aioredis.Redis | None:
    """
    Get asyncio Redis client (cached), or None when Redis is not configured.

    This function lazily initializes the Redis client to avoid import-time connections.
    """
    url = get_redis_url()
    if not url:
        return None
    return aioredis.from_url(url, decode_responses=True)
