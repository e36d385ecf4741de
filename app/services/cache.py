"""Read-through cache for enrollment statistics.

The admin stats endpoint runs several aggregates over the whole
enrollment table, so its result is cached under ``stats:<course>:<timeframe>``.

Two invalidation strategies cover each other:

  1. TTL (STATS_CACHE_TTL): entries expire on their own, so a missed
     invalidation only costs staleness up to the TTL.
  2. Explicit: every enrollment mutation deletes ``stats:*``, once in
     the service and again after the request's transaction commits
     (app/api/dependencies.py), so a read racing the commit cannot keep
     a pre-commit snapshot cached.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from redis.exceptions import RedisError

from app.core.metrics import CACHE_OPERATIONS
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g., 'stats:*')."""
        ...


class InMemoryCacheService:
    """In-memory cache for tests and single-process dev. Entries never expire."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]


class RedisCacheService:
    """Redis-backed cache shared across all API instances.

    Redis failures degrade to a cache miss / no-op and are logged; the
    stats query and enrollment writes never fail because of the cache.
    """

    # Key prefix keeps cache entries apart from anything else in the same DB.
    _PREFIX = "enrollments:cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(f"{self._PREFIX}{key}")
        except RedisError:
            logger.warning("Cache get failed key=%s", key, exc_info=True)
            value = None
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except RedisError:
            logger.warning("Cache set failed key=%s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(f"{self._PREFIX}{key}")
        except RedisError:
            logger.warning("Cache delete failed key=%s", key, exc_info=True)

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN, not KEYS: cursor-based, doesn't block the server.
        cursor = 0
        try:
            while True:
                cursor, keys = await self._redis.scan(
                    cursor, match=f"{self._PREFIX}{pattern}", count=100
                )
                if keys:
                    await self._redis.delete(*keys)
                if cursor == 0:
                    break
        except RedisError:
            # Entries left behind expire via TTL.
            logger.warning("Cache invalidation failed pattern=%s", pattern, exc_info=True)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
