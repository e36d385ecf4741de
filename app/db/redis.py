"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a shared async client
is created; when it's None (local dev, tests) redis_pool is None and
the stats cache falls back to an in-memory implementation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # str values, not bytes
        max_connections=20,
    )
else:
    redis_pool = None


async def ping_redis() -> str:
    """Return "ok", "degraded", or "not_configured" for health reporting."""
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except (RedisError, OSError):
        logger.warning("Redis ping failed", exc_info=True)
        return "degraded"
    return "ok"


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirroring lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, stats cache is in-memory")
        yield
        return

    # The cache is optional: an unreachable Redis at startup is logged,
    # not fatal.
    if await ping_redis() == "ok":
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    else:
        logger.error("Redis unreachable on startup; stats cache will miss until it recovers")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
