"""Health and readiness endpoints.

  /health (liveness):
    "Is this process alive?"  Always 200; the body reports per-dependency
    status so a partial outage is visible without triggering a restart.

  /ready (readiness):
    "Can this instance serve enrollment traffic?"  The database is the
    source of truth for enrollments, so a configured-but-unreachable
    database makes the instance not ready (503).  Redis only backs the
    stats cache and never affects readiness.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from app.db.engine import ping_database
from app.db.redis import ping_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness probe + dependency status.

    Returns 200 even when degraded; the ``status`` field carries the
    actual health.
    """
    checks = {
        "database": await ping_database(),
        "redis": await ping_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: 503 while a configured database is unreachable."""
    if await ping_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
