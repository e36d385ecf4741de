"""Prometheus scrape endpoint.

Returns every registered metric (HTTP traffic plus the enrollment
counters in app/core/metrics.py) in text exposition format, e.g.:

  enrollment_operations_total{operation="update_progress",outcome="ok"} 812.0
  enrollment_version_conflicts_total{operation="update_progress"} 3.0

Restrict access in production (scraper IP allow-list or an internal
port); the counters expose traffic patterns.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
