from __future__ import annotations

import asyncio

import pytest

from app.api.dependencies import get_enrollment_service
from app.services.cache import cache_service
from app.services.enrollment_service import EnrollmentService


async def _request(*, fail: bool) -> None:
    deps = get_enrollment_service()
    service = await deps.__anext__()
    assert isinstance(service, EnrollmentService)

    # A stats read lands between the service's invalidation and the commit.
    await cache_service.set("stats:all:all", '{"total": 0}', 60)
    await cache_service.set("other:key", "x", 60)

    if fail:
        with pytest.raises(RuntimeError):
            await deps.athrow(RuntimeError("handler failed"))
    else:
        with pytest.raises(StopAsyncIteration):
            await deps.__anext__()


def test_stats_dropped_again_after_request_completes() -> None:
    asyncio.run(_request(fail=False))
    assert asyncio.run(cache_service.get("stats:all:all")) is None
    assert asyncio.run(cache_service.get("other:key")) == "x"


def test_failed_request_leaves_cache_alone() -> None:
    asyncio.run(_request(fail=True))
    assert asyncio.run(cache_service.get("stats:all:all")) == '{"total": 0}'
