from __future__ import annotations

import asyncio

import pytest

from app.models.enrollment import Enrollment, Rating
from app.repos.enrollment_repo import EnrollmentFilter, InMemoryEnrollmentRepo
from app.services.errors import (
    DuplicateKeyError,
    EnrollmentNotFoundError,
    VersionConflictError,
)


def _new(learner_id: str = "l1", course_id: str = "c1", at: int = 1000) -> Enrollment:
    return Enrollment.new(learner_id=learner_id, course_id=course_id, enrolled_at=at)


def test_create_then_get() -> None:
    repo = InMemoryEnrollmentRepo()
    e = asyncio.run(repo.create(_new()))
    got = asyncio.run(repo.get("l1", "c1"))
    assert got == e
    assert got.version == 1


def test_create_duplicate_pair_rejected() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.create(_new()))
    with pytest.raises(DuplicateKeyError):
        asyncio.run(repo.create(_new()))


def test_returned_copies_are_detached() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.create(_new()))
    got = asyncio.run(repo.get("l1", "c1"))
    got.status = "cancelled"
    assert asyncio.run(repo.get("l1", "c1")).status == "active"


def test_save_bumps_version() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.create(_new()))
    e = asyncio.run(repo.get("l1", "c1"))
    e.status = "cancelled"
    saved = asyncio.run(repo.save(e))
    assert saved.version == 2
    assert asyncio.run(repo.get("l1", "c1")).status == "cancelled"


def test_save_with_stale_version_rejected() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.create(_new()))
    first = asyncio.run(repo.get("l1", "c1"))
    second = asyncio.run(repo.get("l1", "c1"))

    first.status = "cancelled"
    asyncio.run(repo.save(first))

    second.completion_percentage = 50
    with pytest.raises(VersionConflictError):
        asyncio.run(repo.save(second))
    assert asyncio.run(repo.get("l1", "c1")).completion_percentage == 0


def test_save_unknown_enrollment() -> None:
    repo = InMemoryEnrollmentRepo()
    with pytest.raises(EnrollmentNotFoundError):
        asyncio.run(repo.save(_new()))


def test_count_and_filters() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.create(_new("l1", "c1", at=1000)))
    asyncio.run(repo.create(_new("l1", "c2", at=2000)))
    asyncio.run(repo.create(_new("l2", "c1", at=3000)))

    assert asyncio.run(repo.count(EnrollmentFilter())) == 3
    assert asyncio.run(repo.count(EnrollmentFilter(learner_id="l1"))) == 2
    assert asyncio.run(repo.count(EnrollmentFilter(course_id="c1"))) == 2
    assert asyncio.run(repo.count(EnrollmentFilter(enrolled_since=2000))) == 2
    assert asyncio.run(repo.count(EnrollmentFilter(status="completed"))) == 0


def test_aggregate_and_rating_summary() -> None:
    repo = InMemoryEnrollmentRepo()
    for learner, pct, score in (("l1", 100, 5), ("l2", 50, 2), ("l3", 0, None)):
        e = _new(learner)
        e.completion_percentage = pct
        if score is not None:
            e.rating = Rating(score=score, review="", rated_at=1)
        asyncio.run(repo.create(e))

    buckets = asyncio.run(repo.aggregate_by_status(EnrollmentFilter()))
    assert buckets["active"].count == 3
    assert buckets["active"].avg_completion == 50.0

    summary = asyncio.run(repo.rating_summary("c1"))
    assert summary.count == 2
    assert summary.average == 3.5
    assert asyncio.run(repo.rating_summary("c9")).average is None


def test_daily_enrollments_groups_by_utc_day() -> None:
    repo = InMemoryEnrollmentRepo()
    # 2023-11-14T22:13:20Z, +1h (still the 14th), +1 day
    asyncio.run(repo.create(_new("l1", at=1_700_000_000)))
    asyncio.run(repo.create(_new("l2", at=1_700_003_600)))
    asyncio.run(repo.create(_new("l3", at=1_700_086_400)))

    trend = asyncio.run(repo.daily_enrollments(EnrollmentFilter()))
    assert trend == [("2023-11-14", 2), ("2023-11-15", 1)]
