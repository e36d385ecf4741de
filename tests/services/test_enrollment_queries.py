from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from prometheus_client import REGISTRY

from app.models.course import ModuleItem
from app.models.enrollment import Enrollment
from app.models.principal import Principal
from app.repos.course_repo import InMemoryCourseRepo
from app.repos.enrollment_repo import InMemoryEnrollmentRepo
from app.services.cache import InMemoryCacheService
from app.services.enrollment_queries import EnrollmentQueries, EnrollmentStats
from app.services.errors import (
    EnrollmentNotFoundError,
    ForbiddenError,
    InvalidQueryError,
)
from app.services.progress_tracker import update_item_progress
from tests.conftest import build_course

LEARNER = Principal(user_id="learner-1")
OTHER = Principal(user_id="learner-2")
ADMIN = Principal(user_id="admin-1", roles=frozenset({"admin"}))

NOW = 1_700_000_000
DAY = 86400


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


class _Env:
    def __init__(self) -> None:
        self.enrollments = InMemoryEnrollmentRepo()
        self.courses = InMemoryCourseRepo()
        self.cache = InMemoryCacheService()
        self.queries = EnrollmentQueries(
            self.enrollments,
            self.courses,
            cache=self.cache,
            clock=lambda: NOW,
            max_page_size=50,
            stats_ttl=60,
        )

    def seed(
        self,
        learner_id: str,
        course_id: str,
        *,
        enrolled_at: int = NOW,
        status: str = "active",
        completed_items: tuple[str, ...] = (),
        completion_percentage: int = 0,
        completed_at: int | None = None,
    ) -> Enrollment:
        e = Enrollment.new(
            learner_id=learner_id, course_id=course_id, enrolled_at=enrolled_at
        )
        for item in completed_items:
            update_item_progress(e, item, True, 5, now=enrolled_at)
        e.status = status  # type: ignore[assignment]
        e.completion_percentage = completion_percentage
        e.completed_at = completed_at
        return asyncio.run(self.enrollments.create(e))


@pytest.fixture
def env() -> _Env:
    return _Env()


# ---------------------------------------------------------------------------
# list_for_learner
# ---------------------------------------------------------------------------


def test_list_is_newest_first_with_pagination(env: _Env) -> None:
    for n in range(5):
        env.courses.add(build_course(course_id=f"c{n}"))
        env.seed("learner-1", f"c{n}", enrolled_at=NOW - n * DAY)
    env.seed("learner-2", "c0")

    page = asyncio.run(env.queries.list_for_learner(LEARNER, "learner-1", page=2, limit=2))

    assert [v.enrollment.course_id for v in page.items] == ["c2", "c3"]
    assert page.current == 2
    assert page.pages == 3
    assert page.count == 2
    assert page.total == 5


def test_list_filters_by_status(env: _Env) -> None:
    env.courses.add(build_course(course_id="c1"))
    env.courses.add(build_course(course_id="c2"))
    env.seed("learner-1", "c1")
    env.seed("learner-1", "c2", status="cancelled")

    page = asyncio.run(
        env.queries.list_for_learner(LEARNER, "learner-1", status="cancelled")
    )
    assert page.total == 1
    assert page.items[0].enrollment.course_id == "c2"


def test_list_recomputes_completion_without_saving(env: _Env) -> None:
    env.courses.add(build_course(course_id="c1"))
    env.seed("learner-1", "c1", completed_items=("i1", "i2"), completion_percentage=0)

    page = asyncio.run(env.queries.list_for_learner(LEARNER, "learner-1"))

    assert page.items[0].enrollment.completion_percentage == 50
    stored = asyncio.run(env.enrollments.get("learner-1", "c1"))
    assert stored.completion_percentage == 0
    assert stored.version == 1


def test_list_reflects_restructured_course(env: _Env) -> None:
    course = build_course(course_id="c1")
    env.courses.add(course)
    env.seed("learner-1", "c1", completed_items=("i1", "i2"))

    # Two more items appended to the last module: 2 of 6 done.
    last = course.modules[-1]
    grown = replace(
        last,
        items=last.items
        + (ModuleItem(id="i5", title="Item 5"), ModuleItem(id="i6", title="Item 6")),
    )
    env.courses.replace(replace(course, modules=course.modules[:-1] + (grown,)))

    page = asyncio.run(env.queries.list_for_learner(LEARNER, "learner-1"))
    assert page.items[0].enrollment.completion_percentage == 33


def test_list_pairs_course_summary(env: _Env) -> None:
    env.courses.add(build_course(course_id="c1", price=19.0))
    env.seed("learner-1", "c1")
    env.seed("learner-1", "gone")

    page = asyncio.run(env.queries.list_for_learner(LEARNER, "learner-1"))
    by_course = {v.enrollment.course_id: v.course for v in page.items}

    assert by_course["c1"].title == "Course c1"
    assert by_course["c1"].price == 19.0
    assert by_course["gone"] is None


def test_list_of_unknown_learner_is_empty(env: _Env) -> None:
    page = asyncio.run(env.queries.list_for_learner(ADMIN, "nobody"))
    assert page.items == []
    assert page.total == 0
    assert page.pages == 0


def test_list_other_learner_forbidden(env: _Env) -> None:
    with pytest.raises(ForbiddenError):
        asyncio.run(env.queries.list_for_learner(OTHER, "learner-1"))


@pytest.mark.parametrize(
    ("page", "limit"),
    [(0, 10), (1, 0), (1, 51), (-3, 10)],
)
def test_list_rejects_bad_paging(env: _Env, page: int, limit: int) -> None:
    with pytest.raises(InvalidQueryError):
        asyncio.run(
            env.queries.list_for_learner(LEARNER, "learner-1", page=page, limit=limit)
        )


def test_list_rejects_unknown_status(env: _Env) -> None:
    with pytest.raises(InvalidQueryError):
        asyncio.run(env.queries.list_for_learner(LEARNER, "learner-1", status="done"))


# ---------------------------------------------------------------------------
# get_detail
# ---------------------------------------------------------------------------


def test_detail_joins_module_and_item(env: _Env) -> None:
    env.courses.add(build_course(course_id="c1"))
    env.seed("learner-1", "c1", completed_items=("i3", "stray"))

    detail = asyncio.run(env.queries.get_detail(LEARNER, "learner-1", "c1"))

    assert detail.enrollment.completion_percentage == 25
    assert detail.course.id == "c1"
    known, stray = detail.progress
    assert known.entry.item_id == "i3"
    assert known.module.id == "m2"
    assert known.module.title == "Module 2"
    assert known.item.title == "Item 3"
    assert known.item.type == "video"
    assert known.item.duration == 10
    assert stray.entry.item_id == "stray"
    assert stray.module is None
    assert stray.item is None


def test_detail_of_deleted_course_degrades(env: _Env) -> None:
    env.seed("learner-1", "gone", completed_items=("i1",), completion_percentage=100)

    detail = asyncio.run(env.queries.get_detail(LEARNER, "learner-1", "gone"))

    assert detail.course is None
    assert detail.enrollment.completion_percentage == 100
    assert detail.progress[0].item is None


def test_detail_missing(env: _Env) -> None:
    with pytest.raises(EnrollmentNotFoundError):
        asyncio.run(env.queries.get_detail(LEARNER, "learner-1", "c1"))


def test_detail_other_learner_forbidden(env: _Env) -> None:
    env.seed("learner-1", "c1")
    with pytest.raises(ForbiddenError):
        asyncio.run(env.queries.get_detail(OTHER, "learner-1", "c1"))


def test_admin_can_read_any_detail(env: _Env) -> None:
    env.seed("learner-1", "c1")
    detail = asyncio.run(env.queries.get_detail(ADMIN, "learner-1", "c1"))
    assert detail.enrollment.learner_id == "learner-1"


# ---------------------------------------------------------------------------
# get_stats
# ---------------------------------------------------------------------------


def _seed_stats(env: _Env) -> None:
    env.seed(
        "a",
        "c1",
        enrolled_at=NOW - 2 * DAY,
        status="completed",
        completion_percentage=100,
        completed_at=NOW - DAY,
    )
    env.seed(
        "b",
        "c1",
        enrolled_at=NOW - 3 * DAY,
        status="completed",
        completion_percentage=100,
        completed_at=NOW,
    )
    env.seed("c", "c1", enrolled_at=NOW - 2 * DAY, completion_percentage=50)
    env.seed(
        "d",
        "c2",
        enrolled_at=NOW - 40 * DAY,
        status="cancelled",
        completion_percentage=25,
    )


def test_stats_require_admin(env: _Env) -> None:
    with pytest.raises(ForbiddenError):
        asyncio.run(env.queries.get_stats(LEARNER))


def test_stats_reject_unknown_timeframe(env: _Env) -> None:
    with pytest.raises(InvalidQueryError):
        asyncio.run(env.queries.get_stats(ADMIN, timeframe="1y"))


def test_stats_summary_all_time(env: _Env) -> None:
    _seed_stats(env)

    stats = asyncio.run(env.queries.get_stats(ADMIN))

    assert stats.total == 4
    assert stats.completed == 2
    assert stats.completion_rate == 50
    assert stats.avg_completion_days == 2.0  # (1 + 3) / 2
    assert stats.status_breakdown["completed"].count == 2
    assert stats.status_breakdown["completed"].avg_completion == 100.0
    assert stats.status_breakdown["cancelled"].count == 1
    assert sum(p.count for p in stats.enrollment_trend) == 4
    dates = [p.date for p in stats.enrollment_trend]
    assert dates == sorted(dates)


def test_stats_timeframe_filters_on_enrolled_at(env: _Env) -> None:
    _seed_stats(env)
    stats = asyncio.run(env.queries.get_stats(ADMIN, timeframe="30d"))
    assert stats.total == 3
    assert "cancelled" not in stats.status_breakdown


def test_stats_for_one_course(env: _Env) -> None:
    _seed_stats(env)
    stats = asyncio.run(env.queries.get_stats(ADMIN, course_id="c1"))
    assert stats.total == 3
    assert stats.completion_rate == 67


def test_stats_empty_is_zero(env: _Env) -> None:
    stats = asyncio.run(env.queries.get_stats(ADMIN, timeframe="7d"))
    assert stats.total == 0
    assert stats.completion_rate == 0
    assert stats.avg_completion_days == 0.0
    assert stats.status_breakdown == {}
    assert stats.enrollment_trend == []


def test_stats_served_from_cache_until_invalidated(env: _Env) -> None:
    _seed_stats(env)
    first = asyncio.run(env.queries.get_stats(ADMIN))
    assert "stats:all:all" in env.cache._store

    env.seed("e", "c1")
    hits_before = _get_sample("cache_operations_total", {"operation": "hit"})
    cached = asyncio.run(env.queries.get_stats(ADMIN))

    assert cached == first
    assert _get_sample("cache_operations_total", {"operation": "hit"}) - hits_before == 1

    asyncio.run(env.cache.delete_pattern("stats:*"))
    fresh = asyncio.run(env.queries.get_stats(ADMIN))
    assert fresh.total == 5


def test_stats_json_round_trip_preserves_nested_types(env: _Env) -> None:
    _seed_stats(env)
    stats = asyncio.run(env.queries.get_stats(ADMIN))
    assert EnrollmentStats.from_json(stats.to_json()) == stats
