"""Read-side projections over enrollments.

Reads recompute completion against the current course structure so a
restructured course shows up immediately, but nothing here saves: the
recomputed value is only returned.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

from app.core.config import SETTINGS
from app.models.course import Course
from app.models.enrollment import ENROLLMENT_STATUSES, Enrollment, ProgressEntry
from app.models.principal import Principal
from app.repos.course_repo import CourseRepo
from app.repos.enrollment_repo import EnrollmentFilter, EnrollmentRepo
from app.services.cache import CacheService
from app.services.enrollment_service import utc_now
from app.services.errors import (
    EnrollmentNotFoundError,
    ForbiddenError,
    InvalidQueryError,
)
from app.services.progress_tracker import completion_or_zero, percent

logger = logging.getLogger(__name__)

# timeframe -> lookback in days (None = no lower bound)
TIMEFRAMES: dict[str, int | None] = {"7d": 7, "30d": 30, "90d": 90, "all": None}

TREND_BUCKETS = 30


@dataclass(frozen=True, slots=True)
class CourseSummary:
    id: str
    title: str
    price: float
    is_published: bool


@dataclass(frozen=True, slots=True)
class EnrollmentView:
    enrollment: Enrollment
    course: CourseSummary | None


@dataclass(frozen=True, slots=True)
class EnrollmentPage:
    items: list[EnrollmentView]
    current: int
    pages: int
    count: int  # items on this page
    total: int  # matching enrollments overall


@dataclass(frozen=True, slots=True)
class ModuleRef:
    id: str
    title: str


@dataclass(frozen=True, slots=True)
class ItemRef:
    id: str
    title: str
    type: str
    duration: int


@dataclass(frozen=True, slots=True)
class ProgressDetail:
    entry: ProgressEntry
    module: ModuleRef | None
    item: ItemRef | None


@dataclass(frozen=True, slots=True)
class EnrollmentDetail:
    enrollment: Enrollment
    course: CourseSummary | None
    progress: list[ProgressDetail]


@dataclass(frozen=True, slots=True)
class StatusStat:
    count: int
    avg_completion: float


@dataclass(frozen=True, slots=True)
class TrendPoint:
    date: str
    count: int


@dataclass(frozen=True, slots=True)
class EnrollmentStats:
    course_id: str | None
    timeframe: str
    total: int
    completed: int
    completion_rate: int
    avg_completion_days: float
    status_breakdown: dict[str, StatusStat]
    enrollment_trend: list[TrendPoint]

    def to_json(self) -> str:
        return json.dumps(dataclasses.asdict(self))

    @staticmethod
    def from_json(raw: str) -> EnrollmentStats:
        d = json.loads(raw)
        return EnrollmentStats(
            course_id=d["course_id"],
            timeframe=d["timeframe"],
            total=d["total"],
            completed=d["completed"],
            completion_rate=d["completion_rate"],
            avg_completion_days=d["avg_completion_days"],
            status_breakdown={
                k: StatusStat(**v) for k, v in d["status_breakdown"].items()
            },
            enrollment_trend=[TrendPoint(**p) for p in d["enrollment_trend"]],
        )


def _round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def _summary(course: Course | None) -> CourseSummary | None:
    if course is None:
        return None
    return CourseSummary(
        id=course.id,
        title=course.title,
        price=course.price,
        is_published=course.is_published,
    )


def stats_cache_key(course_id: str | None, timeframe: str) -> str:
    return f"stats:{course_id or 'all'}:{timeframe}"


class EnrollmentQueries:
    def __init__(
        self,
        enrollments: EnrollmentRepo,
        courses: CourseRepo,
        *,
        cache: CacheService | None = None,
        clock: Callable[[], int] = utc_now,
        max_page_size: int | None = None,
        stats_ttl: int | None = None,
    ) -> None:
        self._enrollments = enrollments
        self._courses = courses
        self._cache = cache
        self._clock = clock
        self._max_page_size = (
            max_page_size if max_page_size is not None else SETTINGS.max_page_size
        )
        self._stats_ttl = (
            stats_ttl if stats_ttl is not None else SETTINGS.stats_cache_ttl
        )

    async def list_for_learner(
        self,
        principal: Principal,
        learner_id: str,
        status: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> EnrollmentPage:
        if not principal.can_act_for(learner_id):
            raise ForbiddenError("Access denied. You can only view your own enrollments")
        if page < 1:
            raise InvalidQueryError("page must be >= 1")
        if not 1 <= limit <= self._max_page_size:
            raise InvalidQueryError(f"limit must be between 1 and {self._max_page_size}")
        if status is not None and status not in ENROLLMENT_STATUSES:
            raise InvalidQueryError(f"unknown status: {status}")

        total = await self._enrollments.count(
            EnrollmentFilter(learner_id=learner_id, status=status)
        )
        rows = await self._enrollments.list_by_learner(
            learner_id, status=status, offset=(page - 1) * limit, limit=limit
        )

        now = self._clock()
        courses: dict[str, Course | None] = {}
        items = []
        for e in rows:
            if e.course_id not in courses:
                courses[e.course_id] = await self._courses.get(e.course_id)
            course = courses[e.course_id]
            completion_or_zero(e, course, now=now)
            items.append(EnrollmentView(enrollment=e, course=_summary(course)))

        return EnrollmentPage(
            items=items,
            current=page,
            pages=math.ceil(total / limit),
            count=len(items),
            total=total,
        )

    async def get_detail(
        self, principal: Principal, learner_id: str, course_id: str
    ) -> EnrollmentDetail:
        if not principal.can_act_for(learner_id):
            raise ForbiddenError("Access denied. You can only view your own enrollments")

        e = await self._enrollments.get(learner_id, course_id)
        if e is None:
            raise EnrollmentNotFoundError()

        course = await self._courses.get(course_id)
        completion_or_zero(e, course, now=self._clock())

        progress = []
        for entry in e.progress.values():
            found = course.locate_item(entry.item_id) if course is not None else None
            if found is None:
                progress.append(ProgressDetail(entry=entry, module=None, item=None))
                continue
            module, item = found
            progress.append(
                ProgressDetail(
                    entry=entry,
                    module=ModuleRef(id=module.id, title=module.title),
                    item=ItemRef(
                        id=item.id, title=item.title, type=item.type, duration=item.duration
                    ),
                )
            )

        return EnrollmentDetail(enrollment=e, course=_summary(course), progress=progress)

    async def get_stats(
        self,
        principal: Principal,
        course_id: str | None = None,
        timeframe: str = "all",
    ) -> EnrollmentStats:
        if not principal.is_admin():
            raise ForbiddenError("Admin role required")
        if timeframe not in TIMEFRAMES:
            raise InvalidQueryError(
                f"timeframe must be one of {', '.join(TIMEFRAMES)}"
            )

        key = stats_cache_key(course_id, timeframe)
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached is not None:
                return EnrollmentStats.from_json(cached)

        stats = await self._compute_stats(course_id, timeframe)

        if self._cache is not None:
            await self._cache.set(key, stats.to_json(), self._stats_ttl)
        return stats

    async def _compute_stats(
        self, course_id: str | None, timeframe: str
    ) -> EnrollmentStats:
        days = TIMEFRAMES[timeframe]
        since = self._clock() - days * 86400 if days is not None else None
        flt = EnrollmentFilter(course_id=course_id, enrolled_since=since)

        buckets = await self._enrollments.aggregate_by_status(flt)
        total = await self._enrollments.count(flt)
        completed = buckets["completed"].count if "completed" in buckets else 0
        avg_days = await self._enrollments.average_completion_days(flt)
        trend = await self._enrollments.daily_enrollments(flt, limit=TREND_BUCKETS)

        logger.debug(
            "Computed enrollment stats course=%s timeframe=%s total=%d",
            course_id,
            timeframe,
            total,
        )
        return EnrollmentStats(
            course_id=course_id,
            timeframe=timeframe,
            total=total,
            completed=completed,
            completion_rate=percent(completed, total),
            avg_completion_days=_round2(avg_days or 0.0),
            status_breakdown={
                status: StatusStat(
                    count=b.count, avg_completion=_round2(b.avg_completion)
                )
                for status, b in buckets.items()
            },
            enrollment_trend=[TrendPoint(date=d, count=c) for d, c in trend],
        )
