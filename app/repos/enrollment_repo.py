from __future__ import annotations

import copy
import datetime
from collections import defaultdict
from dataclasses import dataclass
from typing import Protocol

from app.models.enrollment import Enrollment
from app.services.errors import (
    DuplicateKeyError,
    EnrollmentNotFoundError,
    VersionConflictError,
)


@dataclass(frozen=True, slots=True)
class EnrollmentFilter:
    learner_id: str | None = None
    course_id: str | None = None
    status: str | None = None
    enrolled_since: int | None = None  # inclusive, epoch seconds


@dataclass(frozen=True, slots=True)
class StatusBucket:
    count: int
    avg_completion: float


@dataclass(frozen=True, slots=True)
class RatingSummary:
    average: float | None
    count: int


class EnrollmentRepo(Protocol):
    async def get(self, learner_id: str, course_id: str) -> Enrollment | None: ...
    async def create(self, enrollment: Enrollment) -> Enrollment: ...
    async def save(self, enrollment: Enrollment) -> Enrollment: ...
    async def count(self, flt: EnrollmentFilter) -> int: ...
    async def list_by_learner(
        self,
        learner_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Enrollment]: ...
    async def aggregate_by_status(
        self, flt: EnrollmentFilter
    ) -> dict[str, StatusBucket]: ...
    async def average_completion_days(self, flt: EnrollmentFilter) -> float | None: ...
    async def daily_enrollments(
        self, flt: EnrollmentFilter, limit: int = 30
    ) -> list[tuple[str, int]]: ...
    async def rating_summary(self, course_id: str) -> RatingSummary: ...


def _matches(e: Enrollment, flt: EnrollmentFilter) -> bool:
    if flt.learner_id is not None and e.learner_id != flt.learner_id:
        return False
    if flt.course_id is not None and e.course_id != flt.course_id:
        return False
    if flt.status is not None and e.status != flt.status:
        return False
    if flt.enrolled_since is not None and e.enrolled_at < flt.enrolled_since:
        return False
    return True


def _day(ts: int) -> str:
    return datetime.datetime.fromtimestamp(ts, datetime.UTC).strftime("%Y-%m-%d")


class InMemoryEnrollmentRepo:
    """Dict-backed store keyed by (learner_id, course_id).

    Records are deep-copied on the way in and out so a caller mutating
    its copy can't bypass the version check.
    """

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], Enrollment] = {}

    async def get(self, learner_id: str, course_id: str) -> Enrollment | None:
        e = self._store.get((learner_id, course_id))
        return copy.deepcopy(e) if e is not None else None

    async def create(self, enrollment: Enrollment) -> Enrollment:
        key = (enrollment.learner_id, enrollment.course_id)
        if key in self._store:
            raise DuplicateKeyError()
        self._store[key] = copy.deepcopy(enrollment)
        return copy.deepcopy(enrollment)

    async def save(self, enrollment: Enrollment) -> Enrollment:
        key = (enrollment.learner_id, enrollment.course_id)
        current = self._store.get(key)
        if current is None:
            raise EnrollmentNotFoundError()
        if current.version != enrollment.version:
            raise VersionConflictError()

        stored = copy.deepcopy(enrollment)
        stored.version += 1
        self._store[key] = stored
        return copy.deepcopy(stored)

    async def count(self, flt: EnrollmentFilter) -> int:
        return sum(1 for e in self._store.values() if _matches(e, flt))

    async def list_by_learner(
        self,
        learner_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Enrollment]:
        flt = EnrollmentFilter(learner_id=learner_id, status=status)
        rows = sorted(
            (e for e in self._store.values() if _matches(e, flt)),
            key=lambda e: e.enrolled_at,
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return [copy.deepcopy(e) for e in rows[offset:end]]

    async def aggregate_by_status(
        self, flt: EnrollmentFilter
    ) -> dict[str, StatusBucket]:
        grouped: dict[str, list[int]] = defaultdict(list)
        for e in self._store.values():
            if _matches(e, flt):
                grouped[e.status].append(e.completion_percentage)
        return {
            status: StatusBucket(count=len(pcts), avg_completion=sum(pcts) / len(pcts))
            for status, pcts in grouped.items()
        }

    async def average_completion_days(self, flt: EnrollmentFilter) -> float | None:
        spans = [
            (e.completed_at - e.enrolled_at) / 86400
            for e in self._store.values()
            if _matches(e, flt) and e.completed_at is not None
        ]
        if not spans:
            return None
        return sum(spans) / len(spans)

    async def daily_enrollments(
        self, flt: EnrollmentFilter, limit: int = 30
    ) -> list[tuple[str, int]]:
        counts: dict[str, int] = defaultdict(int)
        for e in self._store.values():
            if _matches(e, flt):
                counts[_day(e.enrolled_at)] += 1
        return sorted(counts.items())[:limit]

    async def rating_summary(self, course_id: str) -> RatingSummary:
        scores = [
            e.rating.score
            for e in self._store.values()
            if e.course_id == course_id and e.rating is not None
        ]
        if not scores:
            return RatingSummary(average=None, count=0)
        return RatingSummary(average=sum(scores) / len(scores), count=len(scores))
