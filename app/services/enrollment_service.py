"""Enrollment write side: enroll, record progress, cancel, rate.

Every mutation of an existing enrollment goes through ``_mutate``:

  get -> apply -> save(version check)
      -> VersionConflictError: re-read and re-apply (bounded)
      -> attempts exhausted: ConcurrentModificationError (409)

Writes to the course aggregate (enrollment counter, rating average) are
separate, best-effort steps after the enrollment is saved.  A failure
there is logged at ERROR with the intended change and never undoes the
enrollment write.
"""

from __future__ import annotations

import datetime
import logging
import math
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from app.core.config import SETTINGS
from app.core.metrics import (
    COURSE_COMPLETIONS,
    ENROLLMENT_OPERATIONS,
    VERSION_CONFLICTS,
)
from app.models.enrollment import (
    MAX_REVIEW_LENGTH,
    RATABLE_STATUSES,
    Enrollment,
    ProgressEntry,
    Rating,
)
from app.models.principal import Principal
from app.repos.course_repo import CourseRepo
from app.repos.enrollment_repo import EnrollmentRepo
from app.services.cache import CacheService
from app.services.errors import (
    AlreadyCancelledError,
    AlreadyEnrolledError,
    ConcurrentModificationError,
    CourseNotFoundError,
    CourseUnavailableError,
    DuplicateKeyError,
    EnrollmentError,
    EnrollmentInactiveError,
    EnrollmentNotFoundError,
    ForbiddenError,
    InvalidProgressError,
    InvalidRatingError,
    RatingNotAllowedError,
    StorageError,
    VersionConflictError,
)
from app.services.progress_tracker import completion_or_zero, update_item_progress

logger = logging.getLogger(__name__)

STATS_CACHE_PATTERN = "stats:*"


def utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class EnrollResult:
    enrollment: Enrollment
    created: bool  # False when a cancelled enrollment was reactivated


@dataclass(frozen=True, slots=True)
class ProgressResult:
    enrollment_id: str
    completion_percentage: int
    status: str
    item: ProgressEntry


def _log_ctx(e: Enrollment) -> dict[str, str]:
    return {
        "learner_id": e.learner_id,
        "course_id": e.course_id,
        "enrollment_id": e.id,
    }


@contextmanager
def _track(operation: str) -> Iterator[None]:
    """Count domain rejections for ``operation``.

    Conflicts are counted by ``_mutate``; storage failures are not a
    rejection and propagate uncounted.
    """
    try:
        yield
    except (ConcurrentModificationError, StorageError):
        raise
    except EnrollmentError:
        ENROLLMENT_OPERATIONS.labels(operation=operation, outcome="rejected").inc()
        raise


class EnrollmentService:
    def __init__(
        self,
        enrollments: EnrollmentRepo,
        courses: CourseRepo,
        *,
        cache: CacheService | None = None,
        max_write_attempts: int | None = None,
        clock: Callable[[], int] = utc_now,
    ) -> None:
        self._enrollments = enrollments
        self._courses = courses
        self._cache = cache
        self._max_attempts = (
            max_write_attempts
            if max_write_attempts is not None
            else SETTINGS.enrollment_write_attempts
        )
        if self._max_attempts < 1:
            raise ValueError("max_write_attempts must be >= 1")
        self._clock = clock

    # ------------------------------------------------------------------
    # enroll
    # ------------------------------------------------------------------

    async def enroll(self, principal: Principal, course_id: str) -> EnrollResult:
        """Enroll the caller, or reactivate their cancelled enrollment."""
        learner_id = principal.user_id
        with _track("enroll"):
            course = await self._courses.get(course_id)
            if course is None:
                raise CourseNotFoundError()
            if not course.is_published:
                raise CourseUnavailableError()

            result = await self._enroll_or_reactivate(
                learner_id, course_id, course.price
            )

        e = result.enrollment
        outcome = "created" if result.created else "reactivated"
        ENROLLMENT_OPERATIONS.labels(operation="enroll", outcome=outcome).inc()
        logger.info(
            "Enrollment %s learner=%s course=%s enrollment=%s",
            outcome,
            learner_id,
            course_id,
            e.id,
            extra=_log_ctx(e),
        )

        await self._adjust_enrollment_count(course_id, +1)
        await self._invalidate_stats()
        return result

    async def _enroll_or_reactivate(
        self, learner_id: str, course_id: str, price: float
    ) -> EnrollResult:
        for attempt in range(1, self._max_attempts + 1):
            existing = await self._enrollments.get(learner_id, course_id)

            if existing is None:
                fresh = Enrollment.new(
                    learner_id=learner_id,
                    course_id=course_id,
                    enrolled_at=self._clock(),
                    payment_amount=price,
                )
                try:
                    created = await self._enrollments.create(fresh)
                except DuplicateKeyError:
                    # Lost the race to a concurrent enroll; re-read and
                    # apply the existing-record rules.
                    logger.debug(
                        "Duplicate enroll learner=%s course=%s attempt=%d",
                        learner_id,
                        course_id,
                        attempt,
                    )
                    continue
                return EnrollResult(enrollment=created, created=True)

            if existing.status != "cancelled":
                raise AlreadyEnrolledError()

            now = self._clock()
            existing.status = "active"
            existing.enrolled_at = now
            existing.last_accessed_at = now
            try:
                saved = await self._enrollments.save(existing)
            except VersionConflictError:
                self._record_conflict("enroll", learner_id, course_id, attempt)
                continue
            return EnrollResult(enrollment=saved, created=False)

        raise self._exhausted("enroll", learner_id, course_id)

    # ------------------------------------------------------------------
    # update_progress
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        principal: Principal,
        learner_id: str,
        course_id: str,
        item_id: str,
        is_completed: bool,
        time_spent: int = 0,
    ) -> ProgressResult:
        with _track("update_progress"):
            self._require_owner_or_admin(principal, learner_id)
            if time_spent < 0:
                raise InvalidProgressError()

            # Course structure is read once; retries only re-read the enrollment.
            course = await self._courses.get(course_id)
            percentage = 0

            def apply(e: Enrollment, now: int) -> None:
                nonlocal percentage
                if e.status != "active":
                    raise EnrollmentInactiveError()
                update_item_progress(e, item_id, is_completed, time_spent, now=now)
                percentage = completion_or_zero(e, course, now=now)

            before, saved = await self._mutate(
                "update_progress", learner_id, course_id, apply
            )

        ENROLLMENT_OPERATIONS.labels(operation="update_progress", outcome="ok").inc()
        if before == "active" and saved.status == "completed":
            COURSE_COMPLETIONS.inc()
            logger.info(
                "Enrollment completed learner=%s course=%s enrollment=%s",
                learner_id,
                course_id,
                saved.id,
                extra=_log_ctx(saved),
            )

        await self._invalidate_stats()
        return ProgressResult(
            enrollment_id=saved.id,
            completion_percentage=percentage,
            status=saved.status,
            item=saved.progress[item_id],
        )

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    async def cancel(
        self, principal: Principal, learner_id: str, course_id: str
    ) -> Enrollment:
        with _track("cancel"):
            self._require_owner_or_admin(principal, learner_id)

            def apply(e: Enrollment, now: int) -> None:
                if e.status == "cancelled":
                    raise AlreadyCancelledError()
                e.status = "cancelled"

            _, saved = await self._mutate("cancel", learner_id, course_id, apply)

        ENROLLMENT_OPERATIONS.labels(operation="cancel", outcome="ok").inc()
        logger.info(
            "Enrollment cancelled learner=%s course=%s by=%s",
            learner_id,
            course_id,
            principal.user_id,
            extra=_log_ctx(saved),
        )

        await self._adjust_enrollment_count(course_id, -1)
        await self._invalidate_stats()
        return saved

    # ------------------------------------------------------------------
    # rate
    # ------------------------------------------------------------------

    async def rate(
        self,
        principal: Principal,
        learner_id: str,
        course_id: str,
        score: int,
        review: str = "",
    ) -> Rating:
        with _track("rate"):
            # Ratings are the learner's own voice; admins can't rate for them.
            if principal.user_id != learner_id:
                raise ForbiddenError("You can only rate your own enrollments")
            # bool is an int subclass; True must not count as a score of 1.
            if isinstance(score, bool) or not isinstance(score, int):
                raise InvalidRatingError()
            if not 1 <= score <= 5:
                raise InvalidRatingError()
            if len(review) > MAX_REVIEW_LENGTH:
                raise InvalidRatingError(
                    f"Review must be at most {MAX_REVIEW_LENGTH} characters"
                )

            # Re-stamped by apply on every attempt.
            rating = Rating(score=score, review=review, rated_at=0)

            def apply(e: Enrollment, now: int) -> None:
                nonlocal rating
                if e.status not in RATABLE_STATUSES:
                    raise RatingNotAllowedError()
                rating = Rating(score=score, review=review, rated_at=now)
                e.rating = rating

            _, saved = await self._mutate("rate", learner_id, course_id, apply)

        ENROLLMENT_OPERATIONS.labels(operation="rate", outcome="ok").inc()
        logger.info(
            "Enrollment rated learner=%s course=%s score=%d",
            learner_id,
            course_id,
            score,
            extra=_log_ctx(saved),
        )

        await self._refresh_course_rating(course_id)
        await self._invalidate_stats()
        return rating

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_owner_or_admin(principal: Principal, learner_id: str) -> None:
        if not principal.can_act_for(learner_id):
            raise ForbiddenError()

    async def _mutate(
        self,
        operation: str,
        learner_id: str,
        course_id: str,
        apply: Callable[[Enrollment, int], None],
    ) -> tuple[str, Enrollment]:
        """Read-modify-write with optimistic retry.

        ``apply`` mutates the freshly read enrollment in place and may
        raise a domain error to abort.  Returns the status before the
        successful attempt and the saved enrollment.
        """
        for attempt in range(1, self._max_attempts + 1):
            current = await self._enrollments.get(learner_id, course_id)
            if current is None:
                raise EnrollmentNotFoundError()

            before = current.status
            apply(current, self._clock())
            try:
                saved = await self._enrollments.save(current)
            except VersionConflictError:
                self._record_conflict(operation, learner_id, course_id, attempt)
                continue
            return before, saved

        raise self._exhausted(operation, learner_id, course_id)

    @staticmethod
    def _record_conflict(
        operation: str, learner_id: str, course_id: str, attempt: int
    ) -> None:
        VERSION_CONFLICTS.labels(operation=operation).inc()
        logger.debug(
            "Version conflict op=%s learner=%s course=%s attempt=%d",
            operation,
            learner_id,
            course_id,
            attempt,
        )

    def _exhausted(
        self, operation: str, learner_id: str, course_id: str
    ) -> ConcurrentModificationError:
        ENROLLMENT_OPERATIONS.labels(operation=operation, outcome="conflict").inc()
        logger.warning(
            "Giving up op=%s learner=%s course=%s after %d attempts",
            operation,
            learner_id,
            course_id,
            self._max_attempts,
        )
        return ConcurrentModificationError()

    async def _adjust_enrollment_count(self, course_id: str, delta: int) -> None:
        try:
            await self._courses.adjust_enrollment_count(course_id, delta)
        except StorageError:
            logger.exception(
                "Course counter update failed course=%s delta=%+d", course_id, delta
            )

    async def _refresh_course_rating(self, course_id: str) -> None:
        try:
            summary = await self._enrollments.rating_summary(course_id)
            average = (
                math.floor(summary.average * 10 + 0.5) / 10
                if summary.average is not None
                else 0.0
            )
            await self._courses.set_rating(course_id, average, summary.count)
        except StorageError:
            logger.exception("Course rating refresh failed course=%s", course_id)

    async def _invalidate_stats(self) -> None:
        if self._cache is not None:
            await self._cache.delete_pattern(STATS_CACHE_PATTERN)
