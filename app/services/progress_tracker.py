"""Per-item progress mutation and completion derivation.

Pure functions over an Enrollment; nothing here touches storage.  The
caller loads the enrollment, applies these, and persists with a
version check.
"""

from __future__ import annotations

import logging

from app.models.course import Course
from app.models.enrollment import Enrollment, ProgressEntry
from app.services.errors import CourseNotFoundError, InvalidProgressError

logger = logging.getLogger(__name__)


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half-up (2.5 -> 3), 0 when whole is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def update_item_progress(
    enrollment: Enrollment,
    item_id: str,
    is_completed: bool,
    time_spent_delta: int = 0,
    *,
    now: int,
) -> Enrollment:
    """Upsert the progress entry for ``item_id``.

    time_spent accumulates; completed_at is stamped on the first
    completion only and survives a later un-complete.
    """
    if time_spent_delta < 0:
        raise InvalidProgressError()

    entry = enrollment.progress.get(item_id)
    if entry is None:
        enrollment.progress[item_id] = ProgressEntry(
            item_id=item_id,
            is_completed=is_completed,
            time_spent=time_spent_delta,
            completed_at=now if is_completed else None,
            last_accessed_at=now,
        )
    else:
        entry.is_completed = is_completed
        entry.time_spent += time_spent_delta
        entry.last_accessed_at = now
        if is_completed and entry.completed_at is None:
            entry.completed_at = now

    enrollment.last_accessed_at = now
    return enrollment


def calculate_completion(
    enrollment: Enrollment, course: Course | None, *, now: int
) -> int:
    """Recompute completion_percentage against the course structure.

    Raises CourseNotFoundError when ``course`` is None; callers decide
    whether to degrade.  Only moves status active -> completed, never
    back.
    """
    if course is None:
        raise CourseNotFoundError()

    total = course.total_items
    if total == 0:
        enrollment.completion_percentage = 0
        return 0

    known = course.item_ids()
    completed = sum(
        1 for p in enrollment.progress.values() if p.is_completed and p.item_id in known
    )
    percentage = min(100, percent(completed, total))
    enrollment.completion_percentage = percentage

    if percentage == 100 and enrollment.status == "active":
        enrollment.status = "completed"
        if enrollment.completed_at is None:
            enrollment.completed_at = now
        logger.debug("Completion reached 100%% for enrollment=%s", enrollment.id)

    return percentage


def completion_or_zero(
    enrollment: Enrollment, course: Course | None, *, now: int
) -> int:
    """calculate_completion, degrading a missing course to 0.

    A deleted course must not break an existing learner's enrollment:
    the percentage reads as 0 and neither the stored percentage nor the
    status is touched.
    """
    try:
        return calculate_completion(enrollment, course, now=now)
    except CourseNotFoundError:
        logger.warning(
            "Course %s not found computing completion for enrollment=%s; reporting 0",
            enrollment.course_id,
            enrollment.id,
        )
        return 0
