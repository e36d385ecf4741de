"""Enrollment engine error taxonomy.

Service-level errors carry a stable ``code`` so the HTTP layer (and
logs) can tell them apart without string matching.  Store-level errors
(DuplicateKeyError, VersionConflictError) never leave the service; it
translates them.
"""

from __future__ import annotations


class EnrollmentError(Exception):
    """Base class for everything the enrollment engine raises."""

    code = "enrollment_error"
    default_message = "enrollment operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# --- Course lookups ---


class CourseNotFoundError(EnrollmentError):
    code = "course_not_found"
    default_message = "Course not found"


class CourseUnavailableError(EnrollmentError):
    code = "course_unavailable"
    default_message = "Course is not available for enrollment"


# --- Enrollment state ---


class AlreadyEnrolledError(EnrollmentError):
    code = "already_enrolled"
    default_message = "You are already enrolled in this course"


class AlreadyCancelledError(EnrollmentError):
    code = "already_cancelled"
    default_message = "Enrollment is already cancelled"


class EnrollmentNotFoundError(EnrollmentError):
    code = "enrollment_not_found"
    default_message = "Enrollment not found"


class EnrollmentInactiveError(EnrollmentNotFoundError):
    """An enrollment exists but is not active, so progress can't be recorded."""

    code = "enrollment_inactive"
    default_message = "Cannot update progress for inactive enrollment"


class RatingNotAllowedError(EnrollmentError):
    code = "rating_not_allowed"
    default_message = "You can only rate active or completed courses"


# --- Authorization / validation ---


class ForbiddenError(EnrollmentError):
    code = "forbidden"
    default_message = "Access denied"


class InvalidRatingError(EnrollmentError):
    code = "invalid_rating"
    default_message = "Rating score must be an integer between 1 and 5"


class InvalidProgressError(EnrollmentError):
    code = "invalid_progress"
    default_message = "timeSpent must be a non-negative integer"


class InvalidQueryError(EnrollmentError):
    code = "invalid_query"
    default_message = "Invalid query parameters"


# --- Concurrency / storage ---


class ConcurrentModificationError(EnrollmentError):
    code = "concurrent_modification"
    default_message = "Enrollment was modified concurrently; retry the request"


class StorageError(EnrollmentError):
    code = "storage_error"
    default_message = "Enrollment storage is unavailable"


class DuplicateKeyError(EnrollmentError):
    """Store refused a create because (learner_id, course_id) already exists."""

    code = "duplicate_key"
    default_message = "enrollment already exists for learner and course"


class VersionConflictError(EnrollmentError):
    """Store refused a save because the record's version moved on."""

    code = "version_conflict"
    default_message = "enrollment version is stale"
