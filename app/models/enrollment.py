from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal
from uuid import uuid4

EnrollmentStatus = Literal["active", "completed", "paused", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded", "free"]

ENROLLMENT_STATUSES: tuple[EnrollmentStatus, ...] = (
    "active",
    "completed",
    "paused",
    "cancelled",
)

# Statuses in which the learner may leave a rating.
RATABLE_STATUSES: frozenset[str] = frozenset({"active", "completed"})

MAX_REVIEW_LENGTH = 500


@dataclass(slots=True)
class ProgressEntry:
    """Per-item progress inside one enrollment.

    ``completed_at`` records the first completion and is never cleared,
    even if the item is later marked incomplete again.
    """

    item_id: str
    is_completed: bool = False
    time_spent: int = 0  # cumulative minutes
    completed_at: int | None = None
    last_accessed_at: int | None = None


@dataclass(frozen=True, slots=True)
class Rating:
    score: int
    review: str
    rated_at: int


@dataclass(slots=True)
class Enrollment:
    """One learner's relationship to one course.

    ``progress`` is keyed by item_id (insertion-ordered) so upserts are
    O(1); the storage layer serializes it as an ordered list.

    ``version`` is the optimistic-concurrency token.  Repos bump it on
    every successful save and reject saves carrying a stale value.
    """

    id: str
    learner_id: str
    course_id: str
    status: EnrollmentStatus = "active"
    progress: dict[str, ProgressEntry] = field(default_factory=dict)
    completion_percentage: int = 0
    enrolled_at: int = 0
    last_accessed_at: int | None = None
    completed_at: int | None = None
    payment_status: PaymentStatus = "free"
    payment_amount: float = 0.0
    rating: Rating | None = None
    certificate_issued: bool = False
    certificate_issued_at: int | None = None
    version: int = 1

    @staticmethod
    def new(
        *,
        learner_id: str,
        course_id: str,
        enrolled_at: int,
        payment_amount: float = 0.0,
    ) -> Enrollment:
        return Enrollment(
            id=str(uuid4()),
            learner_id=learner_id,
            course_id=course_id,
            status="active",
            enrolled_at=enrolled_at,
            last_accessed_at=enrolled_at,
            payment_status="pending" if payment_amount > 0 else "free",
            payment_amount=payment_amount,
        )

    @property
    def completed_items_count(self) -> int:
        return sum(1 for p in self.progress.values() if p.is_completed)

    @property
    def total_time_spent(self) -> int:
        return sum(p.time_spent for p in self.progress.values())
