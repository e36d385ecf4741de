"""SQLAlchemy table definitions.

These map to the dataclass domain models in app/models/.  Repos convert
between SQLAlchemy rows and domain dataclasses.

Enrollment progress is embedded in the enrollment row (JSONB array)
rather than normalized into its own table: a progress update is one
row write, which is what makes the version check cover the whole
read-modify-write.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base

# --- Course catalog (read model owned by the catalog service) ---


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enrollment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CourseModuleRow(Base):
    __tablename__ = "course_modules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(500), nullable=False)


class ModuleItemRow(Base):
    __tablename__ = "module_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    module_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("course_modules.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # video|document
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# --- Enrollments ---


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active"
    )  # active|completed|paused|cancelled
    # Ordered list of {item_id, is_completed, time_spent, completed_at, last_accessed_at}
    progress: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    completion_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    enrolled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_accessed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="free"
    )  # pending|paid|failed|refunded|free
    payment_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # none_as_null: an unrated enrollment stores SQL NULL, not JSON 'null'.
    rating: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )
    certificate_issued: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    certificate_issued_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("learner_id", "course_id", name="uq_enrollment_learner_course"),
        Index("ix_enrollments_learner_id", "learner_id"),
        Index("ix_enrollments_course_id", "course_id"),
        Index("ix_enrollments_status", "status"),
        Index("ix_enrollments_enrolled_at", "enrolled_at"),
    )
