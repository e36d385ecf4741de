"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import EnrollmentRow
from app.models.enrollment import Enrollment, ProgressEntry, Rating
from app.repos.enrollment_repo import EnrollmentFilter, RatingSummary, StatusBucket
from app.services.errors import (
    DuplicateKeyError,
    EnrollmentNotFoundError,
    StorageError,
    VersionConflictError,
)


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL via SQLAlchemy.

    Every save is a compare-and-set on ``version``; the whole row
    (progress array included) is written in one UPDATE.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, learner_id: str, course_id: str) -> Enrollment | None:
        # populate_existing: a prior UPDATE in this session bypassed the
        # identity map, so cached rows must be overwritten from the DB.
        stmt = (
            select(EnrollmentRow)
            .where(
                EnrollmentRow.learner_id == learner_id,
                EnrollmentRow.course_id == course_id,
            )
            .execution_options(populate_existing=True)
        )
        try:
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def create(self, enrollment: Enrollment) -> Enrollment:
        row = EnrollmentRow(id=enrollment.id, **_enrollment_values(enrollment))
        try:
            # SAVEPOINT so a unique-violation doesn't poison the request's
            # outer transaction; the service re-reads after DuplicateKeyError.
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError:
            raise DuplicateKeyError() from None
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return _row_to_enrollment(row)

    async def save(self, enrollment: Enrollment) -> Enrollment:
        values = _enrollment_values(enrollment)
        values["version"] = enrollment.version + 1
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment.id)
            .where(EnrollmentRow.version == enrollment.version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
            if result.rowcount == 0:
                exists = await self._session.execute(
                    select(EnrollmentRow.id).where(EnrollmentRow.id == enrollment.id)
                )
                if exists.scalar_one_or_none() is None:
                    raise EnrollmentNotFoundError()
                raise VersionConflictError()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

        saved = await self.get(enrollment.learner_id, enrollment.course_id)
        if saved is None:
            raise EnrollmentNotFoundError()
        return saved

    async def count(self, flt: EnrollmentFilter) -> int:
        stmt = _apply_filter(select(func.count()).select_from(EnrollmentRow), flt)
        try:
            return int((await self._session.execute(stmt)).scalar_one())
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    async def list_by_learner(
        self,
        learner_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Enrollment]:
        flt = EnrollmentFilter(learner_id=learner_id, status=status)
        stmt = (
            _apply_filter(select(EnrollmentRow), flt)
            .order_by(EnrollmentRow.enrolled_at.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            rows = (await self._session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return [_row_to_enrollment(r) for r in rows]

    async def aggregate_by_status(
        self, flt: EnrollmentFilter
    ) -> dict[str, StatusBucket]:
        stmt = _apply_filter(
            select(
                EnrollmentRow.status,
                func.count(),
                func.avg(EnrollmentRow.completion_percentage),
            ),
            flt,
        ).group_by(EnrollmentRow.status)
        try:
            rows = (await self._session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return {
            status: StatusBucket(count=int(n), avg_completion=float(avg or 0))
            for status, n, avg in rows
        }

    async def average_completion_days(self, flt: EnrollmentFilter) -> float | None:
        span = (EnrollmentRow.completed_at - EnrollmentRow.enrolled_at) / 86400.0
        stmt = _apply_filter(select(func.avg(span)), flt).where(
            EnrollmentRow.completed_at.is_not(None)
        )
        try:
            value = (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return float(value) if value is not None else None

    async def daily_enrollments(
        self, flt: EnrollmentFilter, limit: int = 30
    ) -> list[tuple[str, int]]:
        day = func.to_char(
            func.timezone("UTC", func.to_timestamp(EnrollmentRow.enrolled_at)),
            "YYYY-MM-DD",
        ).label("day")
        stmt = (
            _apply_filter(select(day, func.count()), flt)
            .group_by(day)
            .order_by(day)
            .limit(limit)
        )
        try:
            rows = (await self._session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return [(d, int(n)) for d, n in rows]

    async def rating_summary(self, course_id: str) -> RatingSummary:
        # Count scores, not rows: a JSON 'null' rating has no score.
        score = EnrollmentRow.rating["score"].as_integer()
        stmt = select(func.avg(score), func.count(score)).where(
            EnrollmentRow.course_id == course_id,
            score.is_not(None),
        )
        try:
            avg, n = (await self._session.execute(stmt)).one()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        if not n:
            return RatingSummary(average=None, count=0)
        return RatingSummary(average=float(avg), count=int(n))


def _apply_filter(stmt: Select, flt: EnrollmentFilter) -> Select:
    if flt.learner_id is not None:
        stmt = stmt.where(EnrollmentRow.learner_id == flt.learner_id)
    if flt.course_id is not None:
        stmt = stmt.where(EnrollmentRow.course_id == flt.course_id)
    if flt.status is not None:
        stmt = stmt.where(EnrollmentRow.status == flt.status)
    if flt.enrolled_since is not None:
        stmt = stmt.where(EnrollmentRow.enrolled_at >= flt.enrolled_since)
    return stmt


def _enrollment_values(e: Enrollment) -> dict[str, Any]:
    return {
        "learner_id": e.learner_id,
        "course_id": e.course_id,
        "status": e.status,
        "progress": [_entry_to_json(p) for p in e.progress.values()],
        "completion_percentage": e.completion_percentage,
        "enrolled_at": e.enrolled_at,
        "last_accessed_at": e.last_accessed_at,
        "completed_at": e.completed_at,
        "payment_status": e.payment_status,
        "payment_amount": e.payment_amount,
        "rating": _rating_to_json(e.rating),
        "certificate_issued": e.certificate_issued,
        "certificate_issued_at": e.certificate_issued_at,
        "version": e.version,
    }


def _entry_to_json(p: ProgressEntry) -> dict[str, Any]:
    return {
        "item_id": p.item_id,
        "is_completed": p.is_completed,
        "time_spent": p.time_spent,
        "completed_at": p.completed_at,
        "last_accessed_at": p.last_accessed_at,
    }


def _rating_to_json(r: Rating | None) -> dict[str, Any] | None:
    if r is None:
        return None
    return {"score": r.score, "review": r.review, "rated_at": r.rated_at}


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    progress = {
        p["item_id"]: ProgressEntry(
            item_id=p["item_id"],
            is_completed=bool(p.get("is_completed", False)),
            time_spent=int(p.get("time_spent", 0)),
            completed_at=p.get("completed_at"),
            last_accessed_at=p.get("last_accessed_at"),
        )
        for p in (row.progress or [])
    }
    rating = None
    if row.rating:
        rating = Rating(
            score=int(row.rating["score"]),
            review=row.rating.get("review", ""),
            rated_at=int(row.rating["rated_at"]),
        )
    return Enrollment(
        id=row.id,
        learner_id=row.learner_id,
        course_id=row.course_id,
        status=row.status,  # type: ignore[arg-type]
        progress=progress,
        completion_percentage=row.completion_percentage,
        enrolled_at=row.enrolled_at,
        last_accessed_at=row.last_accessed_at,
        completed_at=row.completed_at,
        payment_status=row.payment_status,  # type: ignore[arg-type]
        payment_amount=row.payment_amount,
        rating=rating,
        certificate_issued=row.certificate_issued,
        certificate_issued_at=row.certificate_issued_at,
        version=row.version,
    )
