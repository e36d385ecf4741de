"""PostgreSQL implementation of CourseRepo (read model + counters)."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CourseModuleRow, CourseRow, ModuleItemRow
from app.models.course import Course, CourseModule, ModuleItem
from app.services.errors import StorageError


class PgCourseRepo:
    """Satisfies the CourseRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, course_id: str) -> Course | None:
        try:
            row = (
                await self._session.execute(
                    select(CourseRow).where(CourseRow.id == course_id)
                )
            ).scalar_one_or_none()
            if row is None:
                return None

            modules = (
                (
                    await self._session.execute(
                        select(CourseModuleRow)
                        .where(CourseModuleRow.course_id == course_id)
                        .order_by(CourseModuleRow.position)
                    )
                )
                .scalars()
                .all()
            )
            items_by_module: dict[str, list[ModuleItem]] = {m.id: [] for m in modules}
            if modules:
                item_rows = (
                    (
                        await self._session.execute(
                            select(ModuleItemRow)
                            .where(ModuleItemRow.module_id.in_(list(items_by_module)))
                            .order_by(ModuleItemRow.position)
                        )
                    )
                    .scalars()
                    .all()
                )
                for i in item_rows:
                    items_by_module[i.module_id].append(
                        ModuleItem(
                            id=i.id,
                            title=i.title,
                            type=i.type,  # type: ignore[arg-type]
                            duration=i.duration,
                            position=i.position,
                        )
                    )
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

        return Course(
            id=row.id,
            title=row.title,
            price=row.price,
            is_published=row.is_published,
            enrollment_count=row.enrollment_count,
            rating_average=row.rating_average,
            rating_count=row.rating_count,
            modules=tuple(
                CourseModule(
                    id=m.id,
                    title=m.title,
                    position=m.position,
                    items=tuple(items_by_module[m.id]),
                )
                for m in modules
            ),
        )

    async def adjust_enrollment_count(self, course_id: str, delta: int) -> None:
        # Atomic increment in SQL; no read-modify-write on the course row.
        stmt = (
            update(CourseRow)
            .where(CourseRow.id == course_id)
            .values(enrollment_count=CourseRow.enrollment_count + delta)
        )
        try:
            # SAVEPOINT: a failed side-effect write must not abort the
            # enrollment write sharing this transaction.
            async with self._session.begin_nested():
                await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    async def set_rating(self, course_id: str, average: float, count: int) -> None:
        stmt = (
            update(CourseRow)
            .where(CourseRow.id == course_id)
            .values(rating_average=average, rating_count=count)
        )
        try:
            # SAVEPOINT: a failed side-effect write must not abort the
            # enrollment write sharing this transaction.
            async with self._session.begin_nested():
                await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
