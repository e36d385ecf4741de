from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from app.models.course import Course


class CourseRepo(Protocol):
    """Course catalog as seen by the enrollment engine.

    ``get`` doubles as the course-structure provider: the returned
    Course carries its ordered modules and items.  The two writers are
    best-effort side effects; updating a missing course is a no-op.
    """

    async def get(self, course_id: str) -> Course | None: ...
    async def adjust_enrollment_count(self, course_id: str, delta: int) -> None: ...
    async def set_rating(self, course_id: str, average: float, count: int) -> None: ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Course] = {}

    def add(self, course: Course) -> None:
        if course.id in self._by_id:
            raise ValueError("course already exists")
        self._by_id[course.id] = course

    def replace(self, course: Course) -> None:
        """Swap in a new version of a course (e.g. restructured modules)."""
        self._by_id[course.id] = course

    def remove(self, course_id: str) -> bool:
        return self._by_id.pop(course_id, None) is not None

    async def get(self, course_id: str) -> Course | None:
        return self._by_id.get(course_id)

    async def adjust_enrollment_count(self, course_id: str, delta: int) -> None:
        c = self._by_id.get(course_id)
        if c is None:
            return
        self._by_id[course_id] = replace(c, enrollment_count=c.enrollment_count + delta)

    async def set_rating(self, course_id: str, average: float, count: int) -> None:
        c = self._by_id.get(course_id)
        if c is None:
            return
        self._by_id[course_id] = replace(c, rating_average=average, rating_count=count)
