from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import course_repo, enrollment_repo
from app.main import app
from app.models.course import Course, CourseModule, ModuleItem
from app.services import token_service
from app.services.cache import cache_service

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_enrollment_state() -> None:
    """Clear the in-memory enrollment and course stores between tests."""
    enrollment_repo._store.clear()
    course_repo._by_id.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "learner-1",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


@pytest.fixture
def token() -> str:
    """Token for learner-1 with the default learner role."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="admin-1", roles=["admin"])


# ---------------------------------------------------------------------------
# Course helpers
# ---------------------------------------------------------------------------


def build_course(
    course_id: str = "course-1",
    items_per_module: tuple[int, ...] = (2, 2),
    *,
    is_published: bool = True,
    price: float = 0.0,
) -> Course:
    """Course with deterministic ids: modules m1.., items i1.. across modules."""
    modules = []
    n = 0
    for m, count in enumerate(items_per_module, start=1):
        items = []
        for _ in range(count):
            n += 1
            items.append(
                ModuleItem(
                    id=f"i{n}",
                    title=f"Item {n}",
                    type="video" if n % 2 else "document",
                    duration=10 if n % 2 else 0,
                    position=n,
                )
            )
        modules.append(
            CourseModule(id=f"m{m}", title=f"Module {m}", position=m, items=tuple(items))
        )
    return Course(
        id=course_id,
        title=f"Course {course_id}",
        price=price,
        is_published=is_published,
        modules=tuple(modules),
    )


def add_course(**kwargs) -> Course:
    """Build a course and register it in the in-memory course repo."""
    course = build_course(**kwargs)
    course_repo.add(course)
    return course


@pytest.fixture
def course() -> Course:
    """Published, free course with 4 items (i1..i4) in 2 modules."""
    return add_course()
