from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.db.engine import async_session_factory, session_scope
from app.models.principal import Principal
from app.repos.course_repo import CourseRepo, InMemoryCourseRepo
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.pg_course_repo import PgCourseRepo
from app.repos.pg_enrollment_repo import PgEnrollmentRepo
from app.services import token_service
from app.services.cache import cache_service
from app.services.enrollment_queries import EnrollmentQueries
from app.services.enrollment_service import STATS_CACHE_PATTERN, EnrollmentService

logger = logging.getLogger(__name__)

# Tokens are minted by the platform auth server.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# In-memory stores, used when no DATABASE_URL is configured (dev, tests).
enrollment_repo = InMemoryEnrollmentRepo()
course_repo = InMemoryCourseRepo()


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal.

    Used as a FastAPI dependency on any protected endpoint.
    """
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    Returns the Principal if the role is present, else 403.
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Enrollment engine wiring
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _repos() -> AsyncIterator[tuple[EnrollmentRepo, CourseRepo]]:
    """Yield the repos for one request.

    With a database, both share one session so the request is a single
    transaction (committed on success, rolled back on error).
    """
    if async_session_factory is None:
        yield enrollment_repo, course_repo
        return
    async with session_scope() as session:
        yield PgEnrollmentRepo(session), PgCourseRepo(session)


async def get_enrollment_service() -> AsyncIterator[EnrollmentService]:
    async with _repos() as (enrollments, courses):
        yield EnrollmentService(enrollments, courses, cache=cache_service)
    # The service invalidates before commit; a stats read in that window
    # could re-cache the old snapshot, so drop it again once committed.
    await cache_service.delete_pattern(STATS_CACHE_PATTERN)


async def get_enrollment_queries() -> AsyncIterator[EnrollmentQueries]:
    async with _repos() as (enrollments, courses):
        yield EnrollmentQueries(enrollments, courses, cache=cache_service)
