"""Enrollment endpoints.

Routes are thin: parse the body, call the service with the caller's
Principal, map the error taxonomy onto HTTP status codes.

  POST /v1/enrollments                                -> enroll (201 / 200 reactivated)
  GET  /v1/enrollments/stats                          -> admin statistics (cached)
  GET  /v1/enrollments/{learner_id}                   -> paged list
  PUT  /v1/enrollments/{learner_id}/progress          -> record item progress
  GET  /v1/enrollments/{learner_id}/{course_id}       -> detail with module/item info
  PUT  /v1/enrollments/{learner_id}/{course_id}/cancel
  PUT  /v1/enrollments/{learner_id}/{course_id}/rate
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, StrictInt

from app.api.dependencies import (
    get_enrollment_queries,
    get_enrollment_service,
    require_role,
    require_user,
)
from app.models.enrollment import Enrollment, ProgressEntry, Rating
from app.models.principal import Principal
from app.services.enrollment_queries import (
    CourseSummary,
    EnrollmentQueries,
    EnrollmentStats,
)
from app.services.enrollment_service import EnrollmentService
from app.services.errors import (
    ConcurrentModificationError,
    CourseNotFoundError,
    EnrollmentError,
    EnrollmentInactiveError,
    EnrollmentNotFoundError,
    ForbiddenError,
    StorageError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])

Service = Annotated[EnrollmentService, Depends(get_enrollment_service)]
Queries = Annotated[EnrollmentQueries, Depends(get_enrollment_queries)]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class EnrollIn(BaseModel):
    course_id: str = Field(min_length=1)


class ProgressIn(BaseModel):
    course_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    is_completed: bool
    time_spent: int = 0  # minutes to add; negatives rejected by the service


class RateIn(BaseModel):
    score: StrictInt  # bools and floats are a 422, out-of-range a 400
    review: str = ""


class ProgressEntryOut(BaseModel):
    item_id: str
    is_completed: bool
    time_spent: int
    completed_at: int | None
    last_accessed_at: int | None


class RatingOut(BaseModel):
    score: int
    review: str
    rated_at: int


class CourseSummaryOut(BaseModel):
    id: str
    title: str
    price: float
    is_published: bool


class EnrollmentOut(BaseModel):
    id: str
    learner_id: str
    course_id: str
    status: str
    completion_percentage: int
    enrolled_at: int
    last_accessed_at: int | None
    completed_at: int | None
    payment_status: str
    payment_amount: float
    rating: RatingOut | None
    certificate_issued: bool
    completed_items_count: int
    total_time_spent: int
    progress: list[ProgressEntryOut]
    course: CourseSummaryOut | None = None


class PaginationOut(BaseModel):
    current: int
    pages: int
    count: int
    total: int


class EnrollmentPageOut(BaseModel):
    enrollments: list[EnrollmentOut]
    pagination: PaginationOut


class ModuleRefOut(BaseModel):
    id: str
    title: str


class ItemRefOut(BaseModel):
    id: str
    title: str
    type: str
    duration: int


class ProgressDetailOut(ProgressEntryOut):
    module: ModuleRefOut | None
    item: ItemRefOut | None


class EnrollmentDetailOut(EnrollmentOut):
    progress_details: list[ProgressDetailOut]


class ProgressResultOut(BaseModel):
    enrollment_id: str
    completion_percentage: int
    status: str
    item: ProgressEntryOut


class StatusStatOut(BaseModel):
    count: int
    avg_completion: float


class TrendPointOut(BaseModel):
    date: str
    count: int


class EnrollmentStatsOut(BaseModel):
    course_id: str | None
    timeframe: str
    total: int
    completed: int
    completion_rate: int
    avg_completion_days: float
    status_breakdown: dict[str, StatusStatOut]
    enrollment_trend: list[TrendPointOut]


# ---------------------------------------------------------------------------
# Mapping helpers
# ---------------------------------------------------------------------------


def _entry_out(p: ProgressEntry) -> ProgressEntryOut:
    return ProgressEntryOut(
        item_id=p.item_id,
        is_completed=p.is_completed,
        time_spent=p.time_spent,
        completed_at=p.completed_at,
        last_accessed_at=p.last_accessed_at,
    )


def _rating_out(r: Rating) -> RatingOut:
    return RatingOut(score=r.score, review=r.review, rated_at=r.rated_at)


def _course_out(c: CourseSummary | None) -> CourseSummaryOut | None:
    if c is None:
        return None
    return CourseSummaryOut(
        id=c.id, title=c.title, price=c.price, is_published=c.is_published
    )


def _enrollment_fields(e: Enrollment) -> dict:
    return {
        "id": e.id,
        "learner_id": e.learner_id,
        "course_id": e.course_id,
        "status": e.status,
        "completion_percentage": e.completion_percentage,
        "enrolled_at": e.enrolled_at,
        "last_accessed_at": e.last_accessed_at,
        "completed_at": e.completed_at,
        "payment_status": e.payment_status,
        "payment_amount": e.payment_amount,
        "rating": _rating_out(e.rating) if e.rating is not None else None,
        "certificate_issued": e.certificate_issued,
        "completed_items_count": e.completed_items_count,
        "total_time_spent": e.total_time_spent,
        "progress": [_entry_out(p) for p in e.progress.values()],
    }


def _enrollment_out(
    e: Enrollment, course: CourseSummary | None = None
) -> EnrollmentOut:
    return EnrollmentOut(**_enrollment_fields(e), course=_course_out(course))


def _stats_out(s: EnrollmentStats) -> EnrollmentStatsOut:
    return EnrollmentStatsOut(
        course_id=s.course_id,
        timeframe=s.timeframe,
        total=s.total,
        completed=s.completed,
        completion_rate=s.completion_rate,
        avg_completion_days=s.avg_completion_days,
        status_breakdown={
            k: StatusStatOut(count=v.count, avg_completion=v.avg_completion)
            for k, v in s.status_breakdown.items()
        },
        enrollment_trend=[
            TrendPointOut(date=p.date, count=p.count) for p in s.enrollment_trend
        ],
    )


def _http_error(e: EnrollmentError, principal: Principal) -> HTTPException:
    """Translate a service error into the matching HTTPException."""
    # EnrollmentInactiveError subclasses EnrollmentNotFoundError; check it first.
    if isinstance(e, EnrollmentInactiveError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, (CourseNotFoundError, EnrollmentNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, ForbiddenError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(e, ConcurrentModificationError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, StorageError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST

    if isinstance(e, StorageError):
        logger.error("Storage failure for user=%s: %s", principal.user_id, e.message)
        return HTTPException(status_code=code, detail=e.default_message)

    logger.warning(
        "Rejected request from user=%s: %s (%s)", principal.user_id, e.code, e.message
    )
    return HTTPException(status_code=code, detail=e.message)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
# /stats is declared before /{learner_id} so it isn't captured as a learner id.


@router.get("/stats", response_model=EnrollmentStatsOut)
async def get_enrollment_stats(
    principal: Annotated[Principal, Depends(require_role("admin"))],
    queries: Queries,
    course_id: str | None = None,
    timeframe: str = "all",
) -> EnrollmentStatsOut:
    try:
        stats = await queries.get_stats(principal, course_id, timeframe)
    except EnrollmentError as e:
        raise _http_error(e, principal) from None
    return _stats_out(stats)


@router.post(
    "",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(
    body: EnrollIn,
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> EnrollmentOut:
    try:
        result = await service.enroll(principal, body.course_id)
    except EnrollmentError as e:
        raise _http_error(e, principal) from None

    if not result.created:
        response.status_code = status.HTTP_200_OK
    return _enrollment_out(result.enrollment)


@router.get("/{learner_id}", response_model=EnrollmentPageOut)
async def list_enrollments(
    learner_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    queries: Queries,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    page: int = 1,
    limit: int = 10,
) -> EnrollmentPageOut:
    try:
        result = await queries.list_for_learner(
            principal, learner_id, status=status_filter, page=page, limit=limit
        )
    except EnrollmentError as e:
        raise _http_error(e, principal) from None

    return EnrollmentPageOut(
        enrollments=[_enrollment_out(v.enrollment, v.course) for v in result.items],
        pagination=PaginationOut(
            current=result.current,
            pages=result.pages,
            count=result.count,
            total=result.total,
        ),
    )


@router.put("/{learner_id}/progress", response_model=ProgressResultOut)
async def update_progress(
    learner_id: str,
    body: ProgressIn,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> ProgressResultOut:
    try:
        result = await service.update_progress(
            principal,
            learner_id,
            body.course_id,
            body.item_id,
            body.is_completed,
            body.time_spent,
        )
    except EnrollmentError as e:
        raise _http_error(e, principal) from None

    return ProgressResultOut(
        enrollment_id=result.enrollment_id,
        completion_percentage=result.completion_percentage,
        status=result.status,
        item=_entry_out(result.item),
    )


@router.get("/{learner_id}/{course_id}", response_model=EnrollmentDetailOut)
async def get_enrollment(
    learner_id: str,
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    queries: Queries,
) -> EnrollmentDetailOut:
    try:
        detail = await queries.get_detail(principal, learner_id, course_id)
    except EnrollmentError as e:
        raise _http_error(e, principal) from None

    return EnrollmentDetailOut(
        **_enrollment_fields(detail.enrollment),
        course=_course_out(detail.course),
        progress_details=[
            ProgressDetailOut(
                **_entry_out(d.entry).model_dump(),
                module=(
                    ModuleRefOut(id=d.module.id, title=d.module.title)
                    if d.module is not None
                    else None
                ),
                item=(
                    ItemRefOut(
                        id=d.item.id,
                        title=d.item.title,
                        type=d.item.type,
                        duration=d.item.duration,
                    )
                    if d.item is not None
                    else None
                ),
            )
            for d in detail.progress
        ],
    )


@router.put("/{learner_id}/{course_id}/cancel", response_model=EnrollmentOut)
async def cancel_enrollment(
    learner_id: str,
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> EnrollmentOut:
    try:
        e = await service.cancel(principal, learner_id, course_id)
    except EnrollmentError as err:
        raise _http_error(err, principal) from None
    return _enrollment_out(e)


@router.put("/{learner_id}/{course_id}/rate", response_model=RatingOut)
async def rate_course(
    learner_id: str,
    course_id: str,
    body: RateIn,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> RatingOut:
    try:
        rating = await service.rate(
            principal, learner_id, course_id, body.score, body.review
        )
    except EnrollmentError as e:
        raise _http_error(e, principal) from None
    return _rating_out(rating)
