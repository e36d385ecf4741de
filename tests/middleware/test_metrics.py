"""Prometheus middleware and /metrics exposition.

Counters live in the global registry for the whole test session and
cannot be reset, so every assertion compares a before/after delta.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from app.models.course import Course
from tests.conftest import mint_token


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def _requests(endpoint: str, status_code: str, method: str = "GET") -> float:
    return _get_sample(
        "http_requests_total",
        {"method": method, "endpoint": endpoint, "status_code": status_code},
    )


def test_health_request_is_counted_and_timed(client: TestClient) -> None:
    count_before = _requests("/health", "200")
    timed_before = _get_sample(
        "http_request_duration_seconds_count", {"method": "GET", "endpoint": "/health"}
    )

    client.get("/health")

    assert _requests("/health", "200") - count_before == 1
    assert (
        _get_sample(
            "http_request_duration_seconds_count",
            {"method": "GET", "endpoint": "/health"},
        )
        - timed_before
        == 1
    )


def test_active_requests_gauge_settles_at_zero(client: TestClient) -> None:
    client.get("/health")
    assert _get_sample("http_active_requests") == 0.0


def test_scrapes_are_not_counted(client: TestClient) -> None:
    before = _requests("/metrics", "200")
    resp = client.get("/metrics")
    client.get("/metrics")

    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "enrollment_operations_total" in resp.text
    assert _requests("/metrics", "200") == before


def test_endpoint_label_is_route_template(client: TestClient) -> None:
    """Learner ids in the URL must not become their own time series."""
    before = _requests("/v1/enrollments/{learner_id}", "401")

    client.get("/v1/enrollments/learner-a")
    client.get("/v1/enrollments/learner-b")

    assert _requests("/v1/enrollments/{learner_id}", "401") - before == 2
    assert _requests("/v1/enrollments/learner-a", "401") == 0.0


def test_unmatched_paths_share_one_label(client: TestClient) -> None:
    before = _requests("unmatched", "404")
    client.get("/no/such/path")
    client.get("/another/missing/path")
    assert _requests("unmatched", "404") - before == 2


def test_enroll_over_http_updates_domain_and_http_counters(
    client: TestClient, course: Course
) -> None:
    created = {"operation": "enroll", "outcome": "created"}
    rejected = {"operation": "enroll", "outcome": "rejected"}
    ops_before = _get_sample("enrollment_operations_total", created)
    rejected_before = _get_sample("enrollment_operations_total", rejected)
    http_before = _requests("/v1/enrollments", "201", method="POST")

    headers = {"Authorization": f"Bearer {mint_token('metrics-learner')}"}
    client.post("/v1/enrollments", json={"course_id": course.id}, headers=headers)
    client.post("/v1/enrollments", json={"course_id": course.id}, headers=headers)

    assert _get_sample("enrollment_operations_total", created) - ops_before == 1
    assert _get_sample("enrollment_operations_total", rejected) - rejected_before == 1
    assert _requests("/v1/enrollments", "201", method="POST") - http_before == 1
