"""Prometheus metric inventory.

Every metric the service exports is declared here; modules import the
one they own and increment it at the point of action.  Scraped via
GET /metrics (app/api/metrics_endpoint.py).
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Enrollment engine metrics
# ---------------------------------------------------------------------------

ENROLLMENT_OPERATIONS = Counter(
    "enrollment_operations_total",
    "Enrollment mutations by operation and outcome",
    # operation: enroll|update_progress|cancel|rate
    # outcome: created|reactivated|ok|rejected|conflict
    ["operation", "outcome"],
)

VERSION_CONFLICTS = Counter(
    "enrollment_version_conflicts_total",
    "Optimistic-concurrency conflicts detected on save (each one retried)",
    ["operation"],
)

COURSE_COMPLETIONS = Counter(
    "course_completions_total",
    "Enrollments that transitioned active -> completed",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
