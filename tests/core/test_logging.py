"""Log output shape: root setup, the container line, and JSON lines.

Log shipping parses JSON lines by key, so the enrollment context fields
(learner_id, course_id, enrollment_id) must land at the top level.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from app.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging


def _record(
    level: int = logging.INFO,
    msg: str = "Enrollment created",
    *,
    name: str = "app.services.enrollment_service",
    lineno: int = 1,
    exc_info=None,
    **extra: object,
) -> logging.LogRecord:
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="enrollment_service.py",
        lineno=lineno,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _restore_root_logging():
    yield
    setup_logging("info")


# ---- setup_logging ----


@pytest.mark.parametrize(
    ("name", "expected"),
    [("debug", logging.DEBUG), ("WARNING", logging.WARNING), ("verbose", logging.INFO)],
)
def test_setup_logging_root_level(name: str, expected: int) -> None:
    setup_logging(name)
    assert logging.getLogger().level == expected


@pytest.mark.parametrize("noisy", ["uvicorn.access", "httpx", "sqlalchemy.engine"])
def test_third_party_loggers_floor_at_warning(noisy: str) -> None:
    setup_logging("debug")
    assert logging.getLogger(noisy).level == logging.WARNING

    setup_logging("error")
    assert logging.getLogger(noisy).level == logging.ERROR


def test_single_handler_after_repeated_setup() -> None:
    setup_logging("info")
    setup_logging("info", json_format=True)
    (handler,) = logging.getLogger().handlers
    assert isinstance(handler.formatter, _JsonFormatter)


# ---- container formatter ----


def test_container_line_omits_location_below_warning() -> None:
    line = _ContainerFormatter().format(_record(msg="Enrollment cancelled"))
    assert "INFO" in line
    assert "app.services.enrollment_service" in line
    assert "Enrollment cancelled" in line
    assert "[enrollment_service.py:" not in line


@pytest.mark.parametrize("level", [logging.WARNING, logging.ERROR])
def test_container_line_locates_warnings_and_errors(level: int) -> None:
    line = _ContainerFormatter().format(_record(level, "Rejected", lineno=77))
    assert line.endswith("[enrollment_service.py:77]")


def test_container_line_is_not_json() -> None:
    with pytest.raises(json.JSONDecodeError):
        json.loads(_ContainerFormatter().format(_record()))


# ---- JSON formatter ----


def test_json_line_core_keys() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(logging.WARNING, "Progress rejected")))
    assert parsed["level"] == "WARNING"
    assert parsed["logger"] == "app.services.enrollment_service"
    assert parsed["message"] == "Progress rejected"
    assert "timestamp" in parsed
    assert "exception" not in parsed


def test_json_line_carries_request_context() -> None:
    record = _record(
        request_id="req-9",
        method="PUT",
        path="/v1/enrollments/learner-1/progress",
        status_code=200,
        duration_ms=3.2,
    )
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "req-9"
    assert parsed["method"] == "PUT"
    assert parsed["path"] == "/v1/enrollments/learner-1/progress"
    assert parsed["status_code"] == 200
    assert parsed["duration_ms"] == 3.2


def test_json_line_carries_enrollment_context() -> None:
    record = _record(learner_id="learner-1", course_id="course-1", enrollment_id="e-1")
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["learner_id"] == "learner-1"
    assert parsed["course_id"] == "course-1"
    assert parsed["enrollment_id"] == "e-1"


def test_json_line_skips_unset_context() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(course_id="course-1")))
    assert "learner_id" not in parsed
    assert "enrollment_id" not in parsed


def test_json_line_includes_traceback() -> None:
    try:
        raise RuntimeError("counter write failed")
    except RuntimeError:
        record = _record(logging.ERROR, "Course counter update failed", exc_info=sys.exc_info())

    parsed = json.loads(_JsonFormatter().format(record))
    assert "RuntimeError: counter write failed" in parsed["exception"]
