"""Tests for sensitive data filtering and JSON log formatting."""

from __future__ import annotations

import json
import logging
from io import StringIO

from ratekeeper.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_api_keys():
    """Ensure SensitiveDataFilter redacts API key fields."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "admin_auth.failed",
        extra={
            "api_key": "sk-secret-123",
            "x-api-key": "another-secret",
            "redis_url": "redis://:pw@cache:6379/0",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert ":pw@" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_limiter_fields_pass_through():
    """Hashed keys and counters are safe to log."""

    logger, stream = _capture("test_safe_fields")

    logger.warning(
        "rate_limit.exceeded",
        extra={"limiter": "auth", "key_hash": "9f86d081884c7d65", "limit": 5, "retry_after_s": 900},
    )

    payload = json.loads(stream.getvalue())

    assert payload["message"] == "rate_limit.exceeded"
    assert payload["level"] == "warning"
    assert payload["limiter"] == "auth"
    assert payload["key_hash"] == "9f86d081884c7d65"
    assert payload["retry_after_s"] == 900
    assert "[REDACTED]" not in stream.getvalue()


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {"x-api-key": "secret-key", "user-agent": "pytest"},
            "safe_data": {"count": 5},
        },
    )

    output = stream.getvalue()

    assert "secret-key" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_request_id_from_context_is_attached():
    logger, stream = _capture("test_request_id")

    set_request_id("req-abc")
    try:
        logger.info("rate_limit.allowed")
    finally:
        clear_request_id()
    logger.info("after")

    first, second = (json.loads(line) for line in stream.getvalue().splitlines())
    assert first["request_id"] == "req-abc"
    assert "request_id" not in second


def test_exception_info_is_rendered():
    logger, stream = _capture("test_exc_info")

    try:
        raise RuntimeError("sweep exploded")
    except RuntimeError:
        logger.exception("rate_limit.sweep_failed")

    payload = json.loads(stream.getvalue())
    assert payload["level"] == "error"
    assert "sweep exploded" in payload["exc_info"]
