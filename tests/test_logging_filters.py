"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from ratekeeper.core.logging import (
    JsonFormatter,
    SensitiveDataFilter,
    clear_request_id,
    hash_for_log,
    set_request_id,
)


@pytest.fixture
def capture():
    """Logger wired through the redaction filter into a JSON string buffer."""

    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream
    logger.handlers.clear()


def test_redacts_api_keys(capture):
    logger, stream = capture

    logger.info("auth.success", extra={"api_key": "ops-secret-123", "x-api-key": "another-secret", "route": "reset"})

    output = stream.getvalue()
    assert "ops-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "reset" in output


def test_redacts_client_addresses(capture):
    """Raw client IPs and forwarding chains never reach the log sink."""
    logger, stream = capture

    logger.info(
        "rate_limit.exceeded",
        extra={
            "client_ip": "203.0.113.7",
            "x-forwarded-for": "203.0.113.7, 10.0.0.1",
            "identifier_hash": hash_for_log("login:203.0.113.7"),
            "retry_after_s": 40,
        },
    )

    output = stream.getvalue()
    assert "203.0.113.7" not in output
    assert "10.0.0.1" not in output
    assert hash_for_log("login:203.0.113.7") in output
    assert json.loads(output)["retry_after_s"] == 40


def test_redacts_nested_dicts(capture):
    logger, stream = capture

    logger.info(
        "request.headers",
        extra={"headers": {"x-api-key": "secret-key", "user-agent": "pytest"}},
    )

    output = stream.getvalue()
    assert "secret-key" not in output
    assert "pytest" in output


def test_safe_fields_and_request_id_pass_through(capture):
    logger, stream = capture
    set_request_id("req-123")
    try:
        logger.info(
            "rate_limit.allowed",
            extra={"policy": "strict", "remaining": 9, "route": "/v1/rate-limits/strict/login"},
        )
    finally:
        clear_request_id()

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-123"
    assert payload["policy"] == "strict"
    assert payload["remaining"] == 9
    assert payload["route"] == "/v1/rate-limits/strict/login"
    assert "[REDACTED]" not in stream.getvalue()


def test_hash_for_log_is_stable_and_short():
    first = hash_for_log("login:203.0.113.7")

    assert first == hash_for_log("login:203.0.113.7")
    assert first != hash_for_log("login:203.0.113.8")
    assert len(first) == 16
