"""
Tests for structured logging: JSON fields, correlation id, redaction.
"""

import io
import json
import logging

from cycle_kpi.shared.infrastructure.logging import (
    CustomJsonFormatter, get_correlation_id, log_latency, reset_correlation_id,
    set_correlation_id,
)


def capture_logger(name: str):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(CustomJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        environment="staging",
    ))
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger, stream


def last_record(stream) -> dict:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


def test_json_fields_and_correlation_id():
    logger, stream = capture_logger("tests.logging.fields")
    token = set_correlation_id("run-42")
    try:
        logger.info("Snapshot frozen", extra={"group": "Alpha", "cycle": "C1"})
    finally:
        reset_correlation_id(token)

    record = last_record(stream)
    assert record["message"] == "Snapshot frozen"
    assert record["group"] == "Alpha"
    assert record["correlation_id"] == "run-42"
    assert record["environment"] == "staging"
    assert "timestamp" in record
    assert get_correlation_id() is None


def test_sensitive_fields_are_redacted():
    logger, stream = capture_logger("tests.logging.redaction")
    logger.info("Calling tracker", extra={"api_key": "lin_secret", "access_token": "t", "team_id": "x"})

    record = last_record(stream)
    assert record["api_key"] == "***REDACTED***"
    assert record["access_token"] == "***REDACTED***"
    assert record["team_id"] == "x"


def test_log_latency_emits_operation():
    logger, stream = capture_logger("tests.logging.latency")
    with log_latency(logger, "kpi_run", groups=2):
        pass

    record = last_record(stream)
    assert record["operation"] == "kpi_run"
    assert record["groups"] == 2
    assert record["latency_ms"] >= 0
