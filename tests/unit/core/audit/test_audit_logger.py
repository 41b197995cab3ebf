"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import json
import logging

import pytest

from healthtwin.core.audit.logger import (
    AUDIT_LOGGER_NAME,
    AuditEvent,
    AuditLogger,
    hash_payload,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def audit_logger():
    return AuditLogger()


def _records(caplog) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == AUDIT_LOGGER_NAME]


# ---------------------------------------------------------------------------
# hash_payload tests
# ---------------------------------------------------------------------------

class TestHashPayload:
    def test_hashes_dict(self):
        h = hash_payload({"key": "value"})
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex

    def test_deterministic(self):
        data = {"a": 1, "b": 2}
        assert hash_payload(data) == hash_payload(data)

    def test_order_independent(self):
        """Canonical JSON sorts keys, so order doesn't matter."""
        assert hash_payload({"z": 1, "a": 2}) == hash_payload({"a": 2, "z": 1})

    def test_different_inputs_differ(self):
        assert hash_payload({"a": 1}) != hash_payload({"a": 2})

    def test_non_json_leaves_are_stringified(self):
        from datetime import date

        assert len(hash_payload({"asOf": date(2026, 3, 15)})) == 64


# ---------------------------------------------------------------------------
# AuditLogger tests
# ---------------------------------------------------------------------------

class TestAuditLogger:
    def test_log_event_returns_uuid(self, audit_logger, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            event_id = audit_logger.log_event(AuditEvent(action="engine_call"))
        assert len(event_id) == 36
        [record] = _records(caplog)
        assert record["id"] == event_id
        assert record["action"] == "engine_call"

    def test_tool_call_hashes_input(self, audit_logger, caplog):
        tool_input = {"profile": {"dateOfBirth": "1973-06-02", "smoker": True}}
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            audit_logger.log_tool_call(
                "assess_health_risks",
                tool_input,
                snapshot_id="abc123",
                duration_ms=12.34567,
            )
        [record] = _records(caplog)
        assert record["tool_name"] == "assess_health_risks"
        assert record["input_hash"] == hash_payload(tool_input)
        assert record["snapshot_id"] == "abc123"
        assert record["duration_ms"] == 12.346
        assert record["status"] == "success"

    def test_no_raw_input_in_log(self, audit_logger, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            audit_logger.log_tool_call("assess_health_risks", {"dateOfBirth": "1973-06-02"})
        assert "1973-06-02" not in caplog.text

    def test_empty_input_has_no_hash(self, audit_logger, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            audit_logger.log_tool_call("health_check")
        [record] = _records(caplog)
        assert record["input_hash"] is None

    def test_rejection_logged_as_warning(self, audit_logger, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            audit_logger.log_tool_call(
                "simulate_health_trajectory",
                {"horizon_months": 0},
                status="rejected",
                error_type="ValidationError",
            )
        [log_record] = [r for r in caplog.records if r.name == AUDIT_LOGGER_NAME]
        assert log_record.levelno == logging.WARNING
        record = json.loads(log_record.getMessage())
        assert record["status"] == "rejected"
        assert record["error_type"] == "ValidationError"

    def test_custom_sink(self, caplog):
        sink = logging.getLogger("tests.audit_sink")
        with caplog.at_level(logging.INFO, logger="tests.audit_sink"):
            AuditLogger(sink).log_tool_call("health_check", metadata={"conditions": 3})
        [log_record] = [r for r in caplog.records if r.name == "tests.audit_sink"]
        assert json.loads(log_record.getMessage())["metadata"] == {"conditions": 3}
