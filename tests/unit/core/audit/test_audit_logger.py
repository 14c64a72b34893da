"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import json

import pytest

from careboard.core.audit.logger import AuditEvent, AuditLogger, _hash_input
from careboard.core.storage.database import MonitoringDatabase


# ---------------------------------------------------------------------------
# _hash_input tests
# ---------------------------------------------------------------------------

class TestHashInput:
    def test_hashes_dict(self):
        h = _hash_input({"subject_id": "p1"})
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex

    def test_order_independent(self):
        assert _hash_input({"z": 1, "a": 2}) == _hash_input({"a": 2, "z": 1})

    def test_different_inputs_differ(self):
        assert _hash_input({"a": 1}) != _hash_input({"a": 2})

    def test_non_serializable_returns_empty(self):
        assert _hash_input(object()) == ""


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class TestLogging:
    def test_log_tool_call_stores_hash_not_input(self, audit_logger, monitoring_db):
        event_id = audit_logger.log_tool_call(
            "subject_status",
            {"subject_id": "p1", "notes": "private"},
            subject_id="p1",
            duration_ms=2.5,
        )
        assert event_id
        row = monitoring_db.connection.execute(
            "SELECT * FROM audit_log WHERE id = ?", (event_id,)
        ).fetchone()
        assert row["tool_name"] == "subject_status"
        assert row["subject_id"] == "p1"
        assert row["tool_input_hash"] == _hash_input({"subject_id": "p1", "notes": "private"})
        assert "private" not in json.dumps(dict(row))

    def test_log_event_metadata(self, audit_logger):
        audit_logger.log_event(AuditEvent(action="tool_invocation", metadata={"alert_created": True}))
        event = audit_logger.get_events()[0]
        assert json.loads(event["metadata_json"]) == {"alert_created": True}

    def test_log_alert_change(self, audit_logger):
        audit_logger.log_alert_change("a1", "acknowledge", actor_id="p1", tool_name="acknowledge_alert")
        event = audit_logger.get_events(action="alert_change")[0]
        assert event["alert_id"] == "a1"
        assert event["actor_id"] == "p1"

    def test_log_data_delete(self, audit_logger):
        audit_logger.log_data_delete(tool_name="delete_metric", subject_id="p1", count=1)
        event = audit_logger.get_events(action="data_delete")[0]
        assert json.loads(event["metadata_json"])["records_deleted"] == 1

    def test_failed_write_returns_empty(self):
        db = MonitoringDatabase(":memory:")  # never initialized
        assert AuditLogger(db).log_tool_call("health_check") == ""


class TestToolCallContext:
    def test_success_logged_with_duration(self, audit_logger):
        with audit_logger.tool_call("list_alerts", {"subject_id": "p1"}, subject_id="p1") as meta:
            meta["count"] = 3
        event = audit_logger.get_events(tool_name="list_alerts")[0]
        assert event["status"] == "success"
        assert event["duration_ms"] >= 0
        assert json.loads(event["metadata_json"]) == {"count": 3}

    def test_failure_logged_and_reraised(self, audit_logger):
        with pytest.raises(KeyError):
            with audit_logger.tool_call("subject_status", {"subject_id": "p9"}):
                raise KeyError("p9")
        event = audit_logger.get_events(tool_name="subject_status")[0]
        assert event["status"] == "failure"
        assert event["error_type"] == "KeyError"


class TestQueries:
    def test_filters_and_count(self, audit_logger):
        audit_logger.log_tool_call("list_alerts", subject_id="p1")
        audit_logger.log_tool_call("list_alerts", subject_id="p2")
        audit_logger.log_tool_call("subject_status", subject_id="p1")

        assert audit_logger.count_events() == 3
        assert len(audit_logger.get_events(tool_name="list_alerts")) == 2
        assert len(audit_logger.get_events(subject_id="p1")) == 2
        assert len(audit_logger.get_events(limit=1)) == 1

    def test_count_since_future_is_zero(self, audit_logger):
        audit_logger.log_tool_call("health_check")
        assert audit_logger.count_events(since="2999-01-01T00:00:00+00:00") == 0
