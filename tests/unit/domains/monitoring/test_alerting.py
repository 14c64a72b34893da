"""Tests for alert emission and duplicate suppression."""

from __future__ import annotations

from datetime import timedelta

import pytest

from careboard.core.storage.models import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    MetricType,
    Subject,
    to_utc_iso,
    utc_now,
)
from careboard.domains.monitoring.domain_logic.alerting import (
    AlertEmitter,
    SuppressionPolicy,
    alert_type_for,
    metric_cause,
)
from careboard.domains.monitoring.domain_logic.classifier import Severity


@pytest.fixture
def emitter(repository, range_table, patients) -> AlertEmitter:
    return AlertEmitter(repository, range_table)


def _emit_heart_rate(emitter: AlertEmitter, value: float = 165, severity: Severity = Severity.CRITICAL):
    return emitter.maybe_emit_alert(
        "p1", MetricType.HEART_RATE, value, "bpm", severity, "2026-03-01T08:00:00Z",
    )


class TestAlertTypes:
    @pytest.mark.parametrize("metric_type, is_high, expected", [
        (MetricType.HEART_RATE, True, AlertType.ELEVATED_HEART_RATE),
        (MetricType.HEART_RATE, False, AlertType.EMERGENCY),
        (MetricType.BLOOD_PRESSURE_DIASTOLIC, False, AlertType.LOW_BLOOD_PRESSURE),
        (MetricType.GLUCOSE, True, AlertType.HIGH_GLUCOSE),
        (MetricType.SLEEP_QUALITY, False, AlertType.IRREGULAR_SLEEP),
        (MetricType.OXYGEN_SATURATION, False, AlertType.EMERGENCY),
        (MetricType.MOOD, True, AlertType.EMERGENCY),
    ])
    def test_mapping(self, metric_type, is_high, expected):
        assert alert_type_for(metric_type, is_high) is expected

    def test_metric_cause(self):
        assert metric_cause(MetricType.GLUCOSE) == "metric:glucose"


class TestMetricAlerts:
    def test_critical_reading(self, emitter):
        alert = _emit_heart_rate(emitter)
        assert alert is not None
        assert alert.title == "Critical Heart Rate Alert"
        assert alert.message == "Ada Lovelace has abnormal Heart Rate: 165 bpm. Normal range: 60-100 bpm"
        assert alert.severity is AlertSeverity.CRITICAL
        assert alert.alert_type is AlertType.ELEVATED_HEART_RATE
        assert alert.triggered_at.startswith("2026-03-01T08:00:00")
        assert alert.metadata["threshold"] == 100
        assert alert.metadata["actual_value"] == 165

    def test_warning_reading_below_band(self, emitter):
        alert = _emit_heart_rate(emitter, 45, Severity.WARNING)
        assert alert.title == "Abnormal Heart Rate Alert"
        assert alert.severity is AlertSeverity.HIGH
        assert alert.alert_type is AlertType.EMERGENCY
        assert alert.metadata["threshold"] == 60

    def test_normal_reading_writes_nothing(self, emitter, repository):
        assert _emit_heart_rate(emitter, 80, Severity.NORMAL) is None
        assert repository.count_alerts("p1") == 0

    def test_outstanding_alert_suppresses_repeat(self, emitter, repository):
        assert _emit_heart_rate(emitter) is not None
        assert _emit_heart_rate(emitter, 170) is None
        assert _emit_heart_rate(emitter, 105, Severity.WARNING) is None
        assert repository.count_alerts("p1") == 1

    def test_other_metric_type_not_suppressed(self, emitter, repository):
        _emit_heart_rate(emitter)
        glucose = emitter.maybe_emit_alert("p1", MetricType.GLUCOSE, 260, "mg/dL", Severity.CRITICAL)
        assert glucose is not None
        assert repository.count_alerts("p1") == 2

    def test_other_subject_not_suppressed(self, emitter):
        _emit_heart_rate(emitter)
        other = emitter.maybe_emit_alert("p2", MetricType.HEART_RATE, 165, "bpm", Severity.CRITICAL)
        assert other is not None

    def test_read_alert_no_longer_suppresses(self, emitter, repository):
        alert = _emit_heart_rate(emitter)
        alert.is_read = True
        repository.update_alert_state(alert)
        assert _emit_heart_rate(emitter) is not None

    def test_resolved_alert_no_longer_suppresses(self, emitter, repository):
        alert = _emit_heart_rate(emitter)
        alert.status = AlertStatus.RESOLVED
        repository.update_alert_state(alert)
        assert _emit_heart_rate(emitter) is not None

    def test_acknowledged_unread_alert_no_longer_suppresses(self, emitter, repository):
        alert = _emit_heart_rate(emitter)
        alert.status = AlertStatus.ACKNOWLEDGED
        repository.update_alert_state(alert)
        assert repository.get_alert(alert.id).is_read is False
        assert _emit_heart_rate(emitter) is not None
        assert repository.count_alerts("p1") == 2

    def test_unnamed_subject_falls_back(self, emitter, repository):
        repository.upsert_subject(Subject(id="anon", display_name=""))
        alert = emitter.maybe_emit_alert("anon", MetricType.GLUCOSE, 45, "mg/dL", Severity.CRITICAL)
        assert alert.message.startswith("Patient has abnormal Glucose: 45 mg/dL.")
        assert alert.alert_type is AlertType.LOW_GLUCOSE


class TestListeners:
    def test_listener_sees_written_alerts_only(self, emitter):
        seen = []
        emitter.add_listener(seen.append)
        _emit_heart_rate(emitter)
        _emit_heart_rate(emitter)
        assert len(seen) == 1
        assert seen[0].cause_key == "metric:heart_rate"

    def test_failing_listener_does_not_block_write(self, emitter, repository):
        def boom(alert):
            raise RuntimeError("listener down")

        emitter.add_listener(boom)
        assert _emit_heart_rate(emitter) is not None
        assert repository.count_alerts("p1") == 1


class TestEventAlerts:
    def test_same_event_suppressed_within_window(self, emitter, repository):
        first = emitter.emit_event_alert("p1", "m1", title="New Message", message="hi")
        assert first is not None
        assert first.cause_key == "message:m1"
        assert first.alert_type is AlertType.NEW_MESSAGE
        assert emitter.emit_event_alert("p1", "m1", title="New Message", message="hi") is None
        assert repository.count_alerts("p1") == 1

    def test_read_event_alert_still_suppresses(self, emitter, repository):
        first = emitter.emit_event_alert("p1", "m1", title="New Message", message="hi")
        first.is_read = True
        first.status = AlertStatus.DISMISSED
        repository.update_alert_state(first)
        assert emitter.emit_event_alert("p1", "m1", title="New Message", message="hi") is None

    def test_distinct_events_not_suppressed(self, emitter):
        assert emitter.emit_event_alert("p1", "m1", title="t", message="a") is not None
        assert emitter.emit_event_alert("p1", "m2", title="t", message="b") is not None

    def test_window_expiry(self, repository, range_table, patients, monitoring_db):
        emitter = AlertEmitter(
            repository,
            range_table,
            message_policy=SuppressionPolicy(
                "message", window=timedelta(minutes=2), active_only=False, unread_only=False,
            ),
        )
        first = emitter.emit_event_alert("p1", "m1", title="t", message="a")
        monitoring_db.connection.execute(
            "UPDATE alerts SET triggered_at = ? WHERE id = ?",
            (to_utc_iso(utc_now() - timedelta(minutes=10)), first.id),
        )
        monitoring_db.connection.commit()
        assert emitter.emit_event_alert("p1", "m1", title="t", message="a") is not None
