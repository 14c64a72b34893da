"""Alert deduplication and emission.

Every alert carries a cause key. A new alert is written only when the
subject has no equivalent alert outstanding for that cause; what counts as
"outstanding" is a per-cause SuppressionPolicy:

* metric alerts: any active, unread alert for the same metric type, with
  no time bound;
* event alerts (e.g. a new chat message): any alert for the same
  originating event triggered within the last few minutes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from careboard.core.storage.models import (
    Alert,
    AlertSeverity,
    AlertType,
    MetricType,
    parse_timestamp,
    to_utc_iso,
    utc_now,
)
from careboard.core.storage.repository import MonitoringRepository
from careboard.domains.monitoring.domain_logic.classifier import Severity, direction
from careboard.domains.monitoring.domain_logic.ranges import RangeTable

logger = logging.getLogger(__name__)

AlertListener = Callable[[Alert], None]


@dataclass(frozen=True)
class SuppressionPolicy:
    """When a repeat cause is treated as a duplicate."""

    name: str
    window: timedelta | None = None  # None: no time bound
    active_only: bool = True
    unread_only: bool = True


METRIC_ALERT_POLICY = SuppressionPolicy("metric")
MESSAGE_ALERT_POLICY = SuppressionPolicy(
    "message",
    window=timedelta(minutes=2),
    active_only=False,
    unread_only=False,
)

_SEVERITY_BY_TIER = {
    Severity.CRITICAL: AlertSeverity.CRITICAL,
    Severity.WARNING: AlertSeverity.HIGH,
}

# (metric type) -> (alert type when high, alert type when low)
_ALERT_TYPES: dict[MetricType, tuple[AlertType, AlertType]] = {
    MetricType.HEART_RATE: (AlertType.ELEVATED_HEART_RATE, AlertType.EMERGENCY),
    MetricType.BLOOD_PRESSURE_SYSTOLIC: (AlertType.HIGH_BLOOD_PRESSURE, AlertType.LOW_BLOOD_PRESSURE),
    MetricType.BLOOD_PRESSURE_DIASTOLIC: (AlertType.HIGH_BLOOD_PRESSURE, AlertType.LOW_BLOOD_PRESSURE),
    MetricType.GLUCOSE: (AlertType.HIGH_GLUCOSE, AlertType.LOW_GLUCOSE),
    MetricType.SLEEP_DURATION: (AlertType.IRREGULAR_SLEEP, AlertType.IRREGULAR_SLEEP),
    MetricType.SLEEP_QUALITY: (AlertType.IRREGULAR_SLEEP, AlertType.IRREGULAR_SLEEP),
    MetricType.STEPS: (AlertType.LOW_ACTIVITY, AlertType.LOW_ACTIVITY),
    MetricType.CALORIES_BURNED: (AlertType.LOW_ACTIVITY, AlertType.LOW_ACTIVITY),
}


def alert_type_for(metric_type: MetricType, is_high: bool) -> AlertType:
    """Map a metric type and the side of the band it left to an alert type."""
    high, low = _ALERT_TYPES.get(metric_type, (AlertType.EMERGENCY, AlertType.EMERGENCY))
    return high if is_high else low


def metric_cause(metric_type: MetricType) -> str:
    return f"metric:{metric_type.value}"


def event_cause(event_kind: str, event_id: str) -> str:
    return f"{event_kind}:{event_id}"


class AlertEmitter:
    """Decides whether an alert should be written and writes it.

    Usage::

        emitter = AlertEmitter(repository, range_table)
        alert = emitter.maybe_emit_alert("p1", MetricType.HEART_RATE, 165, "bpm",
                                         Severity.CRITICAL, timestamp)
        # alert is None when suppressed or when the reading is normal
    """

    def __init__(
        self,
        repository: MonitoringRepository,
        range_table: RangeTable,
        *,
        metric_policy: SuppressionPolicy = METRIC_ALERT_POLICY,
        message_policy: SuppressionPolicy = MESSAGE_ALERT_POLICY,
    ) -> None:
        self._repo = repository
        self._ranges = range_table
        self.metric_policy = metric_policy
        self.message_policy = message_policy
        self._listeners: list[AlertListener] = []

    def add_listener(self, listener: AlertListener) -> None:
        """Register a callable invoked with every newly written alert."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Metric alerts
    # ------------------------------------------------------------------

    def maybe_emit_alert(
        self,
        subject_id: str,
        metric_type: MetricType,
        value: float,
        unit: str,
        severity: Severity,
        timestamp: str | datetime | None = None,
        *,
        related_metric_id: str | None = None,
    ) -> Alert | None:
        """Write an alert for an abnormal reading unless one is already outstanding.

        Returns:
            The written alert, or None if the reading is normal or the
            alert was suppressed as a duplicate.
        """
        if severity is Severity.NORMAL:
            return None

        entry = self._ranges.get(metric_type)
        is_high = direction(metric_type, value, self._ranges) == "high"
        subject = self._repo.get_subject(subject_id)
        subject_name = (subject.display_name if subject else "") or "Patient"
        metric_name = metric_type.display_name
        value_text = f"{value:g}"

        message = f"{subject_name} has abnormal {metric_name}: {value_text} {unit}."
        if entry is not None:
            message += f" Normal range: {entry.describe()} {unit}"
        title = (
            f"Critical {metric_name} Alert"
            if severity is Severity.CRITICAL
            else f"Abnormal {metric_name} Alert"
        )

        metadata: dict = {"actual_value": value, "unit": unit, "metric_type": metric_type.value}
        if entry is not None:
            metadata["threshold"] = entry.max if is_high else entry.min
            metadata["normal_range"] = entry.to_dict()

        alert = Alert(
            id="",
            subject_id=subject_id,
            alert_type=alert_type_for(metric_type, is_high),
            title=title,
            message=message[:500],
            cause_key=metric_cause(metric_type),
            severity=_SEVERITY_BY_TIER[severity],
            triggered_at=self._trigger_time(timestamp),
            related_metric_id=related_metric_id,
            metadata=metadata,
        )
        return self._write(alert, self.metric_policy)

    # ------------------------------------------------------------------
    # Event alerts
    # ------------------------------------------------------------------

    def emit_event_alert(
        self,
        subject_id: str,
        event_id: str,
        *,
        title: str,
        message: str,
        event_kind: str = "message",
        alert_type: AlertType = AlertType.NEW_MESSAGE,
        severity: AlertSeverity = AlertSeverity.MEDIUM,
        metadata: dict | None = None,
    ) -> Alert | None:
        """Write an alert for a discrete event (e.g. a new chat message).

        Returns:
            The written alert, or None if the same event already raised one
            within the policy window.
        """
        alert = Alert(
            id="",
            subject_id=subject_id,
            alert_type=alert_type,
            title=title[:100],
            message=message[:500],
            cause_key=event_cause(event_kind, event_id),
            severity=severity,
            triggered_at=to_utc_iso(utc_now()),
            metadata={**(metadata or {}), "event_id": event_id, "event_kind": event_kind},
        )
        return self._write(alert, self.message_policy)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write(self, alert: Alert, policy: SuppressionPolicy) -> Alert | None:
        since = None
        if policy.window is not None:
            since = to_utc_iso(utc_now() - policy.window)

        written = self._repo.insert_alert_unless_outstanding(
            alert,
            since=since,
            active_only=policy.active_only,
            unread_only=policy.unread_only,
        )
        if not written:
            logger.debug(
                "Suppressed duplicate %s alert for %s (cause=%s)",
                policy.name, alert.subject_id, alert.cause_key,
            )
            return None

        logger.info(
            "Created %s alert %s for %s (%s, severity=%s)",
            policy.name, alert.id, alert.subject_id, alert.alert_type.value, alert.severity.value,
        )
        for listener in self._listeners:
            try:
                listener(alert)
            except Exception:
                logger.exception("Alert listener failed for alert %s", alert.id)
        return alert

    @staticmethod
    def _trigger_time(timestamp: str | datetime | None) -> str:
        if timestamp is None:
            return to_utc_iso(utc_now())
        return to_utc_iso(parse_timestamp(timestamp))
