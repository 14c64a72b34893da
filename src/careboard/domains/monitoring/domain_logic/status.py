"""Per-subject health status from a latest-value snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from careboard.core.storage.models import MetricType
from careboard.domains.monitoring.domain_logic.classifier import Severity, classify
from careboard.domains.monitoring.domain_logic.ranges import RangeEntry

HEALTHY = "healthy"
MONITORING = "monitoring"
WARNING = "warning"
CRITICAL = "critical"
NO_DATA = "no_data"

STATUS_TAGS = (HEALTHY, MONITORING, WARNING, CRITICAL, NO_DATA)

# More than this many simultaneous warnings escalates monitoring to warning.
ESCALATION_THRESHOLD = 2


@dataclass(frozen=True)
class SubjectHealthStatus:
    status: str
    metrics_count: int = 0
    abnormal_count: int = 0
    critical_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "metrics_count": self.metrics_count,
            "abnormal_count": self.abnormal_count,
            "critical_count": self.critical_count,
        }


def status_for(
    latest_values: Mapping[MetricType, float],
    table: Mapping[MetricType, RangeEntry],
) -> SubjectHealthStatus:
    """Triage a subject from its latest value per metric type.

    A single critical reading outranks any number of warnings; three or more
    warnings escalate ``monitoring`` to ``warning``. Critical readings are
    not counted in ``abnormal_count``.
    """
    if not latest_values:
        return SubjectHealthStatus(NO_DATA)

    critical = abnormal = 0
    for metric_type, value in latest_values.items():
        severity = classify(metric_type, value, table)
        if severity is Severity.CRITICAL:
            critical += 1
        elif severity is Severity.WARNING:
            abnormal += 1

    if critical > 0:
        status = CRITICAL
    elif abnormal > ESCALATION_THRESHOLD:
        status = WARNING
    elif abnormal > 0:
        status = MONITORING
    else:
        status = HEALTHY

    return SubjectHealthStatus(
        status=status,
        metrics_count=len(latest_values),
        abnormal_count=abnormal,
        critical_count=critical,
    )
