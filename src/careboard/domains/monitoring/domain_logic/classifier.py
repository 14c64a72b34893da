"""Severity classification of a single reading against the range table."""

from __future__ import annotations

from enum import Enum
from typing import Literal, Mapping

from careboard.core.storage.models import MetricType
from careboard.domains.monitoring.domain_logic.ranges import RangeEntry


class Severity(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


def classify(
    metric_type: MetricType,
    value: float,
    table: Mapping[MetricType, RangeEntry],
) -> Severity:
    """Classify ``value`` for ``metric_type``.

    Critical bounds are checked first, then the normal band. Metric types
    without a table entry have no opinion and always classify as normal.
    """
    entry = table.get(metric_type)
    if entry is None:
        return Severity.NORMAL
    if entry.critical_min is not None and value < entry.critical_min:
        return Severity.CRITICAL
    if entry.critical_max is not None and value > entry.critical_max:
        return Severity.CRITICAL
    if value < entry.min or value > entry.max:
        return Severity.WARNING
    return Severity.NORMAL


def direction(
    metric_type: MetricType,
    value: float,
    table: Mapping[MetricType, RangeEntry],
) -> Literal["high", "low"] | None:
    """Which side of the normal band ``value`` falls on, or None if inside it."""
    entry = table.get(metric_type)
    if entry is None:
        return None
    if value > entry.max:
        return "high"
    if value < entry.min:
        return "low"
    return None
