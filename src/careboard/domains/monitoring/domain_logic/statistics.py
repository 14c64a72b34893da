"""Descriptive statistics and day bucketing for metric values.

Median and quartiles are nearest-rank: the element at ``n // 2``,
``int(n * 0.25)`` and ``int(n * 0.75)`` of the sorted list. For an even
count the median is the upper-middle element, not the mean of the two
middle elements. Dashboards consume these values as-is.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable

from careboard.core.storage.models import MetricSample, MetricType


@dataclass(frozen=True)
class MetricStatistics:
    count: int
    average: float
    min: float
    max: float
    median: float
    p25: float
    p75: float
    std_dev: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "average": round(self.average, 2),
            "min": self.min,
            "max": self.max,
            "median": self.median,
            "p25": self.p25,
            "p75": self.p75,
            "std_dev": round(self.std_dev, 2),
        }


@dataclass(frozen=True)
class BucketStats:
    avg: float
    min: float
    max: float
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg": round(self.avg, 2),
            "min": self.min,
            "max": self.max,
            "count": self.count,
        }


def describe(values: Iterable[float]) -> MetricStatistics:
    """Summary statistics for ``values``.

    Computed over the sorted values so the result does not depend on input
    order. Standard deviation is the population one (0 for a single value).

    Raises:
        ValueError: If ``values`` is empty.
    """
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        raise ValueError("describe() requires at least one value")

    return MetricStatistics(
        count=n,
        average=statistics.fmean(ordered),
        min=ordered[0],
        max=ordered[-1],
        median=ordered[n // 2],
        p25=ordered[int(n * 0.25)],
        p75=ordered[int(n * 0.75)],
        std_dev=statistics.pstdev(ordered),
    )


def bucket_daily(samples: Iterable[MetricSample]) -> dict[MetricType, dict[str, BucketStats]]:
    """Group samples by metric type and UTC calendar date.

    Returns:
        ``{metric_type: {"YYYY-MM-DD": BucketStats}}`` with dates ascending.
    """
    grouped: dict[MetricType, dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))
    for sample in samples:
        grouped[sample.metric_type][sample.day].append(sample.value)

    series: dict[MetricType, dict[str, BucketStats]] = {}
    for metric_type, days in grouped.items():
        series[metric_type] = {
            day: BucketStats(
                avg=statistics.fmean(sorted(vals)),
                min=min(vals),
                max=max(vals),
                count=len(vals),
            )
            for day, vals in sorted(days.items())
        }
    return series


def summarize_samples(samples: Iterable[MetricSample]) -> dict[str, dict[str, Any]]:
    """Per-metric-type period summary of one subject's samples.

    ``trend`` is ``(last - first) / count`` with samples in time order;
    ``latest`` is the value of the newest sample.
    """
    by_type: dict[MetricType, list[MetricSample]] = defaultdict(list)
    for sample in samples:
        by_type[sample.metric_type].append(sample)

    summary: dict[str, dict[str, Any]] = {}
    for metric_type, group in by_type.items():
        group.sort(key=lambda s: (s.timestamp, s.created_at))
        values = [s.value for s in group]
        stats = describe(values)
        trend = (values[-1] - values[0]) / len(values) if len(values) > 1 else 0.0
        summary[metric_type.value] = {
            "count": stats.count,
            "unit": group[-1].unit,
            "average": round(stats.average, 2),
            "min": stats.min,
            "max": stats.max,
            "median": stats.median,
            "latest": values[-1],
            "trend": round(trend, 2),
        }
    return summary
