"""Fleet rollup: status counts, latest-value statistics and daily time series.

The rollup combines two views of the window:

* a latest-value snapshot (newest sample per subject and metric type at or
  before the window end) feeding per-subject status and the fleet
  statistics;
* every sample inside the window, bucketed by UTC day, feeding the time
  series.

``FleetRollupEngine.rollup`` is a coroutine that yields to the event loop
between subjects and between metric types, so a caller's timeout or
cancellation stops it mid-way. Its two store reads run on the loop thread;
given a ``deadline`` they are aborted by SQLite once it passes, and the
window scan checks it while bucketing rows.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, time
from time import monotonic
from typing import Any, Iterable, Iterator

from careboard.core.errors import InvalidDateRangeError, InvalidInputError, RollupTimeoutError
from careboard.core.storage.database import QueryInterruptedError
from careboard.core.storage.models import (
    MetricSample,
    MetricType,
    Subject,
    parse_timestamp,
    to_utc_iso,
    utc_now,
)
from careboard.core.storage.repository import MonitoringRepository
from careboard.domains.monitoring.domain_logic.ranges import RangeTable
from careboard.domains.monitoring.domain_logic.statistics import bucket_daily, describe
from careboard.domains.monitoring.domain_logic.status import (
    STATUS_TAGS,
    SubjectHealthStatus,
    status_for,
)

logger = logging.getLogger(__name__)

PERIOD_DAYS = {
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
}


def resolve_window(
    period: str = "day",
    start: str | None = None,
    end: str | None = None,
    now: datetime | None = None,
) -> tuple[str, str]:
    """Turn a period token and optional explicit bounds into ``(start, end)``.

    ``end`` defaults to ``now``; a bare date as ``end`` covers that whole
    day. ``start`` defaults to ``end`` minus the period length.

    Raises:
        InvalidInputError: Unknown period token or unparseable date.
        InvalidDateRangeError: ``start`` is after ``end``.
    """
    if period not in PERIOD_DAYS:
        valid = ", ".join(PERIOD_DAYS)
        raise InvalidInputError(f"Invalid period: {period!r}. Valid: {valid}")

    if end:
        window_end = parse_timestamp(end)
        if _is_bare_date(end):
            window_end = datetime.combine(window_end.date(), time.max, tzinfo=window_end.tzinfo)
    else:
        window_end = now or utc_now()

    if start:
        window_start = parse_timestamp(start)
    else:
        window_start = window_end - timedelta(days=PERIOD_DAYS[period])

    if window_start > window_end:
        raise InvalidDateRangeError(
            f"Start date {to_utc_iso(window_start)} is after end date {to_utc_iso(window_end)}"
        )
    return to_utc_iso(window_start), to_utc_iso(window_end)


def _is_bare_date(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) == 10


@dataclass
class FleetRollup:
    window_start: str
    window_end: str
    period: str | None = None
    total_patients: int = 0
    patients_with_metrics: int = 0
    metric_summary: dict[str, dict[str, Any]] = field(default_factory=dict)
    patient_health_status: dict[str, SubjectHealthStatus] = field(default_factory=dict)
    status_counts: dict[str, int] = field(default_factory=lambda: dict.fromkeys(STATUS_TAGS, 0))
    patients: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "total_patients": self.total_patients,
            "patients_with_metrics": self.patients_with_metrics,
            "metric_summary": self.metric_summary,
            "patient_health_status": {
                sid: status.to_dict() for sid, status in self.patient_health_status.items()
            },
            "status_counts": dict(self.status_counts),
            "patients": list(self.patients),
        }


class FleetRollupEngine:
    """Computes a FleetRollup for a set of subjects and a time window.

    Usage::

        engine = FleetRollupEngine(repository, range_table)
        rollup = await engine.rollup(patients, window_start, window_end, period="week")
        rollup.metric_summary["glucose"]["average"]
    """

    # Window rows bucketed between deadline checks.
    CHECK_EVERY_ROWS = 500

    def __init__(self, repository: MonitoringRepository, range_table: RangeTable) -> None:
        self._repo = repository
        self._ranges = range_table

    @contextmanager
    def _bounded(self, deadline: float | None) -> Iterator[None]:
        if deadline is None:
            yield
            return
        try:
            with self._repo.deadline(deadline):
                yield
        except QueryInterruptedError:
            raise RollupTimeoutError("Fleet rollup exceeded its time budget; retry shortly") from None

    def _until(self, deadline: float | None, samples: Iterable[MetricSample]) -> Iterator[MetricSample]:
        for count, sample in enumerate(samples):
            if deadline is not None and count % self.CHECK_EVERY_ROWS == 0 and monotonic() > deadline:
                raise RollupTimeoutError("Fleet rollup exceeded its time budget; retry shortly")
            yield sample

    async def rollup(
        self,
        subjects: Iterable[Subject],
        window_start: str,
        window_end: str,
        period: str | None = None,
        deadline: float | None = None,
    ) -> FleetRollup:
        """Build the rollup; ``deadline`` is a ``time.monotonic()`` value bounding store reads."""
        fleet = list({s.id: s for s in subjects}.values())
        ids = [s.id for s in fleet]
        result = FleetRollup(window_start=window_start, window_end=window_end, period=period)
        result.total_patients = len(fleet)

        with self._bounded(deadline):
            latest = self._repo.get_latest_values(ids, as_of=window_end)

        values_by_type: dict[MetricType, list[float]] = {}
        for subject in fleet:
            await asyncio.sleep(0)
            snapshot = latest.get(subject.id, {})
            status = status_for(snapshot, self._ranges)
            result.patient_health_status[subject.id] = status
            result.status_counts[status.status] += 1
            if snapshot:
                result.patients_with_metrics += 1
            for metric_type, value in snapshot.items():
                values_by_type.setdefault(metric_type, []).append(value)
            result.patients.append({
                "id": subject.id,
                "name": subject.display_name,
                "email": subject.email,
                "health_status": status.status,
            })

        with self._bounded(deadline):
            series = bucket_daily(
                self._until(deadline, self._repo.iter_samples_in_window(ids, window_start, window_end))
            )

        # Enum order keeps the summary layout stable across calls.
        for metric_type in MetricType:
            values = values_by_type.get(metric_type)
            if not values:
                continue
            await asyncio.sleep(0)
            entry = describe(values).to_dict()
            # One latest value per subject, so contributors are distinct.
            entry["patient_count"] = len(values)
            entry["time_series"] = {
                day: bucket.to_dict() for day, bucket in series.get(metric_type, {}).items()
            }
            result.metric_summary[metric_type.value] = entry

        logger.info(
            "Fleet rollup over %d patients (%d with metrics, %d metric types)",
            result.total_patients, result.patients_with_metrics, len(result.metric_summary),
        )
        return result
