"""Synthetic wearable feed for demos and load tests.

Patients are split into health groups by their position in the roster
(roughly 46 % healthy, 31 % warning, the rest critical). Every patient gets
a per-group baseline for each metric; each reading drifts from the
previous one towards a random target around that baseline and is then
nudged so the group stays true to its label:

* healthy readings stay in the middle 90 % of the normal band;
* warning readings never enter the critical band;
* critical patients always have at least one critical reading.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from careboard.core.storage.models import MetricType, to_utc_iso, utc_now
from careboard.domains.monitoring.domain_logic.ranges import RangeTable, default_unit

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"

HEALTHY_SHARE = 0.46
WARNING_SHARE = 0.31

# Fraction of the distance to the target covered per reading.
DRIFT_RATE = 0.15


@dataclass(frozen=True)
class Baseline:
    base: float
    variance: float


def _profile(**values: tuple[float, float]) -> dict[MetricType, Baseline]:
    return {MetricType(name): Baseline(*pair) for name, pair in values.items()}


_HEALTHY_PROFILE = _profile(
    heart_rate=(70, 8),
    blood_pressure_systolic=(110, 8),
    blood_pressure_diastolic=(70, 5),
    steps=(8000, 2000),
    glucose=(85, 10),
    temperature=(36.6, 0.3),
    oxygen_saturation=(98, 1),
    sleep_duration=(7.5, 0.5),
    sleep_quality=(8, 1),
    hydration=(2.5, 0.4),
    stress_level=(2.5, 1),
    mood=(4, 0.5),
    calories_burned=(2200, 300),
)

_WARNING_PROFILE = _profile(
    heart_rate=(85, 10),
    blood_pressure_systolic=(125, 10),
    blood_pressure_diastolic=(82, 6),
    steps=(4000, 1500),
    glucose=(105, 12),
    temperature=(36.7, 0.3),
    oxygen_saturation=(96, 1.5),
    sleep_duration=(6.0, 0.8),
    sleep_quality=(5.5, 1.5),
    hydration=(1.8, 0.4),
    stress_level=(6, 1.5),
    mood=(2.5, 0.8),
    calories_burned=(1500, 250),
)

# Indexed by patient index % 4: which condition makes the patient critical.
_CRITICAL_PROFILES = (
    # hypertensive crisis
    _profile(
        heart_rate=(95, 10),
        blood_pressure_systolic=(165, 10),
        blood_pressure_diastolic=(105, 8),
        steps=(2000, 1000),
        glucose=(180, 15),
        temperature=(37.8, 0.4),
        oxygen_saturation=(92, 2),
        sleep_duration=(4.5, 1.0),
        sleep_quality=(3, 1.5),
        hydration=(1.2, 0.4),
        stress_level=(8, 1.5),
        mood=(2, 0.8),
        calories_burned=(1200, 200),
    ),
    # tachycardia
    _profile(
        heart_rate=(140, 10),
        blood_pressure_systolic=(145, 12),
        blood_pressure_diastolic=(95, 8),
        steps=(3000, 1500),
        glucose=(160, 20),
        temperature=(37.5, 0.3),
        oxygen_saturation=(93, 2),
        sleep_duration=(5.0, 1.0),
        sleep_quality=(4, 1.5),
        hydration=(1.5, 0.4),
        stress_level=(8.5, 1.0),
        mood=(1.8, 0.7),
        calories_burned=(1400, 250),
    ),
    # hypoxaemia
    _profile(
        heart_rate=(90, 12),
        blood_pressure_systolic=(150, 15),
        blood_pressure_diastolic=(100, 10),
        steps=(2500, 1200),
        glucose=(170, 18),
        temperature=(37.2, 0.5),
        oxygen_saturation=(88, 2),
        sleep_duration=(4.0, 1.2),
        sleep_quality=(2.5, 1.5),
        hydration=(1.0, 0.4),
        stress_level=(9, 0.8),
        mood=(1.5, 0.8),
        calories_burned=(1100, 200),
    ),
    # several systems at once
    _profile(
        heart_rate=(135, 12),
        blood_pressure_systolic=(170, 12),
        blood_pressure_diastolic=(110, 8),
        steps=(1500, 800),
        glucose=(190, 15),
        temperature=(38.0, 0.4),
        oxygen_saturation=(89, 2),
        sleep_duration=(3.5, 1.0),
        sleep_quality=(2, 1.5),
        hydration=(0.9, 0.3),
        stress_level=(9.5, 0.5),
        mood=(1.2, 0.6),
        calories_burned=(1000, 200),
    ),
)

# Physiologically plausible limits for any generated reading.
_LIMITS: dict[MetricType, tuple[float, float]] = {
    MetricType.HEART_RATE: (40, 200),
    MetricType.BLOOD_PRESSURE_SYSTOLIC: (70, 200),
    MetricType.BLOOD_PRESSURE_DIASTOLIC: (40, 120),
    MetricType.STEPS: (0, 50000),
    MetricType.GLUCOSE: (50, 300),
    MetricType.TEMPERATURE: (35, 40),
    MetricType.OXYGEN_SATURATION: (85, 100),
    MetricType.SLEEP_DURATION: (0, 16),
    MetricType.SLEEP_QUALITY: (0, 10),
    MetricType.HYDRATION: (0, 10),
    MetricType.STRESS_LEVEL: (1, 10),
    MetricType.MOOD: (1, 5),
    MetricType.CALORIES_BURNED: (0, 10000),
}

_TENTHS = frozenset({MetricType.TEMPERATURE, MetricType.SLEEP_DURATION, MetricType.HYDRATION})
_HALVES = frozenset({MetricType.SLEEP_QUALITY, MetricType.STRESS_LEVEL, MetricType.MOOD})


def health_group(index: int, total: int) -> str:
    """Health group of the patient at ``index`` in a roster of ``total``."""
    healthy = round(total * HEALTHY_SHARE)
    warning = round(total * WARNING_SHARE)
    if index < healthy:
        return HEALTHY
    if index < healthy + warning:
        return WARNING
    return CRITICAL


def baseline_for(index: int, total: int) -> dict[MetricType, Baseline]:
    group = health_group(index, total)
    if group == HEALTHY:
        return _HEALTHY_PROFILE
    if group == WARNING:
        return _WARNING_PROFILE
    return _CRITICAL_PROFILES[index % 4]


def round_reading(metric_type: MetricType, value: float) -> float:
    if metric_type in _TENTHS:
        value = round(value * 10) / 10
    elif metric_type in _HALVES:
        value = round(value * 2) / 2
    else:
        value = float(round(value))
    return max(0.0, value)


class DeviceSimulator:
    """Seeded synthetic device feed.

    Usage::

        sim = DeviceSimulator(range_table, seed=7)
        readings = sim.generate(["p1", "p2", "p3"], previous=repo.get_latest_values(ids))
        for reading in readings:
            service.ingest(**reading)
    """

    def __init__(self, range_table: RangeTable, seed: int | None = None) -> None:
        self._ranges = range_table
        self._rng = random.Random(seed)

    @property
    def data_source(self) -> str:
        return "simulator"

    def generate(
        self,
        subject_ids: Sequence[str],
        at: datetime | None = None,
        previous: Mapping[str, Mapping[MetricType, float]] | None = None,
    ) -> list[dict[str, Any]]:
        at = at or utc_now()
        timestamp = to_utc_iso(at)
        previous = previous or {}
        total = len(subject_ids)

        readings: list[dict[str, Any]] = []
        for index, subject_id in enumerate(subject_ids):
            group = health_group(index, total)
            last_values = previous.get(subject_id, {})
            for metric_type, baseline in baseline_for(index, total).items():
                value = self._reading(
                    metric_type, baseline, group, index, at.hour, last_values.get(metric_type),
                )
                readings.append({
                    "subject_id": subject_id,
                    "metric_type": metric_type.value,
                    "value": value,
                    "unit": default_unit(metric_type),
                    "timestamp": timestamp,
                    "source": "device",
                    "device_id": f"sim-{subject_id}",
                })

        logger.info("Simulated %d readings for %d patients", len(readings), total)
        return readings

    def _reading(
        self,
        metric_type: MetricType,
        baseline: Baseline,
        group: str,
        index: int,
        hour: int,
        last: float | None,
    ) -> float:
        rng = self._rng
        low, high = _LIMITS.get(metric_type, (0, 1000))

        target = _clamp(baseline.base + (rng.random() - 0.5) * baseline.variance * 2, low, high)
        if last is not None and low <= last <= high:
            value = last + (target - last) * DRIFT_RATE
            value += (rng.random() - 0.5) * baseline.variance * 0.2
            value = _clamp(value, low, high)
        else:
            value = target

        # Circadian shape
        if metric_type is MetricType.HEART_RATE:
            value *= 1.1 if 6 <= hour <= 22 else 0.9
        elif metric_type is MetricType.STEPS:
            value *= min(hour / 24 * 2, 1)

        entry = self._ranges.get(metric_type)
        if entry is not None:
            if group == HEALTHY:
                margin = (entry.max - entry.min) * 0.05
                value = _clamp(value, entry.min + margin, entry.max - margin)
            elif group == WARNING:
                if entry.critical_min is not None and value < entry.critical_min:
                    value = entry.critical_min + rng.random() * (entry.min - entry.critical_min)
                elif entry.critical_max is not None and value > entry.critical_max:
                    value = entry.critical_max - rng.random() * (entry.critical_max - entry.max)
            else:
                value = self._force_critical(metric_type, index % 4, value)

        return round_reading(metric_type, _clamp(value, low, high))

    def _force_critical(self, metric_type: MetricType, condition: int, value: float) -> float:
        rng = self._rng
        if condition == 0 and metric_type is MetricType.BLOOD_PRESSURE_SYSTOLIC:
            return 181 + rng.random() * 14
        if condition == 1 and metric_type is MetricType.HEART_RATE:
            return 151 + rng.random() * 29
        if condition in (2, 3) and metric_type is MetricType.OXYGEN_SATURATION:
            return 85 + rng.random() * 4
        if condition == 3 and metric_type is MetricType.SLEEP_DURATION:
            return rng.random() * 3.5
        return value


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
