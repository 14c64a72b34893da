"""Range table: per-metric-type normal and critical bands.

The table is static configuration: loaded once from YAML, immutable after.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping

import yaml

from careboard.core.errors import RangeTableError
from careboard.core.storage.models import MetricType

logger = logging.getLogger(__name__)

DEFAULT_RANGE_FILE = Path(__file__).resolve().parent / "range_tables" / "default.yaml"


# ---------------------------------------------------------------------------
# Metric catalogue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricInfo:
    category: str  # 'vital' | 'activity' | 'wellness' | 'body'
    default_unit: str


METRIC_CATALOGUE: Mapping[MetricType, MetricInfo] = MappingProxyType({
    MetricType.BLOOD_PRESSURE_SYSTOLIC: MetricInfo("vital", "mmHg"),
    MetricType.BLOOD_PRESSURE_DIASTOLIC: MetricInfo("vital", "mmHg"),
    MetricType.HEART_RATE: MetricInfo("vital", "bpm"),
    MetricType.TEMPERATURE: MetricInfo("vital", "°C"),
    MetricType.OXYGEN_SATURATION: MetricInfo("vital", "%"),
    MetricType.GLUCOSE: MetricInfo("vital", "mg/dL"),
    MetricType.STEPS: MetricInfo("activity", "steps"),
    MetricType.CALORIES_BURNED: MetricInfo("activity", "calories"),
    MetricType.SLEEP_DURATION: MetricInfo("wellness", "hours"),
    MetricType.SLEEP_QUALITY: MetricInfo("wellness", "scale_1_10"),
    MetricType.HYDRATION: MetricInfo("wellness", "liters"),
    MetricType.STRESS_LEVEL: MetricInfo("wellness", "scale_1_10"),
    MetricType.MOOD: MetricInfo("wellness", "scale_1_5"),
    MetricType.WEIGHT: MetricInfo("body", "kg"),
    MetricType.HEIGHT: MetricInfo("body", "cm"),
})


def default_unit(metric_type: MetricType) -> str:
    return METRIC_CATALOGUE[metric_type].default_unit


# ---------------------------------------------------------------------------
# Range entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RangeEntry:
    """Normal band ``[min, max]`` plus optional critical bounds."""

    min: float
    max: float
    critical_min: float | None = None
    critical_max: float | None = None

    def __post_init__(self) -> None:
        bounds = [self.min, self.max, self.critical_min, self.critical_max]
        for bound in bounds:
            if bound is None:
                continue
            if isinstance(bound, bool) or not isinstance(bound, (int, float)) or not math.isfinite(bound):
                raise RangeTableError(f"Range bounds must be finite numbers, got {bound!r}")
        if self.min > self.max:
            raise RangeTableError(f"Range min {self.min} exceeds max {self.max}")

    def describe(self) -> str:
        """Human-readable normal band, e.g. ``60-100``."""
        return f"{_fmt(self.min)}-{_fmt(self.max)}"

    def to_dict(self) -> dict[str, float | None]:
        return {
            "min": self.min,
            "max": self.max,
            "critical_min": self.critical_min,
            "critical_max": self.critical_max,
        }


def _fmt(number: float) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


class RangeTable(Mapping[MetricType, RangeEntry]):
    """Immutable mapping from metric type to its RangeEntry.

    Usage::

        table = load_range_table()
        table.get(MetricType.HEART_RATE)  # RangeEntry(min=60, max=100, ...)
        table.get(MetricType.STEPS)       # None, no threshold defined
    """

    def __init__(self, entries: Mapping[MetricType, RangeEntry], version: str = "") -> None:
        self._entries = dict(entries)
        self.version = version

    def __getitem__(self, metric_type: MetricType) -> RangeEntry:
        return self._entries[metric_type]

    def __iter__(self) -> Iterator[MetricType]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "ranges": {mt.value: entry.to_dict() for mt, entry in self._entries.items()},
        }


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_range_table(path: str | Path | None = None) -> RangeTable:
    """Load a RangeTable from YAML (the packaged default when ``path`` is empty).

    Raises:
        RangeTableError: If the file is missing, malformed, or names an
            unknown metric type.
    """
    path = Path(path).expanduser() if path else DEFAULT_RANGE_FILE
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise RangeTableError(f"Range table not found: {path}") from None
    except yaml.YAMLError as exc:
        raise RangeTableError(f"Invalid range table YAML in {path}: {exc}") from exc

    table = parse_range_table(data)
    logger.info("Loaded range table v%s (%d metric types) from %s", table.version, len(table), path)
    return table


def parse_range_table(data: Any) -> RangeTable:
    """Build a RangeTable from the parsed YAML document."""
    if not isinstance(data, dict) or not isinstance(data.get("ranges"), dict):
        raise RangeTableError("Range table must contain a 'ranges' mapping")

    entries: dict[MetricType, RangeEntry] = {}
    for name, raw in data["ranges"].items():
        try:
            metric_type = MetricType(name)
        except ValueError:
            raise RangeTableError(f"Unknown metric type in range table: {name!r}") from None
        if not isinstance(raw, dict) or "min" not in raw or "max" not in raw:
            raise RangeTableError(f"Range for {name!r} needs 'min' and 'max'")
        entries[metric_type] = RangeEntry(
            min=raw["min"],
            max=raw["max"],
            critical_min=raw.get("critical_min"),
            critical_max=raw.get("critical_max"),
        )
    return RangeTable(entries, version=str(data.get("version", "")))
