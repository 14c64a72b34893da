"""Tests for the range table loader and the severity classifier."""

from __future__ import annotations

import pytest

from careboard.core.errors import RangeTableError
from careboard.core.storage.models import MetricType
from careboard.domains.monitoring.domain_logic.classifier import Severity, classify, direction
from careboard.domains.monitoring.domain_logic.ranges import (
    METRIC_CATALOGUE,
    RangeEntry,
    default_unit,
    load_range_table,
    parse_range_table,
)


class TestDefaultTable:
    def test_loads_eleven_ranges(self, range_table):
        assert len(range_table) == 11
        assert range_table.version == "1.0.0"

    def test_heart_rate_entry(self, range_table):
        assert range_table[MetricType.HEART_RATE] == RangeEntry(60, 100, 40, 150)

    def test_uncapped_metric_types_have_no_entry(self, range_table):
        for mt in (MetricType.STEPS, MetricType.CALORIES_BURNED, MetricType.WEIGHT, MetricType.HEIGHT):
            assert range_table.get(mt) is None

    def test_to_dict(self, range_table):
        data = range_table.to_dict()
        assert data["ranges"]["temperature"] == {
            "min": 36.1, "max": 37.2, "critical_min": 35, "critical_max": 38.5,
        }

    def test_every_metric_type_catalogued(self):
        assert set(METRIC_CATALOGUE) == set(MetricType)
        assert default_unit(MetricType.GLUCOSE) == "mg/dL"

    def test_describe(self, range_table):
        assert range_table[MetricType.HEART_RATE].describe() == "60-100"
        assert range_table[MetricType.HYDRATION].describe() == "1.5-4"


class TestLoading:
    def test_custom_file(self, tmp_path):
        path = tmp_path / "ranges.yaml"
        path.write_text("version: '2'\nranges:\n  glucose: {min: 80, max: 110}\n")
        table = load_range_table(path)
        assert table.version == "2"
        assert table[MetricType.GLUCOSE].critical_max is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(RangeTableError, match="not found"):
            load_range_table(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("ranges: [unclosed\n")
        with pytest.raises(RangeTableError, match="Invalid range table YAML"):
            load_range_table(path)

    def test_unknown_metric_type(self):
        with pytest.raises(RangeTableError, match="Unknown metric type"):
            parse_range_table({"ranges": {"pulse": {"min": 1, "max": 2}}})

    def test_missing_bounds(self):
        with pytest.raises(RangeTableError, match="needs 'min' and 'max'"):
            parse_range_table({"ranges": {"mood": {"min": 1}}})

    def test_inverted_band(self):
        with pytest.raises(RangeTableError, match="exceeds"):
            parse_range_table({"ranges": {"mood": {"min": 5, "max": 1}}})

    def test_non_numeric_bound(self):
        with pytest.raises(RangeTableError, match="finite numbers"):
            RangeEntry(min="low", max=5)

    def test_missing_ranges_key(self):
        with pytest.raises(RangeTableError):
            parse_range_table({"version": "1"})


class TestClassify:
    @pytest.mark.parametrize("value, expected", [
        (165, Severity.CRITICAL),
        (45, Severity.WARNING),
        (39, Severity.CRITICAL),
        (105, Severity.WARNING),
        (80, Severity.NORMAL),
        (60, Severity.NORMAL),
        (100, Severity.NORMAL),
        (150, Severity.WARNING),
    ])
    def test_heart_rate(self, range_table, value, expected):
        assert classify(MetricType.HEART_RATE, value, range_table) is expected

    def test_below_critical_min_is_critical(self):
        table = {MetricType.HEART_RATE: RangeEntry(60, 100, 50, 150)}
        assert classify(MetricType.HEART_RATE, 45, table) is Severity.CRITICAL

    def test_every_range_boundary_property(self, range_table):
        for metric_type, entry in range_table.items():
            assert classify(metric_type, entry.min, range_table) is Severity.NORMAL
            assert classify(metric_type, entry.max, range_table) is Severity.NORMAL
            if entry.critical_min is not None:
                assert classify(metric_type, entry.critical_min - 0.01, range_table) is Severity.CRITICAL
            if entry.critical_max is not None:
                assert classify(metric_type, entry.critical_max + 0.01, range_table) is Severity.CRITICAL

    def test_no_entry_is_normal(self, range_table):
        assert classify(MetricType.STEPS, 0, range_table) is Severity.NORMAL
        assert classify(MetricType.WEIGHT, 500, range_table) is Severity.NORMAL

    def test_direction(self, range_table):
        assert direction(MetricType.GLUCOSE, 260, range_table) == "high"
        assert direction(MetricType.GLUCOSE, 60, range_table) == "low"
        assert direction(MetricType.GLUCOSE, 85, range_table) is None
        assert direction(MetricType.STEPS, 10, range_table) is None
