"""Tests for the storage models: enum parsing, timestamps, value coercion."""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone

import pytest

from careboard.core.errors import InvalidInputError, InvalidMetricTypeError, InvalidValueError
from careboard.core.storage.models import (
    Alert,
    MetricSample,
    MetricType,
    Subject,
    coerce_value,
    parse_timestamp,
    to_utc_iso,
)


class TestMetricType:
    def test_parse_accepts_values(self):
        assert MetricType.parse("heart_rate") is MetricType.HEART_RATE
        assert MetricType.parse(MetricType.MOOD) is MetricType.MOOD

    def test_parse_rejects_unknown(self):
        with pytest.raises(InvalidMetricTypeError, match="Invalid metric type"):
            MetricType.parse("pulse")

    def test_display_name(self):
        assert MetricType.BLOOD_PRESSURE_SYSTOLIC.display_name == "Blood Pressure Systolic"

    def test_fifteen_types(self):
        assert len(MetricType) == 15


class TestCoerceValue:
    @pytest.mark.parametrize("raw, expected", [(72, 72.0), (36.6, 36.6), ("98.5", 98.5)])
    def test_accepts_numbers(self, raw, expected):
        assert coerce_value(raw) == expected

    @pytest.mark.parametrize("raw", [True, "abc", None, [1], math.nan, math.inf, "-inf"])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(InvalidValueError):
            coerce_value(raw)


class TestTimestamps:
    def test_z_suffix(self):
        moment = parse_timestamp("2026-03-01T08:30:00Z")
        assert moment == datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        moment = parse_timestamp("2026-03-01T10:30:00+02:00")
        assert moment.hour == 8
        assert moment.tzinfo == timezone.utc

    def test_naive_is_utc(self):
        assert parse_timestamp("2026-03-01T08:30:00").tzinfo == timezone.utc

    def test_date_object(self):
        assert parse_timestamp(date(2026, 3, 1)) == datetime(2026, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", ["", "yesterday", "2026-13-01", 12345])
    def test_invalid(self, raw):
        with pytest.raises(InvalidInputError, match="ISO 8601"):
            parse_timestamp(raw)

    def test_iso_is_fixed_width_and_ordered(self):
        a = to_utc_iso(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
        b = to_utc_iso(datetime(2026, 3, 1, 10, 0, 0, 1, tzinfo=timezone.utc))
        c = to_utc_iso(datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=1))))
        assert len(a) == len(b) == len(c)
        assert a < b < c


class TestRecords:
    def test_sample_rejects_unknown_unit(self):
        with pytest.raises(InvalidInputError, match="Invalid unit"):
            MetricSample(id="", subject_id="p1", metric_type="heart_rate", value=70,
                         unit="beats", timestamp="2026-03-01T00:00:00.000000+00:00")

    def test_sample_rejects_long_notes(self):
        with pytest.raises(InvalidInputError, match="Notes"):
            MetricSample(id="", subject_id="p1", metric_type="heart_rate", value=70,
                         unit="bpm", timestamp="2026-03-01T00:00:00.000000+00:00",
                         notes="x" * 501)

    def test_sample_day(self):
        sample = MetricSample(id="", subject_id="p1", metric_type="glucose", value=90,
                              unit="mg/dL", timestamp="2026-03-01T23:59:00.000000+00:00")
        assert sample.day == "2026-03-01"

    def test_alert_rejects_unknown_severity(self):
        with pytest.raises(InvalidInputError, match="severity"):
            Alert(id="", subject_id="p1", alert_type="emergency", title="t",
                  message="m", cause_key="metric:mood", severity="urgent")

    def test_alert_title_length(self):
        with pytest.raises(InvalidInputError, match="Title"):
            Alert(id="", subject_id="p1", alert_type="emergency", title="x" * 101,
                  message="m", cause_key="metric:mood")

    def test_subject_role_validation(self):
        assert Subject(id="d", display_name="D", role="doctor").is_clinician
        assert not Subject(id="p", display_name="P").is_clinician
        with pytest.raises(InvalidInputError, match="role"):
            Subject(id="x", display_name="X", role="janitor")
