"""Data models for the monitoring persistence layer.

Records coming out of the store are explicit, validated dataclasses: the
constructors reject unknown enum values and non-finite numbers instead of
falling back to defaults.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from careboard.core.errors import (
    InvalidInputError,
    InvalidMetricTypeError,
    InvalidValueError,
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class MetricType(str, Enum):
    BLOOD_PRESSURE_SYSTOLIC = "blood_pressure_systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood_pressure_diastolic"
    HEART_RATE = "heart_rate"
    STEPS = "steps"
    GLUCOSE = "glucose"
    WEIGHT = "weight"
    HEIGHT = "height"
    TEMPERATURE = "temperature"
    OXYGEN_SATURATION = "oxygen_saturation"
    SLEEP_DURATION = "sleep_duration"
    SLEEP_QUALITY = "sleep_quality"
    CALORIES_BURNED = "calories_burned"
    HYDRATION = "hydration"
    STRESS_LEVEL = "stress_level"
    MOOD = "mood"

    @classmethod
    def parse(cls, value: Any) -> MetricType:
        """Return the MetricType for ``value``.

        Raises:
            InvalidMetricTypeError: If ``value`` is not an accepted metric type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidMetricTypeError(f"Invalid metric type: {value!r}") from None

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class SampleSource(str, Enum):
    MANUAL = "manual"
    DEVICE = "device"
    APP = "app"
    IMPORTED = "imported"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class AlertType(str, Enum):
    ELEVATED_HEART_RATE = "elevated_heart_rate"
    HIGH_BLOOD_PRESSURE = "high_blood_pressure"
    LOW_BLOOD_PRESSURE = "low_blood_pressure"
    IRREGULAR_SLEEP = "irregular_sleep"
    LOW_ACTIVITY = "low_activity"
    HIGH_GLUCOSE = "high_glucose"
    LOW_GLUCOSE = "low_glucose"
    MEDICATION_REMINDER = "medication_reminder"
    APPOINTMENT_REMINDER = "appointment_reminder"
    CHECKUP_DUE = "checkup_due"
    EMERGENCY = "emergency"
    DEVICE_OFFLINE = "device_offline"
    DATA_SYNC_ISSUE = "data_sync_issue"
    NEW_MESSAGE = "new_message"


class SubjectRole(str, Enum):
    PATIENT = "patient"
    PROVIDER = "provider"
    DOCTOR = "doctor"
    ADMIN = "admin"


CLINICAL_ROLES = frozenset({SubjectRole.PROVIDER, SubjectRole.DOCTOR, SubjectRole.ADMIN})

UNITS = frozenset({
    "mmHg", "bpm", "steps", "mg/dL", "kg", "cm", "°C", "°F",
    "%", "hours", "minutes", "calories", "liters", "ml",
    "scale_1_10", "scale_1_5",
})

MAX_NOTES_LENGTH = 500


def parse_enum(enum_cls: type[Enum], value: Any, label: str) -> Any:
    """Coerce ``value`` into ``enum_cls`` or raise InvalidInputError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise InvalidInputError(f"Invalid {label}: {value!r}. Valid: {valid}") from None


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def to_utc_iso(moment: datetime) -> str:
    """Render a datetime as a fixed-width UTC ISO 8601 string.

    Naive datetimes are taken to be UTC. The fixed width keeps the stored
    strings lexicographically ordered, which the range queries rely on.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 string, date, or datetime into an aware UTC datetime.

    Raises:
        InvalidInputError: If the value is not a valid ISO 8601 date/time.
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidInputError(
                f"Timestamp must be a valid ISO 8601 date: {value!r}"
            ) from None
    else:
        raise InvalidInputError(f"Timestamp must be a valid ISO 8601 date: {value!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_value(value: Any) -> float:
    """Return ``value`` as a finite float.

    Raises:
        InvalidValueError: For booleans, non-numeric input, NaN and infinities.
    """
    if isinstance(value, bool):
        raise InvalidValueError("Value must be a number")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise InvalidValueError(f"Value must be a number: {value!r}") from None
    if not isinstance(value, (int, float)):
        raise InvalidValueError(f"Value must be a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise InvalidValueError(f"Value must be finite: {value!r}")
    return number


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Subject:
    """A patient or staff member known to the engine."""

    id: str
    display_name: str
    email: str = ""
    role: SubjectRole = SubjectRole.PATIENT
    is_active: bool = True
    created_at: str = ""

    def __post_init__(self) -> None:
        self.role = parse_enum(SubjectRole, self.role, "role")
        if not self.id:
            raise InvalidInputError("Subject id must not be empty")

    @property
    def is_clinician(self) -> bool:
        return self.role in CLINICAL_ROLES


@dataclass(frozen=True)
class MetricSample:
    """A single timestamped reading. Immutable apart from soft deletion in the store."""

    id: str
    subject_id: str
    metric_type: MetricType
    value: float
    unit: str
    timestamp: str  # UTC ISO 8601 (see to_utc_iso)
    source: SampleSource = SampleSource.MANUAL
    is_active: bool = True
    notes: str = ""
    device_id: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric_type", MetricType.parse(self.metric_type))
        object.__setattr__(self, "value", coerce_value(self.value))
        object.__setattr__(self, "source", parse_enum(SampleSource, self.source, "source"))
        if self.unit not in UNITS:
            raise InvalidInputError(f"Invalid unit: {self.unit!r}")
        if len(self.notes or "") > MAX_NOTES_LENGTH:
            raise InvalidInputError(
                f"Notes must be less than {MAX_NOTES_LENGTH} characters"
            )

    @property
    def day(self) -> str:
        """UTC calendar date (``YYYY-MM-DD``) the sample falls in."""
        return self.timestamp[:10]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "metric_type": self.metric_type.value,
            "value": self.value,
            "unit": self.unit,
            "timestamp": self.timestamp,
            "source": self.source.value,
            "device_id": self.device_id,
            "notes": self.notes,
            "is_active": self.is_active,
        }


@dataclass
class AlertAction:
    """One lifecycle action performed on an alert."""

    id: str
    alert_id: str
    action: str  # 'acknowledge' | 'resolve' | 'dismiss' | 'read'
    performed_by: str
    performed_at: str
    notes: str = ""


@dataclass
class Alert:
    """A derived alert with lifecycle state.

    ``cause_key`` names the semantic cause the alert was raised for
    (``metric:<metric_type>`` or ``message:<message_id>``); deduplication
    runs on it.
    """

    id: str
    subject_id: str
    alert_type: AlertType
    title: str
    message: str
    cause_key: str
    severity: AlertSeverity = AlertSeverity.MEDIUM
    status: AlertStatus = AlertStatus.ACTIVE
    is_read: bool = False
    triggered_at: str = ""
    acknowledged_at: str | None = None
    resolved_at: str | None = None
    related_metric_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    actions: list[AlertAction] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.alert_type = parse_enum(AlertType, self.alert_type, "alert type")
        self.severity = parse_enum(AlertSeverity, self.severity, "severity")
        self.status = parse_enum(AlertStatus, self.status, "status")
        if not self.title or len(self.title) > 100:
            raise InvalidInputError("Title must be between 1 and 100 characters")
        if not self.message or len(self.message) > MAX_NOTES_LENGTH:
            raise InvalidInputError("Message must be between 1 and 500 characters")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "alert_type": self.alert_type.value,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "status": self.status.value,
            "is_read": self.is_read,
            "triggered_at": self.triggered_at,
            "acknowledged_at": self.acknowledged_at,
            "resolved_at": self.resolved_at,
            "related_metric_id": self.related_metric_id,
            "metadata": self.metadata,
            "actions": [
                {
                    "action": a.action,
                    "performed_by": a.performed_by,
                    "performed_at": a.performed_at,
                    "notes": a.notes,
                }
                for a in self.actions
            ],
        }
