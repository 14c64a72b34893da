"""Monitoring service: the engine's external operations.

Composes the repository, range table, alert emitter and rollup engine.
Tool handlers call into this class; it raises the ``careboard.core.errors``
taxonomy and never returns an empty result in place of a failure.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator

from careboard.core.errors import (
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    RollupTimeoutError,
    StoreUnavailableError,
)
from careboard.core.storage.database import DatabaseError
from careboard.core.storage.models import (
    Alert,
    AlertAction,
    AlertSeverity,
    AlertStatus,
    AlertType,
    MetricSample,
    MetricType,
    SampleSource,
    Subject,
    SubjectRole,
    coerce_value,
    parse_enum,
    parse_timestamp,
    to_utc_iso,
    utc_now,
)
from careboard.core.storage.repository import MonitoringRepository
from careboard.domains.monitoring.connectors import SampleFeed
from careboard.domains.monitoring.domain_logic.alerting import (
    METRIC_ALERT_POLICY,
    AlertEmitter,
    SuppressionPolicy,
)
from careboard.domains.monitoring.domain_logic.classifier import classify
from careboard.domains.monitoring.domain_logic.ranges import RangeTable, default_unit
from careboard.domains.monitoring.domain_logic.rollup import (
    PERIOD_DAYS,
    FleetRollup,
    FleetRollupEngine,
    resolve_window,
)
from careboard.domains.monitoring.domain_logic.statistics import summarize_samples
from careboard.domains.monitoring.domain_logic.status import SubjectHealthStatus, status_for

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LENGTH = 100


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate storage failures into StoreUnavailableError."""
    try:
        yield
    except (sqlite3.Error, DatabaseError) as exc:
        logger.exception("Store failure during %s", operation)
        raise StoreUnavailableError(f"Data temporarily unavailable ({operation})") from exc


class MonitoringService:
    """Ingestion, evaluation, status, rollups and alert lifecycle.

    Usage::

        service = MonitoringService(repository, load_range_table())
        sample_id = service.ingest_sample("p1", "heart_rate", 165)
        service.subject_status("p1").status          # 'critical'
        rollup = await service.fleet_rollup(period="week")
    """

    def __init__(
        self,
        repository: MonitoringRepository,
        range_table: RangeTable,
        *,
        message_window_minutes: float = 2.0,
        rollup_timeout_seconds: float = 15.0,
        default_period: str = "day",
        metric_policy: SuppressionPolicy = METRIC_ALERT_POLICY,
    ) -> None:
        self._repo = repository
        self.range_table = range_table
        self.emitter = AlertEmitter(
            repository,
            range_table,
            metric_policy=metric_policy,
            message_policy=SuppressionPolicy(
                "message",
                window=timedelta(minutes=message_window_minutes),
                active_only=False,
                unread_only=False,
            ),
        )
        self.rollup_engine = FleetRollupEngine(repository, range_table)
        self.rollup_timeout_seconds = rollup_timeout_seconds
        if default_period not in PERIOD_DAYS:
            raise InvalidInputError(
                f"Invalid default period '{default_period}'. Must be one of: {', '.join(PERIOD_DAYS)}"
            )
        self.default_period = default_period

    @property
    def repository(self) -> MonitoringRepository:
        return self._repo

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------

    def register_subject(
        self,
        subject_id: str,
        display_name: str,
        *,
        email: str = "",
        role: str = "patient",
        is_active: bool = True,
    ) -> Subject:
        """Create or update a subject in the directory."""
        subject = Subject(
            id=subject_id,
            display_name=display_name,
            email=email,
            role=role,
            is_active=is_active,
        )
        with store_errors("register_subject"):
            self._repo.upsert_subject(subject)
        logger.info("Registered %s %s", subject.role.value, subject.id)
        return subject

    def require_subject(self, subject_id: str) -> Subject:
        """Return the subject or raise NotFoundError."""
        with store_errors("get_subject"):
            subject = self._repo.get_subject(subject_id)
        if subject is None:
            raise NotFoundError(f"Subject not found: {subject_id!r}")
        return subject

    def require_clinician(self, subject_id: str) -> Subject:
        """Return the subject if it holds a clinical role, else raise ForbiddenError."""
        subject = self.require_subject(subject_id)
        if not subject.is_clinician:
            raise ForbiddenError(f"Subject {subject_id!r} may not view fleet data")
        return subject

    # ------------------------------------------------------------------
    # Ingestion and evaluation
    # ------------------------------------------------------------------

    def ingest(
        self,
        subject_id: str,
        metric_type: str | MetricType,
        value: Any,
        *,
        unit: str | None = None,
        timestamp: Any = None,
        source: str = "manual",
        notes: str = "",
        device_id: str | None = None,
        evaluate: bool = True,
    ) -> tuple[MetricSample, Alert | None]:
        """Validate and store one sample, then evaluate it.

        Evaluation only runs when the new sample is the subject's newest
        reading of its type; a back-filled older reading does not reflect
        the subject's current state.

        Returns:
            The stored sample and the alert it raised (None if no alert).
        """
        mt = MetricType.parse(metric_type)
        number = coerce_value(value)
        when = parse_timestamp(timestamp) if timestamp is not None else utc_now()
        self.require_subject(subject_id)

        sample = MetricSample(
            id="",
            subject_id=subject_id,
            metric_type=mt,
            value=number,
            unit=unit or default_unit(mt),
            timestamp=to_utc_iso(when),
            source=parse_enum(SampleSource, source, "source"),
            notes=notes or "",
            device_id=device_id,
        )
        with store_errors("ingest_sample"):
            sample_id = self._repo.add_sample(sample)
            stored = self._repo.get_sample(sample_id)
            is_latest = self._repo.is_latest(stored)

        alert = None
        if evaluate and is_latest:
            alert = self.evaluate_and_alert(
                subject_id,
                mt,
                stored.value,
                stored.timestamp,
                unit=stored.unit,
                related_metric_id=sample_id,
            )
        logger.info("Ingested %s sample %s for %s", mt.value, sample_id, subject_id)
        return stored, alert

    def ingest_sample(self, subject_id: str, metric_type: str | MetricType, value: Any, **kwargs: Any) -> str:
        """Store a sample and return its ID. See ``ingest`` for keyword arguments."""
        sample, _ = self.ingest(subject_id, metric_type, value, **kwargs)
        return sample.id

    def evaluate_and_alert(
        self,
        subject_id: str,
        metric_type: str | MetricType,
        value: Any,
        timestamp: Any = None,
        *,
        unit: str | None = None,
        related_metric_id: str | None = None,
    ) -> Alert | None:
        """Classify a reading and raise an alert if it is abnormal and not a duplicate."""
        mt = MetricType.parse(metric_type)
        number = coerce_value(value)
        self.require_subject(subject_id)
        severity = classify(mt, number, self.range_table)
        with store_errors("evaluate_and_alert"):
            return self.emitter.maybe_emit_alert(
                subject_id,
                mt,
                number,
                unit or default_unit(mt),
                severity,
                timestamp,
                related_metric_id=related_metric_id,
            )

    def evaluate_latest(self, subject_id: str) -> list[Alert]:
        """Evaluate every latest value of a subject; returns the alerts written."""
        self.require_subject(subject_id)
        with store_errors("evaluate_latest"):
            latest = self._repo.get_latest_samples([subject_id])
        alerts = []
        for sample in sorted(latest, key=lambda s: s.metric_type.value):
            alert = self.evaluate_and_alert(
                subject_id,
                sample.metric_type,
                sample.value,
                sample.timestamp,
                unit=sample.unit,
                related_metric_id=sample.id,
            )
            if alert is not None:
                alerts.append(alert)
        return alerts

    def ingest_feed(
        self,
        feed: SampleFeed,
        subject_ids: list[str] | None = None,
        at: datetime | None = None,
    ) -> dict[str, Any]:
        """Pull one round of readings from ``feed`` and ingest them.

        ``subject_ids=None`` means every active patient.
        """
        if subject_ids is None:
            with store_errors("ingest_feed"):
                ids = [s.id for s in self._repo.list_subjects(role=SubjectRole.PATIENT)]
        else:
            ids = [self.require_subject(sid).id for sid in dict.fromkeys(subject_ids)]

        with store_errors("ingest_feed"):
            previous = self._repo.get_latest_values(ids)

        stored = 0
        alerts: list[Alert] = []
        for reading in feed.generate(ids, at=at, previous=previous):
            subject_id = reading.pop("subject_id")
            metric_type = reading.pop("metric_type")
            value = reading.pop("value")
            _, alert = self.ingest(subject_id, metric_type, value, **reading)
            stored += 1
            if alert is not None:
                alerts.append(alert)

        logger.info(
            "Ingested %d %s readings for %d subjects (%d alerts)",
            stored, feed.data_source, len(ids), len(alerts),
        )
        return {
            "data_source": feed.data_source,
            "subjects": len(ids),
            "samples": stored,
            "alerts": [a.to_dict() for a in alerts],
        }

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def list_samples(
        self,
        subject_id: str,
        *,
        metric_type: str | None = None,
        start: str | None = None,
        end: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[MetricSample], int]:
        """Page through a subject's samples, newest first. Returns (page, total)."""
        self.require_subject(subject_id)
        mt = MetricType.parse(metric_type) if metric_type else None
        since = to_utc_iso(parse_timestamp(start)) if start else None
        until = to_utc_iso(parse_timestamp(end)) if end else None
        if limit < 1 or offset < 0:
            raise InvalidInputError("limit must be positive and offset non-negative")
        with store_errors("list_samples"):
            page = self._repo.get_samples(
                subject_id, metric_type=mt, since=since, until=until, limit=limit, offset=offset,
            )
            total = self._repo.count_samples(subject_id, metric_type=mt, since=since, until=until)
        return page, total

    def delete_sample(self, subject_id: str, sample_id: str) -> None:
        """Soft-delete one of the subject's own samples."""
        with store_errors("delete_sample"):
            sample = self._repo.get_sample(sample_id)
            if sample is None or not sample.is_active:
                raise NotFoundError(f"Sample not found: {sample_id!r}")
            if sample.subject_id != subject_id:
                raise ForbiddenError("Samples can only be deleted by their owner")
            self._repo.soft_delete_sample(sample_id, subject_id)

    # ------------------------------------------------------------------
    # Status and summaries
    # ------------------------------------------------------------------

    def subject_status(self, subject_id: str, as_of: Any = None) -> SubjectHealthStatus:
        """Status from the subject's latest value per metric type at ``as_of`` (default now)."""
        self.require_subject(subject_id)
        cutoff = to_utc_iso(parse_timestamp(as_of)) if as_of is not None else None
        with store_errors("subject_status"):
            latest = self._repo.get_latest_values([subject_id], as_of=cutoff)
        return status_for(latest.get(subject_id, {}), self.range_table)

    def subject_summary(self, subject_id: str, period: str = "week") -> dict[str, Any]:
        """Per-metric statistics over the subject's samples in the period."""
        self.require_subject(subject_id)
        window_start, window_end = resolve_window(period)
        with store_errors("subject_summary"):
            samples = self._repo.get_samples(
                subject_id, since=window_start, until=window_end, limit=None,
            )
        return {
            "subject_id": subject_id,
            "period": period,
            "window_start": window_start,
            "window_end": window_end,
            "total_samples": len(samples),
            "summary": summarize_samples(samples),
        }

    async def fleet_rollup(
        self,
        subject_ids: list[str] | None = None,
        *,
        period: str | None = None,
        start: str | None = None,
        end: str | None = None,
    ) -> FleetRollup:
        """Fleet rollup over the given patients, or every active patient.

        ``period`` falls back to ``default_period``. The time budget covers
        the store reads as well as the computation: statements still running
        when it expires are aborted.

        Raises:
            InvalidInputError: Bad period or window.
            NotFoundError: A requested subject ID is unknown.
            RollupTimeoutError: The rollup exceeded ``rollup_timeout_seconds``.
            StoreUnavailableError: The store could not be read.
        """
        period = period or self.default_period
        window_start, window_end = resolve_window(period, start, end)

        with store_errors("fleet_rollup"):
            if subject_ids is None:
                subjects = self._repo.list_subjects(role=SubjectRole.PATIENT)
            else:
                wanted = list(dict.fromkeys(subject_ids))
                subjects = self._repo.get_subjects(wanted)
                missing = set(wanted) - {s.id for s in subjects}
                if missing:
                    raise NotFoundError(f"Unknown subjects: {', '.join(sorted(missing))}")

            deadline = time.monotonic() + self.rollup_timeout_seconds
            try:
                return await asyncio.wait_for(
                    self.rollup_engine.rollup(
                        subjects, window_start, window_end, period=period, deadline=deadline,
                    ),
                    timeout=self.rollup_timeout_seconds,
                )
            except (asyncio.TimeoutError, RollupTimeoutError):
                logger.warning(
                    "Fleet rollup over %d subjects exceeded %.1fs",
                    len(subjects), self.rollup_timeout_seconds,
                )
                raise RollupTimeoutError(
                    f"Fleet rollup exceeded {self.rollup_timeout_seconds:g}s; retry shortly"
                ) from None

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def list_alerts(
        self,
        subject_id: str,
        *,
        status: str | None = None,
        severity: str | None = None,
        alert_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Alert], int, int]:
        """A subject's alerts, newest first. Returns (page, total, unread_count)."""
        self.require_subject(subject_id)
        filters = {
            "status": parse_enum(AlertStatus, status, "status").value if status else None,
            "severity": parse_enum(AlertSeverity, severity, "severity").value if severity else None,
            "alert_type": parse_enum(AlertType, alert_type, "alert type").value if alert_type else None,
        }
        with store_errors("list_alerts"):
            page = self._repo.list_alerts(subject_id, limit=limit, offset=offset, **filters)
            total = self._repo.count_alerts(subject_id, **filters)
            unread = self._repo.count_unread(subject_id)
        return page, total, unread

    def alert_summary(self, subject_id: str) -> dict[str, Any]:
        self.require_subject(subject_id)
        with store_errors("alert_summary"):
            return self._repo.alert_summary(subject_id)

    def get_alert(self, alert_id: str, actor_id: str) -> Alert:
        """Return an alert owned by ``actor_id``."""
        with store_errors("get_alert"):
            alert = self._repo.get_alert(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert not found: {alert_id!r}")
        if alert.subject_id != actor_id:
            raise ForbiddenError("Alerts can only be changed by the subject they belong to")
        return alert

    def acknowledge_alert(self, alert_id: str, actor_id: str, notes: str = "") -> Alert:
        alert = self.get_alert(alert_id, actor_id)
        alert.status = AlertStatus.ACKNOWLEDGED
        alert.acknowledged_at = to_utc_iso(utc_now())
        alert.is_read = True
        return self._record(alert, "acknowledge", actor_id, notes)

    def resolve_alert(self, alert_id: str, actor_id: str, notes: str = "") -> Alert:
        alert = self.get_alert(alert_id, actor_id)
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = to_utc_iso(utc_now())
        alert.is_read = True
        return self._record(alert, "resolve", actor_id, notes)

    def dismiss_alert(self, alert_id: str, actor_id: str, notes: str = "") -> Alert:
        alert = self.get_alert(alert_id, actor_id)
        alert.status = AlertStatus.DISMISSED
        alert.is_read = True
        return self._record(alert, "dismiss", actor_id, notes)

    def mark_alert_read(self, alert_id: str, actor_id: str, notes: str = "") -> Alert:
        alert = self.get_alert(alert_id, actor_id)
        alert.is_read = True
        return self._record(alert, "read", actor_id, notes)

    def _record(self, alert: Alert, action: str, actor_id: str, notes: str) -> Alert:
        if len(notes or "") > 500:
            raise InvalidInputError("Notes must be less than 500 characters")
        entry = AlertAction(
            id="",
            alert_id=alert.id,
            action=action,
            performed_by=actor_id,
            performed_at=to_utc_iso(utc_now()),
            notes=notes or "",
        )
        with store_errors(f"{action}_alert"):
            self._repo.update_alert_state(alert, entry)
        logger.info("Alert %s: %s by %s", alert.id, action, actor_id)
        return alert

    def notify_new_message(
        self,
        receiver_id: str,
        sender_id: str,
        message_id: str,
        content: str = "",
        *,
        message_type: str = "text",
    ) -> Alert | None:
        """Raise a new-message alert for the receiver, once per message."""
        self.require_subject(receiver_id)
        sender = self.require_subject(sender_id)
        sender_name = sender.display_name or sender.email or "Someone"

        if message_type == "text":
            preview = content[:MESSAGE_PREVIEW_LENGTH]
            if len(content) > MESSAGE_PREVIEW_LENGTH:
                preview += "..."
            body = f"{sender_name}: {preview}"
        else:
            kind = "an image" if message_type == "image" else "a file"
            body = f"{sender_name} sent you {kind}: {content or message_type}"

        with store_errors("notify_new_message"):
            return self.emitter.emit_event_alert(
                receiver_id,
                message_id,
                title=f"New Message from {sender_name}",
                message=body,
                metadata={"sender_id": sender_id, "message_type": message_type},
            )
