"""Monitoring repository: CRUD operations for subjects, samples, and alerts.

The repository mediates between the domain records (MetricSample, Alert, ...)
and the SQLite database, using FieldEncryptor for free-text fields.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, ContextManager, Iterable, Iterator

from careboard.core.storage.database import MonitoringDatabase
from careboard.core.storage.encryption import FieldEncryptor
from careboard.core.storage.models import (
    Alert,
    AlertAction,
    MetricSample,
    MetricType,
    Subject,
    SubjectRole,
    to_utc_iso,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class MonitoringRepository:
    """CRUD repository for the sample store, alert store and subject directory.

    Usage::

        db = MonitoringDatabase(":memory:")
        db.initialize()
        repo = MonitoringRepository(db, FieldEncryptor(key="..."))

        repo.upsert_subject(Subject(id="p1", display_name="Ada Lovelace"))
        sample_id = repo.add_sample(sample)
        latest = repo.get_latest_values(["p1"], as_of=now_iso)
    """

    def __init__(self, database: MonitoringDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return to_utc_iso(datetime.now(timezone.utc))

    @staticmethod
    def _placeholders(values: list[Any]) -> str:
        return ",".join("?" for _ in values)

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------

    def upsert_subject(self, subject: Subject) -> str:
        """Insert or update a subject record. Returns the subject ID."""
        conn = self._db.connection
        conn.execute(
            """INSERT INTO subjects (id, display_name, email, role, is_active)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   display_name = excluded.display_name,
                   email = excluded.email,
                   role = excluded.role,
                   is_active = excluded.is_active""",
            (
                subject.id,
                subject.display_name,
                subject.email,
                subject.role.value,
                int(subject.is_active),
            ),
        )
        conn.commit()
        return subject.id

    def get_subject(self, subject_id: str) -> Subject | None:
        row = self._db.connection.execute(
            "SELECT * FROM subjects WHERE id = ?", (subject_id,)
        ).fetchone()
        return self._row_to_subject(row) if row is not None else None

    def get_subjects(self, subject_ids: Iterable[str]) -> list[Subject]:
        """Fetch the given subjects, in no particular order; unknown IDs are skipped."""
        ids = list(dict.fromkeys(subject_ids))
        if not ids:
            return []
        rows = self._db.connection.execute(
            f"SELECT * FROM subjects WHERE id IN ({self._placeholders(ids)})", ids
        ).fetchall()
        return [self._row_to_subject(row) for row in rows]

    def list_subjects(
        self,
        *,
        role: SubjectRole | None = None,
        active_only: bool = True,
    ) -> list[Subject]:
        """List subjects, optionally filtered by role."""
        conditions: list[str] = []
        params: list[Any] = []
        if role is not None:
            conditions.append("role = ?")
            params.append(role.value)
        if active_only:
            conditions.append("is_active = 1")

        query = "SELECT * FROM subjects"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_subject(row) for row in rows]

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def add_sample(self, sample: MetricSample) -> str:
        """Persist a metric sample.

        Args:
            sample: The sample to save. If ``sample.id`` is empty, a UUID
                will be generated.

        Returns:
            The sample ID.
        """
        conn = self._db.connection
        sid = sample.id or self._new_id()
        conn.execute(
            """INSERT INTO metric_samples (
                id, subject_id, metric_type, value, unit, timestamp,
                source, device_id, notes_enc, is_active, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                sid,
                sample.subject_id,
                sample.metric_type.value,
                sample.value,
                sample.unit,
                sample.timestamp,
                sample.source.value,
                sample.device_id,
                self._enc.encrypt_text(sample.notes),
                int(sample.is_active),
                sample.created_at or self._now_iso(),
            ),
        )
        conn.commit()
        logger.debug(
            "Saved sample %s (%s=%s %s for %s)",
            sid, sample.metric_type.value, sample.value, sample.unit, sample.subject_id,
        )
        return sid

    def get_sample(self, sample_id: str) -> MetricSample | None:
        row = self._db.connection.execute(
            "SELECT * FROM metric_samples WHERE id = ?", (sample_id,)
        ).fetchone()
        return self._row_to_sample(row) if row is not None else None

    def soft_delete_sample(self, sample_id: str, subject_id: str) -> bool:
        """Mark a sample inactive. Only the owning subject's samples are touched.

        Returns:
            True if an active sample owned by ``subject_id`` was deactivated.
        """
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE metric_samples SET is_active = 0 WHERE id = ? AND subject_id = ? AND is_active = 1",
            (sample_id, subject_id),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info("Soft-deleted sample %s", sample_id)
        return cursor.rowcount > 0

    def get_samples(
        self,
        subject_id: str,
        *,
        metric_type: MetricType | None = None,
        since: str | None = None,
        until: str | None = None,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[MetricSample]:
        """Query one subject's active samples, newest first.

        Args:
            subject_id: Owner of the samples.
            metric_type: Optional metric type filter.
            since: ISO 8601 lower bound (inclusive).
            until: ISO 8601 upper bound (inclusive).
            limit: Maximum results, or None for all.
            offset: Rows to skip (pagination).
        """
        conditions = ["subject_id = ?", "is_active = 1"]
        params: list[Any] = [subject_id]
        if metric_type is not None:
            conditions.append("metric_type = ?")
            params.append(metric_type.value)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        if until:
            conditions.append("timestamp <= ?")
            params.append(until)

        query = (
            "SELECT * FROM metric_samples WHERE "
            + " AND ".join(conditions)
            + " ORDER BY timestamp DESC, created_at DESC"
        )
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def count_samples(
        self,
        subject_id: str | None = None,
        *,
        metric_type: MetricType | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> int:
        """Count active samples, optionally for one subject and window."""
        conditions = ["is_active = 1"]
        params: list[Any] = []
        if subject_id is not None:
            conditions.append("subject_id = ?")
            params.append(subject_id)
        if metric_type is not None:
            conditions.append("metric_type = ?")
            params.append(metric_type.value)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        if until:
            conditions.append("timestamp <= ?")
            params.append(until)
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM metric_samples WHERE " + " AND ".join(conditions),
            params,
        ).fetchone()
        return row[0]

    def get_latest_samples(
        self,
        subject_ids: Iterable[str],
        *,
        as_of: str | None = None,
    ) -> list[MetricSample]:
        """Most recent active sample per (subject, metric type) at or before ``as_of``.

        Returns:
            One sample per (subject, metric type) pair that has any data.
        """
        ids = list(dict.fromkeys(subject_ids))
        if not ids:
            return []

        conditions = [f"subject_id IN ({self._placeholders(ids)})", "is_active = 1"]
        params: list[Any] = list(ids)
        if as_of:
            conditions.append("timestamp <= ?")
            params.append(as_of)

        query = f"""
            SELECT * FROM (
                SELECT *, ROW_NUMBER() OVER (
                    PARTITION BY subject_id, metric_type
                    ORDER BY timestamp DESC, created_at DESC
                ) AS rn
                FROM metric_samples
                WHERE {" AND ".join(conditions)}
            ) WHERE rn = 1
        """
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def get_latest_values(
        self,
        subject_ids: Iterable[str],
        *,
        as_of: str | None = None,
    ) -> dict[str, dict[MetricType, float]]:
        """Latest-value snapshot keyed by subject, then metric type.

        Subjects without any data are absent from the result.
        """
        snapshot: dict[str, dict[MetricType, float]] = {}
        for sample in self.get_latest_samples(subject_ids, as_of=as_of):
            snapshot.setdefault(sample.subject_id, {})[sample.metric_type] = sample.value
        return snapshot

    def is_latest(self, sample: MetricSample) -> bool:
        """True if no newer active sample of the same type exists for the subject."""
        row = self._db.connection.execute(
            """SELECT 1 FROM metric_samples
               WHERE subject_id = ? AND metric_type = ? AND is_active = 1
                 AND timestamp > ?
               LIMIT 1""",
            (sample.subject_id, sample.metric_type.value, sample.timestamp),
        ).fetchone()
        return row is None

    def get_samples_in_window(
        self,
        subject_ids: Iterable[str],
        start: str,
        end: str,
    ) -> list[MetricSample]:
        """Every active sample of the given subjects with ``start <= timestamp <= end``."""
        return list(self.iter_samples_in_window(subject_ids, start, end))

    def iter_samples_in_window(
        self,
        subject_ids: Iterable[str],
        start: str,
        end: str,
    ) -> Iterator[MetricSample]:
        """Lazy form of get_samples_in_window; rows are stepped as they are consumed."""
        ids = list(dict.fromkeys(subject_ids))
        if not ids:
            return
        cursor = self._db.connection.execute(
            f"""SELECT * FROM metric_samples
                WHERE subject_id IN ({self._placeholders(ids)})
                  AND is_active = 1 AND timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp""",
            [*ids, start, end],
        )
        for row in cursor:
            yield self._row_to_sample(row)

    def deadline(self, expires_at: float) -> ContextManager[Any]:
        """Abort statements issued inside the block once ``expires_at`` (monotonic) passes."""
        return self._db.deadline(expires_at)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def insert_alert_unless_outstanding(
        self,
        alert: Alert,
        *,
        since: str | None = None,
        active_only: bool = True,
        unread_only: bool = True,
    ) -> bool:
        """Write ``alert`` unless an equivalent alert is already outstanding.

        "Equivalent" means same subject and same ``cause_key``, further
        narrowed by the flags: ``active_only`` (status active),
        ``unread_only`` (not yet read) and ``since`` (triggered at or after
        this ISO timestamp).

        The existence check and the insert are one ``INSERT ... SELECT ...
        WHERE NOT EXISTS`` statement, so two concurrent evaluations of the
        same cause cannot both write.

        Returns:
            True if the alert was written, False if it was suppressed.
        """
        conditions = ["subject_id = ?", "cause_key = ?"]
        params: list[Any] = [alert.subject_id, alert.cause_key]
        if active_only:
            conditions.append("status = 'active'")
        if unread_only:
            conditions.append("is_read = 0")
        if since:
            conditions.append("triggered_at >= ?")
            params.append(since)

        conn = self._db.connection
        aid = alert.id or self._new_id()
        cursor = conn.execute(
            f"""INSERT INTO alerts (
                    id, subject_id, alert_type, title, message, severity, status,
                    is_read, cause_key, triggered_at, related_metric_id, metadata_enc
                )
                SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM alerts WHERE {" AND ".join(conditions)}
                )""",
            [
                aid,
                alert.subject_id,
                alert.alert_type.value,
                alert.title,
                alert.message,
                alert.severity.value,
                alert.status.value,
                int(alert.is_read),
                alert.cause_key,
                alert.triggered_at or self._now_iso(),
                alert.related_metric_id,
                self._enc.encrypt_json(alert.metadata),
                *params,
            ],
        )
        conn.commit()
        written = cursor.rowcount == 1
        if written:
            alert.id = aid
        return written

    def get_alert(self, alert_id: str) -> Alert | None:
        """Retrieve an alert with its action history, or None if not found."""
        row = self._db.connection.execute(
            "SELECT * FROM alerts WHERE id = ?", (alert_id,)
        ).fetchone()
        if row is None:
            return None
        alert = self._row_to_alert(row)
        alert.actions = self.get_alert_actions(alert_id)
        return alert

    def list_alerts(
        self,
        subject_id: str,
        *,
        status: str | None = None,
        severity: str | None = None,
        alert_type: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Alert]:
        """List a subject's alerts, newest first."""
        where, params = self._alert_filters(subject_id, status, severity, alert_type)
        query = f"SELECT * FROM alerts WHERE {where} ORDER BY triggered_at DESC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_alert(row) for row in rows]

    def count_alerts(
        self,
        subject_id: str,
        *,
        status: str | None = None,
        severity: str | None = None,
        alert_type: str | None = None,
    ) -> int:
        where, params = self._alert_filters(subject_id, status, severity, alert_type)
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM alerts WHERE {where}", params
        ).fetchone()
        return row[0]

    def count_unread(self, subject_id: str) -> int:
        """Active alerts the subject has not read yet."""
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM alerts WHERE subject_id = ? AND is_read = 0 AND status = 'active'",
            (subject_id,),
        ).fetchone()
        return row[0]

    def alert_summary(self, subject_id: str, *, recent_days: int = 7) -> dict[str, Any]:
        """Counts by status, active counts by severity, unread and recent counts."""
        conn = self._db.connection
        status_rows = conn.execute(
            "SELECT status, COUNT(*) FROM alerts WHERE subject_id = ? GROUP BY status",
            (subject_id,),
        ).fetchall()
        severity_rows = conn.execute(
            """SELECT severity, COUNT(*) FROM alerts
               WHERE subject_id = ? AND status = 'active' GROUP BY severity""",
            (subject_id,),
        ).fetchall()
        cutoff = to_utc_iso(datetime.now(timezone.utc) - timedelta(days=recent_days))
        recent = conn.execute(
            "SELECT COUNT(*) FROM alerts WHERE subject_id = ? AND triggered_at >= ?",
            (subject_id, cutoff),
        ).fetchone()[0]
        return {
            "status_counts": {row[0]: row[1] for row in status_rows},
            "severity_counts": {row[0]: row[1] for row in severity_rows},
            "unread_count": self.count_unread(subject_id),
            "recent_count": recent,
        }

    def update_alert_state(self, alert: Alert, action: AlertAction | None = None) -> None:
        """Persist an alert's lifecycle fields and optionally record an action."""
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE alerts SET status = ?, is_read = ?, acknowledged_at = ?, resolved_at = ?
               WHERE id = ?""",
            (
                alert.status.value,
                int(alert.is_read),
                alert.acknowledged_at,
                alert.resolved_at,
                alert.id,
            ),
        )
        if cursor.rowcount == 0:
            conn.rollback()
            raise RepositoryError(f"Alert not found: {alert.id!r}")
        if action is not None:
            conn.execute(
                """INSERT INTO alert_actions (id, alert_id, action, performed_by, performed_at, notes)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    action.id or self._new_id(),
                    alert.id,
                    action.action,
                    action.performed_by,
                    action.performed_at,
                    action.notes or None,
                ),
            )
            alert.actions.append(action)
        conn.commit()

    def get_alert_actions(self, alert_id: str) -> list[AlertAction]:
        rows = self._db.connection.execute(
            "SELECT * FROM alert_actions WHERE alert_id = ? ORDER BY performed_at",
            (alert_id,),
        ).fetchall()
        return [
            AlertAction(
                id=row["id"],
                alert_id=row["alert_id"],
                action=row["action"],
                performed_by=row["performed_by"],
                performed_at=row["performed_at"],
                notes=row["notes"] or "",
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _alert_filters(
        subject_id: str,
        status: str | None,
        severity: str | None,
        alert_type: str | None,
    ) -> tuple[str, list[Any]]:
        conditions = ["subject_id = ?"]
        params: list[Any] = [subject_id]
        if status:
            conditions.append("status = ?")
            params.append(status)
        if severity:
            conditions.append("severity = ?")
            params.append(severity)
        if alert_type:
            conditions.append("alert_type = ?")
            params.append(alert_type)
        return " AND ".join(conditions), params

    @staticmethod
    def _row_to_subject(row: Any) -> Subject:
        return Subject(
            id=row["id"],
            display_name=row["display_name"],
            email=row["email"] or "",
            role=row["role"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def _row_to_sample(self, row: Any) -> MetricSample:
        return MetricSample(
            id=row["id"],
            subject_id=row["subject_id"],
            metric_type=row["metric_type"],
            value=row["value"],
            unit=row["unit"],
            timestamp=row["timestamp"],
            source=row["source"],
            is_active=bool(row["is_active"]),
            notes=self._enc.decrypt_text(row["notes_enc"]),
            device_id=row["device_id"],
            created_at=row["created_at"],
        )

    def _row_to_alert(self, row: Any) -> Alert:
        return Alert(
            id=row["id"],
            subject_id=row["subject_id"],
            alert_type=row["alert_type"],
            title=row["title"],
            message=row["message"],
            cause_key=row["cause_key"],
            severity=row["severity"],
            status=row["status"],
            is_read=bool(row["is_read"]),
            triggered_at=row["triggered_at"],
            acknowledged_at=row["acknowledged_at"],
            resolved_at=row["resolved_at"],
            related_metric_id=row["related_metric_id"],
            metadata=self._enc.decrypt_json(row["metadata_enc"]),
        )
