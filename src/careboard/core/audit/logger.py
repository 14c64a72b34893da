"""Audit logger: PHI-free access trail for patient data and alert changes.

Every tool call that reads a patient's data or changes an alert is
recorded in the ``audit_log`` table. Nothing identifying beyond opaque IDs
is stored:

* ``tool_input_hash``: SHA-256 of the canonical JSON tool input.
* ``actor_id`` / ``subject_id`` / ``alert_id``: who acted, on whose data.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from careboard.core.storage.database import MonitoringDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'data_delete' | 'alert_change'
    tool_name: str = ""
    tool_input_hash: str = ""
    actor_id: str | None = None
    subject_id: str | None = None
    alert_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately. A failed audit write is logged and
    does not fail the tool call it describes.

    Usage::

        audit = AuditLogger(monitoring_db)
        audit.log_tool_call(
            "subject_status",
            {"subject_id": "p1"},
            subject_id="p1",
            duration_ms=3.2,
        )
    """

    def __init__(self, database: MonitoringDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID ('' if the write failed)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash,
                    actor_id, subject_id, alert_id,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.actor_id,
                    event.subject_id,
                    event.alert_id,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        actor_id: str | None = None,
        subject_id: str | None = None,
        alert_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a tool invocation. ``tool_input`` is hashed, never stored raw."""
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            actor_id=actor_id,
            subject_id=subject_id,
            alert_id=alert_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    @contextmanager
    def tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        actor_id: str | None = None,
        subject_id: str | None = None,
        alert_id: str | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Time a tool body and log it as success or failure.

        The yielded dict is stored as the event metadata, so the body can
        add PHI-free context. Exceptions are logged and re-raised.

        Usage::

            with audit.tool_call("subject_status", {"subject_id": sid}, subject_id=sid) as meta:
                meta["status_tag"] = service.subject_status(sid).status
        """
        metadata: dict[str, Any] = {}
        start_time = time.monotonic()
        try:
            yield metadata
        except Exception as exc:
            self.log_tool_call(
                tool_name,
                tool_input,
                actor_id=actor_id,
                subject_id=subject_id,
                alert_id=alert_id,
                duration_ms=(time.monotonic() - start_time) * 1000,
                status="failure",
                error_type=type(exc).__name__,
                metadata=metadata,
            )
            raise
        self.log_tool_call(
            tool_name,
            tool_input,
            actor_id=actor_id,
            subject_id=subject_id,
            alert_id=alert_id,
            duration_ms=(time.monotonic() - start_time) * 1000,
            metadata=metadata,
        )

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        subject_id: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a (soft) deletion of a subject's samples."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            actor_id=subject_id,
            subject_id=subject_id,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    def log_alert_change(
        self,
        alert_id: str,
        change: str,
        *,
        actor_id: str,
        tool_name: str = "",
    ) -> str:
        """Log an alert lifecycle action (acknowledge, resolve, dismiss, read)."""
        return self.log_event(AuditEvent(
            action="alert_change",
            tool_name=tool_name,
            actor_id=actor_id,
            subject_id=actor_id,
            alert_id=alert_id,
            metadata={"change": change},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        subject_id: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if subject_id:
            conditions.append("subject_id = ?")
            params.append(subject_id)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        """Count audit events, optionally since a timestamp."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log"
            ).fetchone()
        return row[0]
