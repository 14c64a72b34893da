"""SQLite database management for the CareBoard sample and alert stores.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- Patients and clinical staff known to the engine
CREATE TABLE IF NOT EXISTS subjects (
    id           TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    email        TEXT,
    role         TEXT NOT NULL DEFAULT 'patient',
    is_active    INTEGER NOT NULL DEFAULT 1,
    created_at   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Append-only metric samples; soft-deleted via is_active
CREATE TABLE IF NOT EXISTS metric_samples (
    id          TEXT PRIMARY KEY,
    subject_id  TEXT NOT NULL REFERENCES subjects(id),
    metric_type TEXT NOT NULL,
    value       REAL NOT NULL,
    unit        TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    source      TEXT NOT NULL DEFAULT 'manual',
    device_id   TEXT,
    notes_enc   TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Alert lifecycle state; never hard-deleted
CREATE TABLE IF NOT EXISTS alerts (
    id                TEXT PRIMARY KEY,
    subject_id        TEXT NOT NULL REFERENCES subjects(id),
    alert_type        TEXT NOT NULL,
    title             TEXT NOT NULL,
    message           TEXT NOT NULL,
    severity          TEXT NOT NULL DEFAULT 'medium',
    status            TEXT NOT NULL DEFAULT 'active',
    is_read           INTEGER NOT NULL DEFAULT 0,
    cause_key         TEXT NOT NULL,
    triggered_at      TEXT NOT NULL,
    acknowledged_at   TEXT,
    resolved_at       TEXT,
    related_metric_id TEXT REFERENCES metric_samples(id),
    metadata_enc      TEXT,
    created_at        TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Who did what to an alert
CREATE TABLE IF NOT EXISTS alert_actions (
    id           TEXT PRIMARY KEY,
    alert_id     TEXT NOT NULL REFERENCES alerts(id),
    action       TEXT NOT NULL,
    performed_by TEXT NOT NULL,
    performed_at TEXT NOT NULL,
    notes        TEXT
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Latest-value and range queries
CREATE INDEX IF NOT EXISTS idx_samples_subject_metric_ts ON metric_samples(subject_id, metric_type, timestamp);
CREATE INDEX IF NOT EXISTS idx_samples_subject_ts        ON metric_samples(subject_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_alerts_subject_status_ts  ON alerts(subject_id, status, triggered_at);
CREATE INDEX IF NOT EXISTS idx_alerts_subject_read_ts    ON alerts(subject_id, is_read, triggered_at);
CREATE INDEX IF NOT EXISTS idx_alerts_cause              ON alerts(subject_id, cause_key);
CREATE INDEX IF NOT EXISTS idx_alert_actions_alert       ON alert_actions(alert_id);
CREATE INDEX IF NOT EXISTS idx_subjects_role             ON subjects(role);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table (access logging for patient data)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    actor_id        TEXT,
    subject_id      TEXT,
    alert_id        TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_tool      ON audit_log(tool_name);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class QueryInterruptedError(DatabaseError):
    """Raised when a statement is aborted because its deadline passed."""


class MonitoringDatabase:
    """SQLite database manager for the CareBoard monitoring store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing and for servers started without
    an encryption key.

    Usage::

        db = MonitoringDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file))
        else:
            self._conn = sqlite3.connect(":memory:")

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Monitoring database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        # V1: core tables (CREATE IF NOT EXISTS is idempotent)
        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

        # V2: audit log
        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: audit_log table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    @contextmanager
    def deadline(self, expires_at: float, check_every: int = 1000) -> Iterator[sqlite3.Connection]:
        """Abort any statement still running once ``time.monotonic()`` passes ``expires_at``.

        SQLite calls the progress handler every ``check_every`` VM steps, so a
        long scan stops shortly after the deadline instead of running to
        completion. The handler is removed on exit, including on
        cancellation.

        Raises:
            QueryInterruptedError: If a statement was aborted by the deadline.
        """
        conn = self.connection
        conn.set_progress_handler(lambda: int(time.monotonic() > expires_at), check_every)
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            if time.monotonic() > expires_at:
                raise QueryInterruptedError("Query interrupted: deadline exceeded") from exc
            raise
        finally:
            conn.set_progress_handler(None, check_every)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Monitoring database closed")

    def __enter__(self) -> MonitoringDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
