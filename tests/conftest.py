"""Shared test fixtures for CareBoard monitoring tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("RANGE_TABLE_PATH", "")
    monkeypatch.setenv("DB_PATH", ":memory:")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from careboard.core.storage.database import MonitoringDatabase  # noqa: E402
from careboard.core.storage.encryption import FieldEncryptor  # noqa: E402
from careboard.core.storage.models import Subject  # noqa: E402
from careboard.core.storage.repository import MonitoringRepository  # noqa: E402
from careboard.domains.monitoring.domain_logic.ranges import load_range_table  # noqa: E402
from careboard.domains.monitoring.domain_logic.service import MonitoringService  # noqa: E402


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def monitoring_db():
    """Create an in-memory MonitoringDatabase for testing."""
    db = MonitoringDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor() -> FieldEncryptor:
    """Create a FieldEncryptor with a test key."""
    return FieldEncryptor(FieldEncryptor.generate_key())


@pytest.fixture
def repository(monitoring_db, field_encryptor) -> MonitoringRepository:
    """Create a MonitoringRepository backed by in-memory SQLite."""
    return MonitoringRepository(monitoring_db, field_encryptor)


@pytest.fixture
def audit_logger(monitoring_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from careboard.core.audit.logger import AuditLogger

    return AuditLogger(monitoring_db)


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def range_table():
    """The packaged default range table."""
    return load_range_table()


@pytest.fixture
def patients(repository) -> list[Subject]:
    """Three patients and one doctor in the directory; returns the patients."""
    people = [
        Subject(id="p1", display_name="Ada Lovelace", email="ada@example.org"),
        Subject(id="p2", display_name="Alan Turing", email="alan@example.org"),
        Subject(id="p3", display_name="Grace Hopper", email="grace@example.org"),
    ]
    for person in people:
        repository.upsert_subject(person)
    repository.upsert_subject(
        Subject(id="doc1", display_name="Dr. House", email="house@example.org", role="doctor")
    )
    return people


@pytest.fixture
def service(repository, range_table, patients) -> MonitoringService:
    """A MonitoringService over the in-memory store with seeded subjects."""
    return MonitoringService(repository, range_table)
