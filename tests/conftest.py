"""Shared test fixtures for vitalsync tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("PROVIDER_TYPE", "mock")
    monkeypatch.setenv("DB_PATH", ":memory:")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from vitalsync.core.storage.models import (  # noqa: E402
    ExerciseKind,
    ExerciseSession,
    SessionSource,
    SleepSession,
)


# ---------------------------------------------------------------------------
# Time and session helpers
# ---------------------------------------------------------------------------

def days_ago(days: int, hour: int = 0, minute: int = 0) -> datetime:
    """A UTC instant ``days`` days back at the given wall-clock time."""
    midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=days) + timedelta(hours=hour, minutes=minute)


def make_sleep(
    bed_time: datetime,
    hours: float = 8,
    *,
    source: SessionSource = SessionSource.MANUAL,
    quality_rating: int = 3,
    notes: str | None = None,
) -> SleepSession:
    return SleepSession(
        bed_time=bed_time,
        wake_time=bed_time + timedelta(hours=hours),
        quality_rating=quality_rating,
        notes=notes,
        source=source,
    )


def make_exercise(
    start_time: datetime,
    minutes: int = 30,
    *,
    kind: ExerciseKind = ExerciseKind.RUNNING,
    source: SessionSource = SessionSource.MANUAL,
    calories_burned: int | None = None,
) -> ExerciseSession:
    return ExerciseSession(
        exercise_kind=kind,
        start_time=start_time,
        duration_minutes=minutes,
        calories_burned=calories_burned,
        source=source,
    )


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from vitalsync.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from vitalsync.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def health_store(health_db, field_encryptor):
    """The three session/conflict repositories backed by in-memory SQLite."""
    from vitalsync.core.storage.repository import HealthStore

    return HealthStore.open(health_db, field_encryptor)


@pytest.fixture
def ledger(health_store):
    from vitalsync.domains.health.domain_logic.conflict_ledger import ConflictLedger

    return ConflictLedger(health_store.conflicts)


@pytest.fixture
def mock_provider():
    """Health Connect mock with every permission granted."""
    from vitalsync.domains.health.connectors.providers import MockHealthProvider

    return MockHealthProvider(source=SessionSource.HEALTH_CONNECT)


@pytest.fixture
def reconciliation_engine(health_store, ledger, mock_provider):
    from vitalsync.domains.health.domain_logic.reconciliation import ReconciliationEngine

    return ReconciliationEngine(health_store, ledger, mock_provider)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from vitalsync.core.audit.logger import AuditLogger

    return AuditLogger(health_db)
