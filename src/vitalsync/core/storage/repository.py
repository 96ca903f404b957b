"""Session store repositories: CRUD and range queries over SQLite.

Each repository mediates between the domain dataclasses and one table,
using FieldEncryptor for the free-text ``notes`` column. Reads always return
one-shot snapshots; callers that need change notification poll (see
``ConflictLedger.watch_unresolved``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from vitalsync.core.storage.database import HealthDatabase
from vitalsync.core.storage.encryption import FieldEncryptor
from vitalsync.core.storage.models import (
    ConflictRecord,
    ConflictResolution,
    ExerciseKind,
    ExerciseSession,
    SessionSource,
    SleepSession,
    ensure_utc,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO 8601 so that string order equals time order."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


class _TableRepository:
    """Shared plumbing for the three tables."""

    _table: str = ""

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    def delete_by_id(self, record_id: str) -> bool:
        """Delete a row by id.

        Returns:
            True if a row was found and deleted, False otherwise.
        """
        conn = self._db.connection
        cursor = conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (record_id,))
        conn.commit()
        if cursor.rowcount:
            logger.info("Deleted %s row %s", self._table, record_id)
        return cursor.rowcount > 0

    def count(self) -> int:
        row = self._db.connection.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()
        return row[0]

    def _write_many(self, sql: str, rows: list[tuple[Any, ...]]) -> None:
        conn = self._db.connection
        try:
            with conn:
                conn.executemany(sql, rows)
        except Exception as exc:
            raise RepositoryError(f"Batch write to {self._table} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------

_SLEEP_UPSERT = """INSERT OR REPLACE INTO sleep_sessions
    (id, bed_time, wake_time, quality_rating, notes_enc, source, created_at, conflicted)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)"""


class SleepSessionRepository(_TableRepository):
    """CRUD repository for sleep sessions.

    Usage::

        repo = SleepSessionRepository(db, encryptor)
        repo.insert(SleepSession(bed_time=..., wake_time=...))
        last_week = repo.get_by_date_range(week_ago, now)
    """

    _table = "sleep_sessions"

    def insert(self, session: SleepSession) -> str:
        """Insert (or replace by id) a single sleep session and return its id."""
        self._write_many(_SLEEP_UPSERT, [self._to_row(session)])
        logger.debug("Saved sleep session %s (source=%s)", session.id, session.source.value)
        return session.id

    def insert_batch(self, sessions: Iterable[SleepSession]) -> int:
        """Insert many sessions in one transaction. Returns the row count."""
        rows = [self._to_row(s) for s in sessions]
        if rows:
            self._write_many(_SLEEP_UPSERT, rows)
        return len(rows)

    def update(self, session: SleepSession) -> bool:
        """Overwrite an existing session. Returns False if the id is unknown."""
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE sleep_sessions SET bed_time = ?, wake_time = ?, quality_rating = ?,
                   notes_enc = ?, source = ?, created_at = ?, conflicted = ?
               WHERE id = ?""",
            self._to_row(session)[1:] + (session.id,),
        )
        conn.commit()
        return cursor.rowcount > 0

    def delete(self, session: SleepSession) -> bool:
        return self.delete_by_id(session.id)

    def get_by_id(self, session_id: str) -> SleepSession | None:
        row = self._db.connection.execute(
            "SELECT * FROM sleep_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._from_row(row) if row is not None else None

    def get_all(self) -> list[SleepSession]:
        """All sleep sessions, most recent bed time first."""
        rows = self._db.connection.execute(
            "SELECT * FROM sleep_sessions ORDER BY bed_time DESC"
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_by_date_range(self, start: datetime, end: datetime) -> list[SleepSession]:
        """Sessions whose bed time falls within ``[start, end]`` (inclusive)."""
        rows = self._db.connection.execute(
            """SELECT * FROM sleep_sessions WHERE bed_time BETWEEN ? AND ?
               ORDER BY bed_time DESC""",
            (to_iso(start), to_iso(end)),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_flagged(self) -> list[SleepSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM sleep_sessions WHERE conflicted = 1 ORDER BY bed_time DESC"
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_by_source(self, source: SessionSource) -> list[SleepSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM sleep_sessions WHERE source = ? ORDER BY bed_time DESC",
            (SessionSource(source).value,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_excluding_source(self, source: SessionSource) -> list[SleepSession]:
        """Every session not originating from ``source``."""
        rows = self._db.connection.execute(
            "SELECT * FROM sleep_sessions WHERE source != ? ORDER BY bed_time DESC",
            (SessionSource(source).value,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def _to_row(self, s: SleepSession) -> tuple[Any, ...]:
        return (
            s.id,
            to_iso(s.bed_time),
            to_iso(s.wake_time),
            s.quality_rating,
            self._enc.encrypt(s.notes),
            s.source.value,
            to_iso(s.created_at),
            int(s.conflicted),
        )

    def _from_row(self, row: Any) -> SleepSession:
        return SleepSession(
            id=row["id"],
            bed_time=from_iso(row["bed_time"]),
            wake_time=from_iso(row["wake_time"]),
            quality_rating=row["quality_rating"],
            notes=self._enc.decrypt(row["notes_enc"]),
            source=SessionSource(row["source"]),
            created_at=from_iso(row["created_at"]),
            conflicted=bool(row["conflicted"]),
        )


# ---------------------------------------------------------------------------
# Exercise
# ---------------------------------------------------------------------------

_EXERCISE_UPSERT = """INSERT OR REPLACE INTO exercise_sessions
    (id, exercise_kind, start_time, duration_minutes, intensity, calories_burned,
     notes_enc, source, created_at, conflicted)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""


class ExerciseSessionRepository(_TableRepository):
    """CRUD repository for exercise sessions."""

    _table = "exercise_sessions"

    def insert(self, session: ExerciseSession) -> str:
        self._write_many(_EXERCISE_UPSERT, [self._to_row(session)])
        logger.debug(
            "Saved exercise session %s (%s, source=%s)",
            session.id, session.exercise_kind.value, session.source.value,
        )
        return session.id

    def insert_batch(self, sessions: Iterable[ExerciseSession]) -> int:
        rows = [self._to_row(s) for s in sessions]
        if rows:
            self._write_many(_EXERCISE_UPSERT, rows)
        return len(rows)

    def update(self, session: ExerciseSession) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE exercise_sessions SET exercise_kind = ?, start_time = ?,
                   duration_minutes = ?, intensity = ?, calories_burned = ?, notes_enc = ?,
                   source = ?, created_at = ?, conflicted = ?
               WHERE id = ?""",
            self._to_row(session)[1:] + (session.id,),
        )
        conn.commit()
        return cursor.rowcount > 0

    def delete(self, session: ExerciseSession) -> bool:
        return self.delete_by_id(session.id)

    def get_by_id(self, session_id: str) -> ExerciseSession | None:
        row = self._db.connection.execute(
            "SELECT * FROM exercise_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._from_row(row) if row is not None else None

    def get_all(self) -> list[ExerciseSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM exercise_sessions ORDER BY start_time DESC"
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_by_date_range(self, start: datetime, end: datetime) -> list[ExerciseSession]:
        """Sessions whose start time falls within ``[start, end]`` (inclusive)."""
        rows = self._db.connection.execute(
            """SELECT * FROM exercise_sessions WHERE start_time BETWEEN ? AND ?
               ORDER BY start_time DESC""",
            (to_iso(start), to_iso(end)),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_flagged(self) -> list[ExerciseSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM exercise_sessions WHERE conflicted = 1 ORDER BY start_time DESC"
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_by_source(self, source: SessionSource) -> list[ExerciseSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM exercise_sessions WHERE source = ? ORDER BY start_time DESC",
            (SessionSource(source).value,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_excluding_source(self, source: SessionSource) -> list[ExerciseSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM exercise_sessions WHERE source != ? ORDER BY start_time DESC",
            (SessionSource(source).value,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_by_kind(self, kind: ExerciseKind) -> list[ExerciseSession]:
        rows = self._db.connection.execute(
            "SELECT * FROM exercise_sessions WHERE exercise_kind = ? ORDER BY start_time DESC",
            (ExerciseKind(kind).value,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def _to_row(self, s: ExerciseSession) -> tuple[Any, ...]:
        return (
            s.id,
            s.exercise_kind.value,
            to_iso(s.start_time),
            s.duration_minutes,
            s.intensity.value,
            s.calories_burned,
            self._enc.encrypt(s.notes),
            s.source.value,
            to_iso(s.created_at),
            int(s.conflicted),
        )

    def _from_row(self, row: Any) -> ExerciseSession:
        return ExerciseSession(
            id=row["id"],
            exercise_kind=row["exercise_kind"],
            start_time=from_iso(row["start_time"]),
            duration_minutes=row["duration_minutes"],
            intensity=row["intensity"],
            calories_burned=row["calories_burned"],
            notes=self._enc.decrypt(row["notes_enc"]),
            source=row["source"],
            created_at=from_iso(row["created_at"]),
            conflicted=bool(row["conflicted"]),
        )


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

_CONFLICT_UPSERT = """INSERT OR REPLACE INTO conflict_records
    (id, conflict_kind, primary_record_id, conflicting_record_id, details,
     resolved, resolution, created_at, resolved_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"""


class ConflictRepository(_TableRepository):
    """CRUD repository for conflict records, newest first."""

    _table = "conflict_records"

    def insert(self, record: ConflictRecord) -> str:
        self._write_many(_CONFLICT_UPSERT, [self._to_row(record)])
        return record.id

    def insert_batch(self, records: Iterable[ConflictRecord]) -> int:
        rows = [self._to_row(r) for r in records]
        if rows:
            self._write_many(_CONFLICT_UPSERT, rows)
        return len(rows)

    def update(self, record: ConflictRecord) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE conflict_records SET conflict_kind = ?, primary_record_id = ?,
                   conflicting_record_id = ?, details = ?, resolved = ?, resolution = ?,
                   created_at = ?, resolved_at = ?
               WHERE id = ?""",
            self._to_row(record)[1:] + (record.id,),
        )
        conn.commit()
        return cursor.rowcount > 0

    def delete(self, record: ConflictRecord) -> bool:
        return self.delete_by_id(record.id)

    def get_by_id(self, record_id: str) -> ConflictRecord | None:
        row = self._db.connection.execute(
            "SELECT * FROM conflict_records WHERE id = ?", (record_id,)
        ).fetchone()
        return self._from_row(row) if row is not None else None

    def get_all(self) -> list[ConflictRecord]:
        rows = self._db.connection.execute(
            "SELECT * FROM conflict_records ORDER BY created_at DESC"
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_unresolved(self) -> list[ConflictRecord]:
        rows = self._db.connection.execute(
            "SELECT * FROM conflict_records WHERE resolved = 0 ORDER BY created_at DESC"
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def count_unresolved(self) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM conflict_records WHERE resolved = 0"
        ).fetchone()
        return row[0]

    def resolve(
        self, record_id: str, resolution: ConflictResolution, resolved_at: datetime
    ) -> bool:
        """Mark a conflict resolved. A second call overwrites the first.

        Returns:
            True if a conflict with that id exists.
        """
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE conflict_records SET resolved = 1, resolution = ?, resolved_at = ?
               WHERE id = ?""",
            (ConflictResolution(resolution).value, to_iso(resolved_at), record_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def _to_row(self, r: ConflictRecord) -> tuple[Any, ...]:
        return (
            r.id,
            r.conflict_kind.value,
            r.primary_record_id,
            r.conflicting_record_id,
            r.details,
            int(r.resolved),
            r.resolution.value if r.resolution is not None else None,
            to_iso(r.created_at),
            to_iso(r.resolved_at) if r.resolved_at is not None else None,
        )

    def _from_row(self, row: Any) -> ConflictRecord:
        return ConflictRecord(
            id=row["id"],
            conflict_kind=row["conflict_kind"],
            primary_record_id=row["primary_record_id"],
            conflicting_record_id=row["conflicting_record_id"],
            details=row["details"],
            resolved=bool(row["resolved"]),
            resolution=row["resolution"],
            created_at=from_iso(row["created_at"]),
            resolved_at=from_iso(row["resolved_at"]),
        )


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------

@dataclass
class HealthStore:
    """The three repositories sharing one database and encryptor."""

    sleep: SleepSessionRepository
    exercise: ExerciseSessionRepository
    conflicts: ConflictRepository

    @classmethod
    def open(cls, database: HealthDatabase, encryptor: FieldEncryptor) -> HealthStore:
        return cls(
            sleep=SleepSessionRepository(database, encryptor),
            exercise=ExerciseSessionRepository(database, encryptor),
            conflicts=ConflictRepository(database, encryptor),
        )
