"""SQLite database management for the vitalsync session store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS sleep_sessions (
    id             TEXT PRIMARY KEY,
    bed_time       TEXT NOT NULL,
    wake_time      TEXT NOT NULL,
    quality_rating INTEGER NOT NULL,
    notes_enc      TEXT,
    source         TEXT NOT NULL,
    created_at     TEXT NOT NULL,
    conflicted     INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS exercise_sessions (
    id               TEXT PRIMARY KEY,
    exercise_kind    TEXT NOT NULL,
    start_time       TEXT NOT NULL,
    duration_minutes INTEGER NOT NULL,
    intensity        TEXT NOT NULL,
    calories_burned  INTEGER,
    notes_enc        TEXT,
    source           TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    conflicted       INTEGER NOT NULL DEFAULT 0
);

-- Kind-agnostic: primary/conflicting ids may point into either session table
CREATE TABLE IF NOT EXISTS conflict_records (
    id                    TEXT PRIMARY KEY,
    conflict_kind         TEXT NOT NULL,
    primary_record_id     TEXT NOT NULL,
    conflicting_record_id TEXT NOT NULL,
    details               TEXT NOT NULL,
    resolved              INTEGER NOT NULL DEFAULT 0,
    resolution            TEXT,
    created_at            TEXT NOT NULL,
    resolved_at           TEXT
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_sleep_bed_time        ON sleep_sessions(bed_time);
CREATE INDEX IF NOT EXISTS idx_sleep_source          ON sleep_sessions(source);
CREATE INDEX IF NOT EXISTS idx_sleep_conflicted      ON sleep_sessions(conflicted);
CREATE INDEX IF NOT EXISTS idx_exercise_start_time   ON exercise_sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_exercise_source       ON exercise_sessions(source);
CREATE INDEX IF NOT EXISTS idx_exercise_conflicted   ON exercise_sessions(conflicted);
CREATE INDEX IF NOT EXISTS idx_conflicts_resolved    ON conflict_records(resolved);
CREATE INDEX IF NOT EXISTS idx_conflicts_created_at  ON conflict_records(created_at);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table (sync runs, resolutions, deletions)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    record_kind     TEXT,
    provider_source TEXT,
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


class HealthDatabase:
    """SQLite database manager for the session store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = HealthDatabase(":memory:")
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
        logger.info("Session database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

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

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Session database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
