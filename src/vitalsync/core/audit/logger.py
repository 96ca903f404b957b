"""Audit logger: PHI-free record of sync runs, resolutions and deletions.

Every tool invocation, provider sync, conflict resolution and deletion is
written to ``audit_log``. Entries carry counts and categories only:

* ``tool_input_hash`` : SHA-256 of canonical JSON (no raw notes or times).
* ``record_kind``     : ``sleep`` or ``exercise`` when the event concerns one.
* ``provider_source`` : which external provider a sync talked to.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from vitalsync.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON.

    Args:
        data: Tool input to hash. Must be JSON-serializable.

    Returns:
        Hex-encoded SHA-256 digest, or empty string on failure.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'sync_run' | 'conflict_resolved' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    record_kind: str | None = None       # 'sleep' | 'exercise'
    provider_source: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no audit entry is lost on crash.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_sync(
            tool_name="sync_from_provider",
            record_kind="sleep",
            provider_source="health_connect",
            direction="import",
            outcome=outcome,
        )
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID.

        Returns:
            The generated event ID, or an empty string when the write failed.
        """
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
                    record_kind, provider_source, duration_ms, status,
                    error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.record_kind,
                    event.provider_source,
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
        record_kind: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper for logging a tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool input data (hashed, never stored raw).
            record_kind: Session kind the tool acted on, if any.
            duration_ms: Tool execution duration in milliseconds.
            status: 'success' or 'failure'.
            error_type: Exception class name on failure.
            metadata: Additional non-PHI metadata.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            record_kind=record_kind,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_sync(
        self,
        *,
        tool_name: str,
        record_kind: str,
        provider_source: str,
        direction: str,
        outcome: dict[str, Any],
        duration_ms: float | None = None,
    ) -> str:
        """Log one sync operation from its ``SyncOutcome.to_dict()``.

        Args:
            tool_name: Tool that triggered the sync.
            record_kind: 'sleep' or 'exercise'.
            provider_source: Provider the sync talked to.
            direction: 'import', 'export' or 'full'.
            outcome: Serialized outcome (status, counts or error type).
            duration_ms: Wall-clock duration.
        """
        ok = outcome.get("status") == "success"
        metadata: dict[str, Any] = {"direction": direction}
        if ok:
            metadata.update(synced=outcome.get("synced", 0), skipped=outcome.get("skipped", 0))
        return self.log_event(AuditEvent(
            action="sync_run",
            tool_name=tool_name,
            record_kind=record_kind,
            provider_source=provider_source,
            duration_ms=duration_ms,
            status="success" if ok else "failure",
            error_type=None if ok else outcome.get("error_type"),
            metadata=metadata,
        ))

    def log_conflict_resolution(
        self,
        *,
        conflict_id: str,
        resolution: str,
        tool_name: str = "",
    ) -> str:
        """Log that a conflict was resolved (or re-resolved)."""
        return self.log_event(AuditEvent(
            action="conflict_resolved",
            tool_name=tool_name,
            metadata={"conflict_id": conflict_id, "resolution": resolution},
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        record_kind: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a data deletion event.

        Args:
            tool_name: Tool that initiated the delete.
            record_kind: 'sleep', 'exercise' or 'conflict'.
            count: Number of records deleted.
            metadata: Additional context.
        """
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            record_kind=record_kind,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters.

        Args:
            action: Filter by action type.
            tool_name: Filter by tool name.
            since: ISO 8601 timestamp lower bound.
            limit: Maximum events to return.

        Returns:
            List of event dicts, newest first.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None, since: str | None = None) -> int:
        """Count audit events, optionally by action and since a timestamp."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]

    def count_failed_syncs(self, *, since: str | None = None) -> int:
        """Count sync runs that ended in an error outcome."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE action = 'sync_run' "
                "AND status = 'failure' AND timestamp >= ?",
                (since,),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE action = 'sync_run' AND status = 'failure'"
            ).fetchone()
        return row[0]
