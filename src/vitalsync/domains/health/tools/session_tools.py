"""MCP tools for manual sleep and exercise entry and browsing.

Entries go through the reconciliation engine's conflict check: a session
that overlaps anything already stored is saved anyway and the overlap is
recorded in the conflict ledger for the user to review.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from vitalsync.core.storage.models import (
    ExerciseKind,
    ExerciseSession,
    RecordKind,
    Session,
    SleepSession,
    ensure_utc,
    utc_now,
)

if TYPE_CHECKING:
    from vitalsync.core.audit.logger import AuditLogger
    from vitalsync.core.storage.repository import HealthStore
    from vitalsync.domains.health.domain_logic.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    return ensure_utc(datetime.fromisoformat(value))


def serialize_session(session: Session) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": session.id,
        "source": session.source.value,
        "start": session.start.isoformat(),
        "end": session.end.isoformat(),
        "duration_minutes": session.duration_minutes,
        "conflicted": session.conflicted,
    }
    if isinstance(session, SleepSession):
        data["quality_rating"] = session.quality_rating
    else:
        data.update(
            exercise_kind=session.exercise_kind.value,
            intensity=session.intensity.value,
            calories_burned=session.calories_burned,
        )
    if session.notes:
        data["notes"] = session.notes
    return data


def register_session_tools(
    mcp: FastMCP,
    store: HealthStore,
    engine: ReconciliationEngine,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register manual entry and session listing tools on the MCP server."""

    async def _save(tool_name: str, session: Session) -> str:
        start_time = time.monotonic()
        result = await engine.insert_with_conflict_detection(session)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        kind = RecordKind.SLEEP if isinstance(session, SleepSession) else RecordKind.EXERCISE
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name,
                {"session_id": session.id},
                record_kind=kind.value,
                duration_ms=elapsed_ms,
                metadata={"conflicts": len(result.conflicts)},
            )

        message = f"{kind.value.capitalize()} session saved"
        if result.conflicts:
            message += (
                f" with {len(result.conflicts)} conflict(s) detected. "
                "Review them with list_conflicts."
            )
        return json.dumps({
            "status": "saved",
            "session_id": session.id,
            "conflicts": len(result.conflicts),
            "conflict_ids": [c.id for c in result.conflicts],
            "message": message,
        })

    @mcp.tool
    async def log_sleep(
        ctx: Context,
        bed_time: str,
        wake_time: str,
        quality_rating: int = 3,
        notes: str = "",
    ) -> str:
        """Record a night of sleep.

        Args:
            bed_time: When you went to bed (ISO 8601, e.g. '2026-02-01T22:30:00+00:00').
            wake_time: When you woke up (ISO 8601). Must be after bed_time.
            quality_rating: How well you slept, 1 (poor) to 5 (great).
            notes: Optional notes.
        """
        try:
            session = SleepSession(
                bed_time=parse_instant(bed_time),
                wake_time=parse_instant(wake_time),
                quality_rating=quality_rating,
                notes=notes or None,
            )
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        return await _save("log_sleep", session)

    @mcp.tool
    async def log_exercise(
        ctx: Context,
        exercise_kind: str,
        start_time: str,
        duration_minutes: int,
        intensity: str = "moderate",
        calories_burned: int | None = None,
        notes: str = "",
    ) -> str:
        """Record a workout.

        Args:
            exercise_kind: One of walking, running, cycling, swimming,
                strength_training, yoga, basketball, soccer, other.
            start_time: When the workout started (ISO 8601).
            duration_minutes: Length of the workout in minutes.
            intensity: low, moderate, high or very_high.
            calories_burned: Optional calorie estimate.
            notes: Optional notes.
        """
        try:
            session = ExerciseSession(
                exercise_kind=exercise_kind,
                start_time=parse_instant(start_time),
                duration_minutes=duration_minutes,
                intensity=intensity,
                calories_burned=calories_burned,
                notes=notes or None,
            )
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        return await _save("log_exercise", session)

    @mcp.tool
    async def list_sleep_sessions(
        ctx: Context,
        days: int = 30,
        flagged_only: bool = False,
        limit: int = 20,
    ) -> str:
        """List recent sleep sessions from every source, newest first.

        Args:
            days: How many days back to look.
            flagged_only: Only sessions involved in a detected overlap.
            limit: Maximum number of sessions to return.
        """
        if flagged_only:
            sessions = store.sleep.get_flagged()
        else:
            now = utc_now()
            sessions = store.sleep.get_by_date_range(now - timedelta(days=days), now)
        sessions = sessions[:limit]
        return json.dumps({
            "status": "ok",
            "count": len(sessions),
            "sessions": [serialize_session(s) for s in sessions],
        }, indent=2)

    @mcp.tool
    async def list_exercise_sessions(
        ctx: Context,
        days: int = 30,
        exercise_kind: str = "",
        flagged_only: bool = False,
        limit: int = 20,
    ) -> str:
        """List recent exercise sessions from every source, newest first.

        Args:
            days: How many days back to look.
            exercise_kind: Optional filter, e.g. 'running'.
            flagged_only: Only sessions involved in a detected overlap.
            limit: Maximum number of sessions to return.
        """
        if exercise_kind:
            try:
                kind = ExerciseKind(exercise_kind)
            except ValueError:
                return json.dumps({
                    "status": "error",
                    "message": f"Unknown exercise kind: {exercise_kind}",
                })
            sessions = store.exercise.get_by_kind(kind)
        elif flagged_only:
            sessions = store.exercise.get_flagged()
        else:
            now = utc_now()
            sessions = store.exercise.get_by_date_range(now - timedelta(days=days), now)
        sessions = sessions[:limit]
        return json.dumps({
            "status": "ok",
            "count": len(sessions),
            "sessions": [serialize_session(s) for s in sessions],
        }, indent=2)

    @mcp.tool
    async def delete_session(
        ctx: Context,
        kind: str,
        session_id: str,
    ) -> str:
        """Permanently delete a sleep or exercise session.

        Conflicts that reference the session are left in place.

        Args:
            kind: 'sleep' or 'exercise'.
            session_id: The session's id.
        """
        try:
            record_kind = RecordKind(kind)
        except ValueError:
            return json.dumps({"status": "error", "message": f"Unknown kind: {kind}"})

        repository = store.sleep if record_kind is RecordKind.SLEEP else store.exercise
        deleted = repository.delete_by_id(session_id)
        if not deleted:
            return json.dumps({
                "status": "not_found",
                "session_id": session_id,
                "message": f"No {record_kind.value} session with ID {session_id}",
            })

        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_session",
                record_kind=record_kind.value,
                count=1,
            )
        return json.dumps({"status": "deleted", "session_id": session_id})
