"""Conversion between provider records and local sessions."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from vitalsync.core.storage.models import (
    ExerciseIntensity,
    ExerciseSession,
    RecordKind,
    Session,
    SessionSource,
    SleepSession,
    ensure_utc,
)
from vitalsync.domains.health.connectors import (
    ExternalExerciseRecord,
    ExternalRecord,
    ExternalSleepRecord,
    WriteUnsupportedError,
)
from vitalsync.domains.health.connectors.exercise_types import (
    kind_from_provider_code,
    provider_code_for_kind,
)

logger = logging.getLogger(__name__)

# Providers carry no sleep rating or workout intensity
DEFAULT_SLEEP_QUALITY = 3
DEFAULT_INTENSITY = ExerciseIntensity.MODERATE


def sleep_from_external(record: ExternalSleepRecord, source: SessionSource) -> SleepSession:
    return SleepSession(
        bed_time=record.start,
        wake_time=record.end,
        quality_rating=DEFAULT_SLEEP_QUALITY,
        notes=record.notes,
        source=source,
    )


def exercise_from_external(record: ExternalExerciseRecord, source: SessionSource) -> ExerciseSession:
    start = ensure_utc(record.start)
    duration = int((ensure_utc(record.end) - start).total_seconds() // 60)
    return ExerciseSession(
        exercise_kind=kind_from_provider_code(record.exercise_type),
        start_time=start,
        duration_minutes=duration,
        intensity=DEFAULT_INTENSITY,
        calories_burned=record.calories_burned,
        notes=record.notes,
        source=source,
    )


def sessions_from_external(
    kind: RecordKind,
    records: Iterable[ExternalRecord],
    source: SessionSource,
) -> list[Session]:
    """Convert a provider batch, dropping records that cannot form a valid session."""
    sessions: list[Session] = []
    for record in records:
        try:
            if kind is RecordKind.SLEEP:
                sessions.append(sleep_from_external(record, source))
            else:
                sessions.append(exercise_from_external(record, source))
        except ValueError as exc:
            logger.warning(
                "Dropping invalid %s record from %s (external_id=%s): %s",
                kind.value, source.value, record.external_id, exc,
            )
    return sessions


def session_to_external(session: Session, *, supports_write: bool = True) -> ExternalRecord:
    """Build the provider-side record for a local session.

    Raises:
        WriteUnsupportedError: When the provider cannot accept records.
    """
    if not supports_write:
        raise WriteUnsupportedError(
            "Provider does not support writing records from this client"
        )
    if isinstance(session, SleepSession):
        return ExternalSleepRecord(
            start=session.bed_time,
            end=session.wake_time,
            notes=session.notes,
            external_id=session.id,
        )
    return ExternalExerciseRecord(
        start=session.start_time,
        end=session.end_time,
        exercise_type=provider_code_for_kind(session.exercise_kind),
        notes=session.notes,
        calories_burned=session.calories_burned,
        external_id=session.id,
    )


def sessions_to_external(
    sessions: Sequence[Session], *, supports_write: bool = True
) -> list[ExternalRecord]:
    return [session_to_external(s, supports_write=supports_write) for s in sessions]
