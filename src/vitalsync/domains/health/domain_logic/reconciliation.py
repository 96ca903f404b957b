"""Reconciliation engine: merges provider sessions into the local store.

Import classifies every provider record against one snapshot of local
sessions taken at the start of the call:

* exact duplicate (same discriminating fields, same source) is skipped;
* overlap with a session from a different source emits one conflict per
  overlapping session, and the record is still inserted, flagged;
* anything else is inserted.

Export pushes every local session not originating from the provider.
Conflicts are only detected on import and on manual entry.

The engine holds no state between calls. Provider status is taken as an
argument (or checked fresh when omitted) and every operation returns a
:class:`SyncSuccess` or :class:`SyncError` instead of raising.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from vitalsync.core.storage.models import (
    ConflictKind,
    ConflictRecord,
    ExerciseSession,
    RecordKind,
    Session,
    SleepSession,
    ensure_utc,
    record_kind_of,
    utc_now,
)
from vitalsync.core.storage.repository import HealthStore
from vitalsync.domains.health.connectors import HealthProvider, WriteUnsupportedError
from vitalsync.domains.health.connectors.converters import (
    sessions_from_external,
    sessions_to_external,
)
from vitalsync.domains.health.connectors.status import check_provider_status
from vitalsync.domains.health.domain_logic.conflict_ledger import ConflictLedger
from vitalsync.domains.health.domain_logic.overlap import sessions_overlap
from vitalsync.domains.health.domain_logic.sync_models import (
    ManualInsertResult,
    ProviderStatus,
    SyncError,
    SyncErrorType,
    SyncOutcome,
    SyncSuccess,
    error_for_status,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30
DEFAULT_MANUAL_WINDOW_HOURS = 12
# Slack added around the local query window against clock skew
LOCAL_WINDOW_MARGIN = timedelta(days=1)

_OVERLAP_KIND = {
    RecordKind.SLEEP: ConflictKind.SLEEP_OVERLAP,
    RecordKind.EXERCISE: ConflictKind.EXERCISE_OVERLAP,
}


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------

def is_exact_duplicate(existing: Session, incoming: Session) -> bool:
    """Same discriminating fields and same source."""
    if existing.source is not incoming.source:
        return False
    if isinstance(existing, SleepSession) and isinstance(incoming, SleepSession):
        return (
            existing.bed_time == incoming.bed_time
            and existing.wake_time == incoming.wake_time
        )
    if isinstance(existing, ExerciseSession) and isinstance(incoming, ExerciseSession):
        return (
            existing.start_time == incoming.start_time
            and existing.exercise_kind is incoming.exercise_kind
            and existing.duration_minutes == incoming.duration_minutes
        )
    return False


def _fmt(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%d %H:%M UTC")


def _describe(session: Session) -> str:
    if isinstance(session, SleepSession):
        return (
            f"{session.source.value} sleep ({_fmt(session.bed_time)} - "
            f"{_fmt(session.wake_time)}, {session.duration_minutes}min)"
        )
    return (
        f"{session.source.value} {session.exercise_kind.value} exercise "
        f"({_fmt(session.start_time)} for {session.duration_minutes}min)"
    )


def conflict_details(existing: Session, incoming: Session) -> str:
    """Human-readable description, frozen into the conflict at detection time."""
    label = "Sleep" if isinstance(incoming, SleepSession) else "Exercise"
    return (
        f"{label} time overlap detected: new {_describe(incoming)} "
        f"overlaps with existing {_describe(existing)}"
    )


def build_conflict(existing: Session, incoming: Session) -> ConflictRecord:
    return ConflictRecord(
        conflict_kind=_OVERLAP_KIND[record_kind_of(incoming)],
        primary_record_id=existing.id,
        conflicting_record_id=incoming.id,
        details=conflict_details(existing, incoming),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ReconciliationEngine:
    """Two-way sync between the local store and one health provider.

    Usage::

        engine = ReconciliationEngine(store, ledger, provider)
        status = await check_provider_status(provider)
        outcome = await engine.perform_full_sync(RecordKind.SLEEP, status=status)
        if outcome.ok:
            print(outcome.synced, outcome.skipped)
    """

    def __init__(
        self,
        store: HealthStore,
        ledger: ConflictLedger,
        provider: HealthProvider,
        *,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        manual_window_hours: int = DEFAULT_MANUAL_WINDOW_HOURS,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._provider = provider
        self._lookback = timedelta(days=lookback_days)
        self._manual_window = timedelta(hours=manual_window_hours)

    @property
    def provider(self) -> HealthProvider:
        return self._provider

    # -- Import -------------------------------------------------------------

    async def sync_from_provider(
        self,
        kind: RecordKind,
        start: datetime | None = None,
        end: datetime | None = None,
        *,
        status: ProviderStatus | None = None,
    ) -> SyncOutcome:
        """Pull ``kind`` sessions from the provider and merge them locally.

        Args:
            kind: Sleep or exercise.
            start, end: Provider read range; both or neither. Defaults to
                the trailing lookback window.
            status: Provider status from a prior check; checked now if omitted.
        """
        kind = RecordKind(kind)
        blocked = await self._blocking_error(status)
        if blocked is not None:
            logger.warning("Skipping %s import: %s", kind.value, blocked.message)
            return blocked

        source = self._provider.source
        logger.info("Starting %s import from %s", kind.value, source.value)
        try:
            if start is not None and end is not None:
                external = await self._provider.read_records(kind, start, end)
                local_start = ensure_utc(start) - LOCAL_WINDOW_MARGIN
                local_end = ensure_utc(end) + LOCAL_WINDOW_MARGIN
            else:
                external = await self._provider.read_records(kind)
                now = utc_now()
                local_start = now - self._lookback
                local_end = now + LOCAL_WINDOW_MARGIN

            incoming = sessions_from_external(kind, external, source)
            existing = self._repository(kind).get_by_date_range(local_start, local_end)
            accepted, conflicts, skipped = self._classify(incoming, existing)

            self._repository(kind).insert_batch(accepted)
            if conflicts:
                self._ledger.record(conflicts)
        except Exception as exc:
            logger.exception("%s import from %s failed", kind.value, source.value)
            return SyncError(f"{kind.value} import failed: {exc}")

        logger.info(
            "Finished %s import from %s: %d synced, %d skipped, %d conflicts",
            kind.value, source.value, len(accepted), skipped, len(conflicts),
        )
        return SyncSuccess(synced=len(accepted), skipped=skipped)

    def _classify(
        self, incoming: Sequence[Session], existing: Sequence[Session]
    ) -> tuple[list[Session], list[ConflictRecord], int]:
        accepted: list[Session] = []
        conflicts: list[ConflictRecord] = []
        skipped = 0
        for record in incoming:
            # Earlier records of the same batch count as existing for dedup only
            if any(is_exact_duplicate(e, record) for e in (*existing, *accepted)):
                logger.debug("Skipping duplicate %s session %s", record.source.value, record.start)
                skipped += 1
                continue

            found = [
                build_conflict(e, record)
                for e in existing
                if e.source is not record.source and sessions_overlap(e, record)
            ]
            for conflict in found:
                logger.info("Conflict: %s", conflict.details)
            record.conflicted = bool(found)
            conflicts.extend(found)
            accepted.append(record)
        return accepted, conflicts, skipped

    # -- Export -------------------------------------------------------------

    async def sync_to_provider(
        self, kind: RecordKind, *, status: ProviderStatus | None = None
    ) -> SyncOutcome:
        """Push every local ``kind`` session not originating from the provider."""
        kind = RecordKind(kind)
        blocked = await self._blocking_error(status)
        if blocked is not None:
            logger.warning("Skipping %s export: %s", kind.value, blocked.message)
            return blocked

        source = self._provider.source
        logger.info("Starting %s export to %s", kind.value, source.value)
        try:
            local = self._repository(kind).get_excluding_source(source)
            records = sessions_to_external(local, supports_write=self._provider.supports_write)
            written = await self._provider.write_records(kind, records)
        except WriteUnsupportedError as exc:
            logger.error("%s export to %s unsupported: %s", kind.value, source.value, exc)
            return SyncError(str(exc), SyncErrorType.WRITE_UNSUPPORTED)
        except Exception as exc:
            logger.exception("%s export to %s failed", kind.value, source.value)
            return SyncError(f"{kind.value} export failed: {exc}")

        if not written:
            logger.warning("Provider %s refused %d %s records", source.value, len(records), kind.value)
            return SyncError("failed to upload", SyncErrorType.UPLOAD_FAILED)
        logger.info("Finished %s export to %s: %d synced", kind.value, source.value, len(records))
        return SyncSuccess(synced=len(records), skipped=0)

    # -- Full sync ----------------------------------------------------------

    async def perform_full_sync(
        self, kind: RecordKind, *, status: ProviderStatus | None = None
    ) -> SyncOutcome:
        """Import then export. Stops at the first failure; import stays committed."""
        if status is None:
            status = await check_provider_status(self._provider)
        imported = await self.sync_from_provider(kind, status=status)
        if not imported.ok:
            return imported
        exported = await self.sync_to_provider(kind, status=status)
        if not exported.ok:
            return exported
        return imported + exported

    async def sync_all(
        self,
        kinds: Iterable[RecordKind] | None = None,
        *,
        status: ProviderStatus | None = None,
    ) -> dict[RecordKind, SyncOutcome]:
        """Full sync of each kind in turn (sleep, then exercise by default)."""
        if status is None:
            status = await check_provider_status(self._provider)
        outcomes: dict[RecordKind, SyncOutcome] = {}
        for kind in kinds or (RecordKind.SLEEP, RecordKind.EXERCISE):
            kind = RecordKind(kind)
            outcomes[kind] = await self.perform_full_sync(kind, status=status)
        return outcomes

    # -- Manual entry -------------------------------------------------------

    async def insert_with_conflict_detection(self, session: Session) -> ManualInsertResult:
        """Save a user-entered session, recording any overlaps it causes.

        Every source is compared, including the session's own. The session
        is saved even when detection fails.
        """
        repository = self._repository(record_kind_of(session))
        conflicts: list[ConflictRecord] = []
        try:
            nearby = repository.get_by_date_range(
                session.start - self._manual_window,
                session.end + self._manual_window,
            )
            for other in nearby:
                if other.id == session.id:
                    continue
                if sessions_overlap(other, session):
                    conflict = build_conflict(other, session)
                    logger.info("Manual entry conflict: %s", conflict.details)
                    conflicts.append(conflict)
            if conflicts:
                self._ledger.record(conflicts)
        except Exception:
            logger.exception("Conflict detection failed for session %s; saving anyway", session.id)

        session.conflicted = bool(conflicts)
        repository.insert(session)
        return ManualInsertResult(accepted=True, conflicts=conflicts)

    # -- Internals ----------------------------------------------------------

    async def _blocking_error(self, status: ProviderStatus | None) -> SyncError | None:
        if status is None:
            status = await check_provider_status(self._provider)
        return error_for_status(status)

    def _repository(self, kind: RecordKind):
        if kind is RecordKind.SLEEP:
            return self._store.sleep
        return self._store.exercise
