"""Tests for the ReconciliationEngine: import, export, full sync, manual entry."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import days_ago, make_exercise, make_sleep
from vitalsync.core.storage.models import (
    ConflictKind,
    ExerciseKind,
    RecordKind,
    SessionSource,
)
from vitalsync.domains.health.connectors import (
    ExternalExerciseRecord,
    ExternalSleepRecord,
    ProviderError,
)
from vitalsync.domains.health.connectors.exercise_types import (
    EXERCISE_TYPE_RUNNING,
    EXERCISE_TYPE_YOGA,
)
from vitalsync.domains.health.connectors.providers import MockHealthProvider
from vitalsync.domains.health.domain_logic.reconciliation import (
    ReconciliationEngine,
    conflict_details,
    is_exact_duplicate,
)
from vitalsync.domains.health.domain_logic.sync_models import (
    ProviderAvailability,
    ProviderStatus,
    SyncError,
    SyncErrorType,
    SyncSuccess,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _sleep_record(start, hours: float = 1.0, **kwargs) -> ExternalSleepRecord:
    return ExternalSleepRecord(start=start, end=start + timedelta(hours=hours), **kwargs)


def _run_record(start, minutes: int = 30, code: int = EXERCISE_TYPE_RUNNING) -> ExternalExerciseRecord:
    return ExternalExerciseRecord(
        start=start, end=start + timedelta(minutes=minutes), exercise_type=code
    )


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class TestImport:
    def test_cross_source_overlap_emits_conflict_and_keeps_record(
        self, reconciliation_engine, mock_provider, health_store, ledger
    ):
        manual = make_sleep(days_ago(3, 22), hours=8)  # 22:00 -> 06:00
        health_store.sleep.insert(manual)
        mock_provider.add_records(
            RecordKind.SLEEP, [_sleep_record(days_ago(2, 5, 30), hours=1)]  # 05:30 -> 06:30
        )

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))

        assert outcome == SyncSuccess(synced=1, skipped=0)
        conflicts = ledger.list_all()
        assert len(conflicts) == 1
        assert conflicts[0].conflict_kind is ConflictKind.SLEEP_OVERLAP
        assert conflicts[0].primary_record_id == manual.id

        imported = health_store.sleep.get_by_source(SessionSource.HEALTH_CONNECT)
        assert len(imported) == 1
        assert conflicts[0].conflicting_record_id == imported[0].id
        assert imported[0].conflicted is True
        # The existing session is never rewritten
        assert health_store.sleep.get_by_id(manual.id).conflicted is False

    def test_exercise_end_to_end(self, reconciliation_engine, mock_provider, health_store, ledger):
        e1 = make_exercise(days_ago(1, 9), 30, kind=ExerciseKind.RUNNING)
        health_store.exercise.insert(e1)
        mock_provider.add_records(RecordKind.EXERCISE, [_run_record(days_ago(1, 9, 15), 30)])

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))

        assert outcome == SyncSuccess(synced=1, skipped=0)
        conflicts = ledger.list_unresolved()
        assert len(conflicts) == 1
        assert conflicts[0].conflict_kind is ConflictKind.EXERCISE_OVERLAP
        assert conflicts[0].primary_record_id == e1.id

        stored = health_store.exercise.get_all()
        assert {s.source for s in stored} == {SessionSource.MANUAL, SessionSource.HEALTH_CONNECT}
        imported = next(s for s in stored if s.source is SessionSource.HEALTH_CONNECT)
        assert imported.exercise_kind is ExerciseKind.RUNNING
        assert imported.duration_minutes == 30

    def test_exact_duplicate_same_source_is_skipped(
        self, reconciliation_engine, mock_provider, health_store, ledger
    ):
        existing = make_sleep(days_ago(2, 23), hours=7, source=SessionSource.HEALTH_CONNECT)
        health_store.sleep.insert(existing)
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(2, 23), hours=7)])

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))

        assert outcome == SyncSuccess(synced=0, skipped=1)
        assert ledger.list_all() == []
        assert health_store.sleep.count() == 1

    def test_importing_twice_is_idempotent(self, reconciliation_engine, mock_provider, health_store):
        mock_provider.add_records(
            RecordKind.SLEEP,
            [_sleep_record(days_ago(4, 23), 7), _sleep_record(days_ago(3, 23), 7)],
        )
        mock_provider.add_records(RecordKind.EXERCISE, [_run_record(days_ago(2, 7))])

        first = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))
        second = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))
        assert first == SyncSuccess(synced=2, skipped=0)
        assert second == SyncSuccess(synced=0, skipped=2)

        _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))
        again = _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))
        assert again == SyncSuccess(synced=0, skipped=1)
        assert health_store.sleep.count() == 2
        assert health_store.exercise.count() == 1

    def test_same_source_overlap_is_not_a_conflict(
        self, reconciliation_engine, mock_provider, health_store, ledger
    ):
        health_store.exercise.insert(
            make_exercise(days_ago(1, 9), 30, source=SessionSource.HEALTH_CONNECT)
        )
        mock_provider.add_records(RecordKind.EXERCISE, [_run_record(days_ago(1, 9, 15))])

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))

        assert outcome == SyncSuccess(synced=1, skipped=0)
        assert ledger.list_all() == []

    def test_near_duplicate_of_manual_entry_is_a_conflict(
        self, reconciliation_engine, mock_provider, health_store, ledger
    ):
        health_store.sleep.insert(make_sleep(days_ago(2, 23), hours=7))
        mock_provider.add_records(
            RecordKind.SLEEP, [_sleep_record(days_ago(2, 23, 1), hours=7)]
        )

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))

        assert outcome == SyncSuccess(synced=1, skipped=0)
        assert len(ledger.list_all()) == 1

    def test_different_exercise_kind_is_not_a_duplicate(
        self, reconciliation_engine, mock_provider, health_store
    ):
        health_store.exercise.insert(
            make_exercise(days_ago(1, 9), 30, source=SessionSource.HEALTH_CONNECT)
        )
        mock_provider.add_records(
            RecordKind.EXERCISE, [_run_record(days_ago(1, 9), 30, code=EXERCISE_TYPE_YOGA)]
        )

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))
        assert outcome == SyncSuccess(synced=1, skipped=0)

    def test_one_conflict_per_overlapping_session(
        self, reconciliation_engine, mock_provider, health_store, ledger
    ):
        health_store.exercise.insert_batch([
            make_exercise(days_ago(1, 9), 20),
            make_exercise(days_ago(1, 9, 25), 20, kind=ExerciseKind.WALKING,
                          source=SessionSource.GARMIN),
        ])
        mock_provider.add_records(RecordKind.EXERCISE, [_run_record(days_ago(1, 9, 10), 30)])

        _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))
        assert len(ledger.list_all()) == 2

    def test_duplicates_within_one_batch_are_skipped(
        self, reconciliation_engine, mock_provider, health_store
    ):
        record = _sleep_record(days_ago(2, 23), 7)
        mock_provider.add_records(RecordKind.SLEEP, [record, record])

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))
        assert outcome == SyncSuccess(synced=1, skipped=1)

    def test_invalid_records_dropped(self, reconciliation_engine, mock_provider, health_store):
        start = days_ago(2, 23)
        mock_provider.add_records(
            RecordKind.SLEEP,
            [ExternalSleepRecord(start=start, end=start), _sleep_record(days_ago(1, 23), 7)],
        )

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))
        assert outcome == SyncSuccess(synced=1, skipped=0)
        assert health_store.sleep.count() == 1

    def test_imported_sleep_gets_default_quality(self, reconciliation_engine, mock_provider, health_store):
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(2, 23), 7, notes="hc")])
        _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))
        stored = health_store.sleep.get_all()[0]
        assert stored.quality_rating == 3
        assert stored.notes == "hc"

    def test_explicit_range(self, reconciliation_engine, mock_provider, health_store):
        mock_provider.add_records(
            RecordKind.EXERCISE,
            [_run_record(days_ago(10, 7)), _run_record(days_ago(2, 7))],
        )

        outcome = _run(reconciliation_engine.sync_from_provider(
            RecordKind.EXERCISE, days_ago(11), days_ago(9)
        ))
        assert outcome == SyncSuccess(synced=1, skipped=0)
        assert health_store.exercise.get_all()[0].start_time == days_ago(10, 7)

    def test_unknown_exercise_code_maps_to_other(
        self, reconciliation_engine, mock_provider, health_store
    ):
        mock_provider.add_records(RecordKind.EXERCISE, [_run_record(days_ago(2, 7), code=9999)])
        _run(reconciliation_engine.sync_from_provider(RecordKind.EXERCISE))
        assert health_store.exercise.get_all()[0].exercise_kind is ExerciseKind.OTHER


class TestImportFailures:
    def test_permission_denied_short_circuits(self, health_store, ledger):
        provider = MockHealthProvider(granted_permissions={"read:sleep"})
        provider.fail_reads = ProviderError("must not be called")
        engine = ReconciliationEngine(health_store, ledger, provider)

        outcome = _run(engine.sync_from_provider(RecordKind.SLEEP))

        assert isinstance(outcome, SyncError)
        assert outcome.message == "permissions not granted"
        assert outcome.error_type is SyncErrorType.PERMISSION_DENIED

    @pytest.mark.parametrize(
        "availability, error_type",
        [
            (ProviderAvailability.UNAVAILABLE, SyncErrorType.PROVIDER_UNAVAILABLE),
            (ProviderAvailability.UPDATE_REQUIRED, SyncErrorType.PROVIDER_UPDATE_REQUIRED),
            (ProviderAvailability.UNKNOWN, SyncErrorType.TRANSPORT_ERROR),
        ],
    )
    def test_provider_not_ready(self, health_store, ledger, availability, error_type):
        provider = MockHealthProvider(availability=availability)
        engine = ReconciliationEngine(health_store, ledger, provider)

        outcome = _run(engine.sync_from_provider(RecordKind.EXERCISE))
        assert outcome.error_type is error_type

    def test_caller_supplied_status_is_used(self, reconciliation_engine, mock_provider):
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(2, 23))])

        outcome = _run(reconciliation_engine.sync_from_provider(
            RecordKind.SLEEP, status=ProviderStatus.DENIED
        ))
        assert outcome.error_type is SyncErrorType.PERMISSION_DENIED

    def test_status_given_as_string(self, reconciliation_engine, mock_provider, health_store):
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(2, 23))])

        denied = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP, status="denied"))
        assert denied.error_type is SyncErrorType.PERMISSION_DENIED
        assert health_store.sleep.count() == 0

        granted = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP, status="granted"))
        assert granted == SyncSuccess(synced=1, skipped=0)

        exported = _run(reconciliation_engine.sync_to_provider(RecordKind.SLEEP, status="granted"))
        assert exported.ok

    def test_read_failure_becomes_error(
        self, reconciliation_engine, mock_provider, health_store, ledger
    ):
        mock_provider.fail_reads = ProviderError("connection reset")

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))

        assert isinstance(outcome, SyncError)
        assert outcome.error_type is SyncErrorType.TRANSPORT_ERROR
        assert "connection reset" in outcome.message
        assert health_store.sleep.count() == 0
        assert ledger.list_all() == []

    def test_store_failure_becomes_error(self, reconciliation_engine, mock_provider, health_db):
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(2, 23))])
        health_db.connection.execute("DROP TABLE sleep_sessions")

        outcome = _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))
        assert outcome.error_type is SyncErrorType.TRANSPORT_ERROR

    def test_cancellation_propagates(self, reconciliation_engine, mock_provider):
        mock_provider.fail_reads = asyncio.CancelledError()
        with pytest.raises(asyncio.CancelledError):
            _run(reconciliation_engine.sync_from_provider(RecordKind.SLEEP))


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class TestExport:
    def test_pushes_sessions_not_from_provider(self, reconciliation_engine, mock_provider, health_store):
        manual = make_sleep(days_ago(3, 22))
        garmin = make_sleep(days_ago(2, 22), source=SessionSource.GARMIN)
        own = make_sleep(days_ago(1, 22), source=SessionSource.HEALTH_CONNECT)
        health_store.sleep.insert_batch([manual, garmin, own])

        outcome = _run(reconciliation_engine.sync_to_provider(RecordKind.SLEEP))

        assert outcome == SyncSuccess(synced=2, skipped=0)
        written_ids = {r.external_id for r in mock_provider.written[RecordKind.SLEEP]}
        assert written_ids == {manual.id, garmin.id}

    def test_exercise_uses_provider_codes(self, reconciliation_engine, mock_provider, health_store):
        health_store.exercise.insert(make_exercise(days_ago(1, 9), 45, kind=ExerciseKind.YOGA))

        _run(reconciliation_engine.sync_to_provider(RecordKind.EXERCISE))

        written = mock_provider.written[RecordKind.EXERCISE]
        assert written[0].exercise_type == EXERCISE_TYPE_YOGA
        assert written[0].end - written[0].start == timedelta(minutes=45)

    def test_empty_export_succeeds(self, reconciliation_engine):
        assert _run(reconciliation_engine.sync_to_provider(RecordKind.SLEEP)) == SyncSuccess(0, 0)

    def test_export_emits_no_conflicts(self, reconciliation_engine, health_store, ledger):
        health_store.sleep.insert_batch([
            make_sleep(days_ago(2, 22)),
            make_sleep(days_ago(2, 23), source=SessionSource.GARMIN),
        ])
        _run(reconciliation_engine.sync_to_provider(RecordKind.SLEEP))
        assert ledger.list_all() == []

    def test_rejected_write(self, reconciliation_engine, mock_provider, health_store):
        health_store.sleep.insert(make_sleep(days_ago(2, 22)))
        mock_provider.reject_writes = True

        outcome = _run(reconciliation_engine.sync_to_provider(RecordKind.SLEEP))
        assert outcome == SyncError("failed to upload", SyncErrorType.UPLOAD_FAILED)

    def test_write_unsupported(self, health_store, ledger):
        provider = MockHealthProvider(supports_write=False)
        engine = ReconciliationEngine(health_store, ledger, provider)
        health_store.sleep.insert(make_sleep(days_ago(2, 22)))

        outcome = _run(engine.sync_to_provider(RecordKind.SLEEP))
        assert outcome.error_type is SyncErrorType.WRITE_UNSUPPORTED

    def test_permission_denied(self, health_store, ledger):
        provider = MockHealthProvider(granted_permissions=set())
        engine = ReconciliationEngine(health_store, ledger, provider)
        outcome = _run(engine.sync_to_provider(RecordKind.EXERCISE))
        assert outcome.error_type is SyncErrorType.PERMISSION_DENIED


# ---------------------------------------------------------------------------
# Full sync
# ---------------------------------------------------------------------------

class TestFullSync:
    def test_sums_import_and_export(self, reconciliation_engine, mock_provider, health_store):
        health_store.sleep.insert_batch([make_sleep(days_ago(5, 22)), make_sleep(days_ago(4, 22))])
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(1, 23), 7)])

        outcome = _run(reconciliation_engine.perform_full_sync(RecordKind.SLEEP))

        # 1 imported, 2 manual sessions exported; the import is not re-uploaded
        assert outcome == SyncSuccess(synced=3, skipped=0)
        assert len(mock_provider.written[RecordKind.SLEEP]) == 2

    def test_import_failure_skips_export(self, reconciliation_engine, mock_provider, health_store):
        health_store.sleep.insert(make_sleep(days_ago(3, 22)))
        mock_provider.fail_reads = ProviderError("down")

        outcome = _run(reconciliation_engine.perform_full_sync(RecordKind.SLEEP))

        assert isinstance(outcome, SyncError)
        assert "import" in outcome.message
        assert mock_provider.written[RecordKind.SLEEP] == []

    def test_export_failure_keeps_import(self, reconciliation_engine, mock_provider, health_store):
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(1, 23), 7)])
        mock_provider.reject_writes = True

        outcome = _run(reconciliation_engine.perform_full_sync(RecordKind.SLEEP))

        assert outcome.error_type is SyncErrorType.UPLOAD_FAILED
        assert health_store.sleep.count() == 1

    def test_sync_all_covers_both_kinds(self, reconciliation_engine, mock_provider):
        mock_provider.add_records(RecordKind.SLEEP, [_sleep_record(days_ago(1, 23), 7)])
        mock_provider.add_records(RecordKind.EXERCISE, [_run_record(days_ago(1, 9))])

        outcomes = _run(reconciliation_engine.sync_all())

        assert list(outcomes) == [RecordKind.SLEEP, RecordKind.EXERCISE]
        assert outcomes[RecordKind.SLEEP] == SyncSuccess(synced=1, skipped=0)
        assert outcomes[RecordKind.EXERCISE] == SyncSuccess(synced=1, skipped=0)

    def test_sync_all_reports_denied_per_kind(self, health_store, ledger):
        engine = ReconciliationEngine(
            health_store, ledger, MockHealthProvider(granted_permissions=set())
        )
        outcomes = _run(engine.sync_all([RecordKind.EXERCISE]))
        assert outcomes[RecordKind.EXERCISE].error_type is SyncErrorType.PERMISSION_DENIED


# ---------------------------------------------------------------------------
# Manual entry
# ---------------------------------------------------------------------------

class TestManualInsert:
    def test_overlapping_exercise_is_saved_with_conflicts(
        self, reconciliation_engine, health_store, ledger
    ):
        existing = make_exercise(days_ago(1, 9), 30, source=SessionSource.GARMIN)
        health_store.exercise.insert(existing)
        new = make_exercise(days_ago(1, 9, 20), 30)

        accepted, conflicts = _run(reconciliation_engine.insert_with_conflict_detection(new))

        assert accepted is True
        assert len(conflicts) == 1
        assert conflicts[0].primary_record_id == existing.id
        assert conflicts[0].conflicting_record_id == new.id
        stored = health_store.exercise.get_by_id(new.id)
        assert stored is not None
        assert stored.conflicted is True
        assert [c.id for c in ledger.list_unresolved()] == [conflicts[0].id]

    def test_same_source_is_compared(self, reconciliation_engine, health_store):
        health_store.sleep.insert(make_sleep(days_ago(2, 22), 8))
        result = _run(reconciliation_engine.insert_with_conflict_detection(
            make_sleep(days_ago(2, 23), 6)
        ))
        assert len(result.conflicts) == 1

    def test_no_overlap(self, reconciliation_engine, health_store):
        health_store.exercise.insert(make_exercise(days_ago(1, 9), 30))
        new = make_exercise(days_ago(1, 11), 30)

        result = _run(reconciliation_engine.insert_with_conflict_detection(new))

        assert result.accepted is True
        assert result.conflicts == []
        assert health_store.exercise.get_by_id(new.id).conflicted is False

    def test_updating_does_not_conflict_with_itself(self, reconciliation_engine, health_store):
        session = make_sleep(days_ago(2, 22), 8)
        health_store.sleep.insert(session)
        session.quality_rating = 5

        result = _run(reconciliation_engine.insert_with_conflict_detection(session))

        assert result.conflicts == []
        assert health_store.sleep.count() == 1
        assert health_store.sleep.get_by_id(session.id).quality_rating == 5

    def test_long_sleep_starting_before_window_edge(self, reconciliation_engine, health_store):
        # Existing bed time 11h before the new one still falls in the 12h window
        health_store.sleep.insert(make_sleep(days_ago(2, 12), 12))
        result = _run(reconciliation_engine.insert_with_conflict_detection(
            make_sleep(days_ago(2, 23), 1)
        ))
        assert len(result.conflicts) == 1

    def test_detection_failure_still_saves(self, reconciliation_engine, health_store, monkeypatch):
        def _broken(*args, **kwargs):
            raise RuntimeError("index corrupted")

        monkeypatch.setattr(health_store.sleep, "get_by_date_range", _broken)
        session = make_sleep(days_ago(2, 22))

        result = _run(reconciliation_engine.insert_with_conflict_detection(session))

        assert result.accepted is True
        assert result.conflicts == []
        assert health_store.sleep.get_by_id(session.id) is not None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_duplicate_requires_same_source(self):
        a = make_sleep(days_ago(2, 22))
        b = make_sleep(days_ago(2, 22), source=SessionSource.GARMIN)
        b.wake_time = a.wake_time
        assert not is_exact_duplicate(a, b)

    def test_duplicate_ignores_kind_mismatch(self):
        assert not is_exact_duplicate(make_sleep(days_ago(2, 22)), make_exercise(days_ago(2, 22)))

    def test_details_name_both_sources(self):
        existing = make_exercise(days_ago(1, 9), 30)
        incoming = make_exercise(days_ago(1, 9, 15), 45, source=SessionSource.HEALTH_CONNECT)
        details = conflict_details(existing, incoming)
        assert details.startswith("Exercise time overlap detected")
        assert "manual running" in details
        assert "health_connect running" in details
        assert "45min" in details and "30min" in details
