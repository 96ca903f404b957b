"""Export-file health provider: reads and writes a YAML session export.

Stands in for a device export (Apple Health, Garmin Connect, a Health
Connect backup) normalized to one YAML document::

    sleep:
      - start: "2026-02-01T22:30:00+00:00"
        end: "2026-02-02T06:45:00+00:00"
        notes: woke once
        id: hc-sleep-001
    exercise:
      - start: "2026-02-02T07:15:00+00:00"
        end: "2026-02-02T07:45:00+00:00"
        exercise_type: 56
        calories_burned: 310

Exercise types use the Health Connect integer codes (see
:mod:`exercise_types`). Writes go to the same file; an entry whose
id matches an exported session is replaced, anything else is appended.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

import yaml

from vitalsync.core.storage.models import RecordKind, SessionSource, ensure_utc
from vitalsync.domains.health.connectors import (
    ExternalExerciseRecord,
    ExternalRecord,
    ExternalSleepRecord,
    ProviderError,
    WriteUnsupportedError,
)
from vitalsync.domains.health.connectors.providers import default_read_range, in_range
from vitalsync.domains.health.domain_logic.sync_models import ProviderAvailability

logger = logging.getLogger(__name__)


class ExportFileParseError(ProviderError):
    """Raised when the export file cannot be read or is malformed."""


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value))
    raise ExportFileParseError(f"Not a timestamp: {value!r}")


def _sleep_from_entry(entry: dict[str, Any]) -> ExternalSleepRecord:
    return ExternalSleepRecord(
        start=_parse_instant(entry["start"]),
        end=_parse_instant(entry["end"]),
        notes=entry.get("notes"),
        external_id=entry.get("id"),
    )


def _exercise_from_entry(entry: dict[str, Any]) -> ExternalExerciseRecord:
    return ExternalExerciseRecord(
        start=_parse_instant(entry["start"]),
        end=_parse_instant(entry["end"]),
        exercise_type=int(entry.get("exercise_type", 0)),
        notes=entry.get("notes"),
        calories_burned=entry.get("calories_burned"),
        external_id=entry.get("id"),
    )


def _entry_from_record(record: ExternalRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "start": ensure_utc(record.start).isoformat(),
        "end": ensure_utc(record.end).isoformat(),
    }
    if isinstance(record, ExternalExerciseRecord):
        entry["exercise_type"] = record.exercise_type
        if record.calories_burned is not None:
            entry["calories_burned"] = record.calories_burned
    if record.notes:
        entry["notes"] = record.notes
    if record.external_id:
        entry["id"] = record.external_id
    return entry


class ExportFileProvider:
    """HealthProvider backed by a YAML export file.

    Usage::

        provider = ExportFileProvider("~/exports/garmin.yaml", SessionSource.GARMIN)
        if await provider.is_available():
            sleep = await provider.read_records(RecordKind.SLEEP)
    """

    def __init__(
        self,
        export_path: str,
        source: SessionSource = SessionSource.HEALTH_CONNECT,
        *,
        write_enabled: bool = True,
    ) -> None:
        self._path = Path(export_path).expanduser() if export_path else None
        self._source = SessionSource(source)
        self._write_enabled = write_enabled

    @property
    def source(self) -> SessionSource:
        return self._source

    @property
    def supports_write(self) -> bool:
        return self._write_enabled

    async def get_availability_status(self) -> ProviderAvailability:
        if self._path is None or not self._path.parent.is_dir():
            return ProviderAvailability.UNAVAILABLE
        return ProviderAvailability.AVAILABLE

    async def is_available(self) -> bool:
        return await self.get_availability_status() is ProviderAvailability.AVAILABLE

    async def has_all_permissions(self) -> bool:
        return not await self.get_missing_permissions()

    async def get_missing_permissions(self) -> set[str]:
        missing: set[str] = set()
        if self._path is None:
            return {"read:sleep", "read:exercise", "write:sleep", "write:exercise"}
        if self._path.exists() and not os.access(self._path, os.R_OK):
            missing |= {"read:sleep", "read:exercise"}
        writable_target = self._path if self._path.exists() else self._path.parent
        if not self._write_enabled or not os.access(writable_target, os.W_OK):
            missing |= {"write:sleep", "write:exercise"}
        return missing

    async def read_records(
        self,
        kind: RecordKind,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ExternalRecord]:
        kind = RecordKind(kind)
        window_start, window_end = default_read_range(start, end)
        document = self._load()
        builder = _sleep_from_entry if kind is RecordKind.SLEEP else _exercise_from_entry

        records: list[ExternalRecord] = []
        for index, entry in enumerate(document.get(kind.value) or []):
            try:
                record = builder(entry)
            except (KeyError, TypeError, ValueError) as exc:
                raise ExportFileParseError(
                    f"Malformed {kind.value} entry #{index} in {self._path}: {exc}"
                ) from exc
            if in_range(record, window_start, window_end):
                records.append(record)
        logger.info(
            "Read %d %s records from export %s", len(records), kind.value, self._path
        )
        return records

    async def write_records(self, kind: RecordKind, records: Sequence[ExternalRecord]) -> bool:
        if not self._write_enabled:
            raise WriteUnsupportedError("Export file is read-only")
        if self._path is None:
            return False
        kind = RecordKind(kind)
        document = self._load()
        entries = list(document.get(kind.value) or [])
        # Entries are keyed by id: a re-exported session replaces its entry
        position = {
            entry.get("id"): index
            for index, entry in enumerate(entries)
            if isinstance(entry, dict) and entry.get("id")
        }
        for record in records:
            entry = _entry_from_record(record)
            index = position.get(record.external_id) if record.external_id else None
            if index is None:
                if record.external_id:
                    position[record.external_id] = len(entries)
                entries.append(entry)
            else:
                entries[index] = entry
        document[kind.value] = entries
        try:
            with self._path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(document, handle, sort_keys=False)
        except OSError:
            logger.exception("Failed to write export file %s", self._path)
            return False
        logger.info("Wrote %d %s records to export %s", len(records), kind.value, self._path)
        return True

    def _load(self) -> dict[str, Any]:
        if self._path is None:
            raise ExportFileParseError("No export path configured")
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            raise ExportFileParseError(f"Failed to read export {self._path}: {exc}") from exc
        if document is None:
            return {}
        if not isinstance(document, dict):
            raise ExportFileParseError(f"Export {self._path} is not a mapping")
        return document
