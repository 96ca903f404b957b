"""Concrete HealthProvider implementations."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

from vitalsync.core.storage.models import RecordKind, SessionSource, ensure_utc
from vitalsync.domains.health.connectors import (
    REQUIRED_PERMISSIONS,
    ExternalRecord,
    WriteUnsupportedError,
)
from vitalsync.domains.health.domain_logic.sync_models import ProviderAvailability

logger = logging.getLogger(__name__)

DEFAULT_READ_WINDOW = timedelta(days=30)


def default_read_range(
    start: datetime | None, end: datetime | None
) -> tuple[datetime, datetime]:
    """Fill in the trailing 30-day window when no explicit range is given."""
    now = datetime.now(timezone.utc)
    if start is None or end is None:
        return now - DEFAULT_READ_WINDOW, now
    return ensure_utc(start), ensure_utc(end)


def in_range(record: ExternalRecord, start: datetime, end: datetime) -> bool:
    return start <= ensure_utc(record.start) < end


class MockHealthProvider:
    """In-memory provider with scriptable availability, permissions and failures.

    Usage::

        provider = MockHealthProvider(source=SessionSource.HEALTH_CONNECT)
        provider.add_records(RecordKind.SLEEP, [ExternalSleepRecord(...)])
        records = await provider.read_records(RecordKind.SLEEP)
    """

    def __init__(
        self,
        source: SessionSource = SessionSource.HEALTH_CONNECT,
        *,
        availability: ProviderAvailability = ProviderAvailability.AVAILABLE,
        granted_permissions: set[str] | None = None,
        supports_write: bool = True,
    ) -> None:
        self._source = SessionSource(source)
        self.availability = availability
        self.granted_permissions = (
            set(REQUIRED_PERMISSIONS) if granted_permissions is None else set(granted_permissions)
        )
        self._supports_write = supports_write
        self.records: dict[RecordKind, list[ExternalRecord]] = {
            RecordKind.SLEEP: [],
            RecordKind.EXERCISE: [],
        }
        self.written: dict[RecordKind, list[ExternalRecord]] = {
            RecordKind.SLEEP: [],
            RecordKind.EXERCISE: [],
        }
        # Failure injection
        self.fail_reads: Exception | None = None
        self.reject_writes = False

    @property
    def source(self) -> SessionSource:
        return self._source

    @property
    def supports_write(self) -> bool:
        return self._supports_write

    def add_records(self, kind: RecordKind, records: Sequence[ExternalRecord]) -> None:
        self.records[RecordKind(kind)].extend(records)

    async def get_availability_status(self) -> ProviderAvailability:
        return self.availability

    async def is_available(self) -> bool:
        return self.availability is ProviderAvailability.AVAILABLE

    async def has_all_permissions(self) -> bool:
        return REQUIRED_PERMISSIONS <= self.granted_permissions

    async def get_missing_permissions(self) -> set[str]:
        return set(REQUIRED_PERMISSIONS - self.granted_permissions)

    async def read_records(
        self,
        kind: RecordKind,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ExternalRecord]:
        if self.fail_reads is not None:
            raise self.fail_reads
        window_start, window_end = default_read_range(start, end)
        return [
            r for r in self.records[RecordKind(kind)]
            if in_range(r, window_start, window_end)
        ]

    async def write_records(self, kind: RecordKind, records: Sequence[ExternalRecord]) -> bool:
        if not self._supports_write:
            raise WriteUnsupportedError("Provider does not accept writes")
        if self.reject_writes:
            logger.warning("Mock provider rejected %d %s records", len(records), kind.value)
            return False
        self.written[RecordKind(kind)].extend(records)
        return True
