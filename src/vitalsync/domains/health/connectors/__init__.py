"""Health provider connectors: abstraction over external session sources."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence, Union, runtime_checkable

from vitalsync.core.storage.models import RecordKind, SessionSource
from vitalsync.domains.health.domain_logic.sync_models import ProviderAvailability

# Permissions every provider must grant before a sync may run
REQUIRED_PERMISSIONS: frozenset[str] = frozenset({
    "read:sleep",
    "write:sleep",
    "read:exercise",
    "write:exercise",
})

_PERMISSION_DESCRIPTIONS = {
    "read:sleep": "Read your sleep data from the health provider",
    "write:sleep": "Save your sleep data to the health provider",
    "read:exercise": "Read your exercise data from the health provider",
    "write:exercise": "Save your exercise data to the health provider",
}


def permission_descriptions() -> list[tuple[str, str]]:
    """Required permissions paired with a user-facing description."""
    return [(p, _PERMISSION_DESCRIPTIONS[p]) for p in sorted(REQUIRED_PERMISSIONS)]


class ProviderError(Exception):
    """Raised when a provider call fails unexpectedly."""


class WriteUnsupportedError(ProviderError):
    """The provider cannot accept records from this client at all.

    Not retryable: the provider SDK offers no way to construct the
    outbound record type.
    """


@dataclass
class ExternalSleepRecord:
    start: datetime
    end: datetime
    notes: str | None = None
    external_id: str | None = None


@dataclass
class ExternalExerciseRecord:
    """Provider-side workout. ``exercise_type`` is the provider's integer code."""

    start: datetime
    end: datetime
    exercise_type: int
    notes: str | None = None
    calories_burned: int | None = None
    external_id: str | None = None


ExternalRecord = Union[ExternalSleepRecord, ExternalExerciseRecord]


@runtime_checkable
class HealthProvider(Protocol):
    """Abstract interface for an external, permission-gated health data source.

    The reconciliation engine talks to Health Connect, Apple Health or a
    Garmin export through this interface without knowing which one it is.
    """

    @property
    def source(self) -> SessionSource:
        """Provenance tag stamped on every record imported from this provider."""
        ...

    @property
    def supports_write(self) -> bool:
        """Whether records can be written back to the provider."""
        ...

    async def get_availability_status(self) -> ProviderAvailability:
        ...

    async def is_available(self) -> bool:
        ...

    async def has_all_permissions(self) -> bool:
        ...

    async def get_missing_permissions(self) -> set[str]:
        ...

    async def read_records(
        self,
        kind: RecordKind,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ExternalRecord]:
        """Records of ``kind`` starting within ``[start, end)``.

        Defaults to the trailing 30 days when no range is given.
        """
        ...

    async def write_records(self, kind: RecordKind, records: Sequence[ExternalRecord]) -> bool:
        """Write records; False when the provider refused the batch."""
        ...
