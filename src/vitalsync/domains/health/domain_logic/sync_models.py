"""Result and status types for provider reconciliation.

Expected failures (missing permissions, provider not installed, upload
refused) are values, not exceptions: every engine operation returns either
a :class:`SyncSuccess` or a :class:`SyncError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

from vitalsync.core.storage.models import ConflictRecord


class ProviderAvailability(str, Enum):
    """What the provider SDK reports about itself on this device."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UPDATE_REQUIRED = "update_required"
    UNKNOWN = "unknown"


class ProviderStatus(str, Enum):
    """Availability and permissions combined, as seen by callers."""

    UNKNOWN = "unknown"
    NOT_AVAILABLE = "not_available"
    UPDATE_REQUIRED = "update_required"
    GRANTED = "granted"
    DENIED = "denied"
    ERROR = "error"


class SyncErrorType(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_UPDATE_REQUIRED = "provider_update_required"
    TRANSPORT_ERROR = "transport_error"
    WRITE_UNSUPPORTED = "write_unsupported"
    UPLOAD_FAILED = "upload_failed"


@dataclass(frozen=True)
class SyncSuccess:
    """Records written (``synced``) and exact duplicates suppressed (``skipped``)."""

    synced: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return True

    def __add__(self, other: SyncSuccess) -> SyncSuccess:
        return SyncSuccess(
            synced=self.synced + other.synced,
            skipped=self.skipped + other.skipped,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"status": "success", "synced": self.synced, "skipped": self.skipped}


@dataclass(frozen=True)
class SyncError:
    message: str
    error_type: SyncErrorType = SyncErrorType.TRANSPORT_ERROR

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error_type": self.error_type.value,
            "message": self.message,
        }


SyncOutcome = SyncSuccess | SyncError


class ManualInsertResult(NamedTuple):
    """Outcome of saving a manually entered session.

    ``accepted`` is always True: conflicts are advisory.
    """

    accepted: bool
    conflicts: list[ConflictRecord]


# Status → the error a sync reports instead of running
_STATUS_ERRORS: dict[ProviderStatus, SyncError] = {
    ProviderStatus.DENIED: SyncError(
        "permissions not granted", SyncErrorType.PERMISSION_DENIED
    ),
    ProviderStatus.NOT_AVAILABLE: SyncError(
        "provider is not available on this device", SyncErrorType.PROVIDER_UNAVAILABLE
    ),
    ProviderStatus.UPDATE_REQUIRED: SyncError(
        "provider needs to be updated", SyncErrorType.PROVIDER_UPDATE_REQUIRED
    ),
    ProviderStatus.ERROR: SyncError(
        "provider status could not be determined", SyncErrorType.TRANSPORT_ERROR
    ),
    ProviderStatus.UNKNOWN: SyncError(
        "provider status could not be determined", SyncErrorType.TRANSPORT_ERROR
    ),
}


def error_for_status(status: ProviderStatus) -> SyncError | None:
    """The blocking error for ``status``, or None when syncing may proceed."""
    status = ProviderStatus(status)
    if status is ProviderStatus.GRANTED:
        return None
    return _STATUS_ERRORS[status]
