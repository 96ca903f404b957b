"""Conflict ledger: lifecycle of detected conflicts.

A conflict starts unresolved and moves to resolved through :meth:`resolve`,
the only path that flips the flag. There is no way back. Resolving an
already-resolved conflict overwrites its resolution and timestamp.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable

from vitalsync.core.storage.models import ConflictRecord, ConflictResolution, utc_now
from vitalsync.core.storage.repository import ConflictRepository

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class ConflictLedger:
    """Creation, listing and resolution of conflict records.

    Usage::

        ledger = ConflictLedger(store.conflicts)
        for conflict in ledger.list_unresolved():
            ledger.resolve_conflict(conflict.id, ConflictResolution.KEEP_MANUAL)
    """

    def __init__(self, repository: ConflictRepository) -> None:
        self._repo = repository

    # -- Queries ------------------------------------------------------------

    def list_all(self) -> list[ConflictRecord]:
        """Every conflict, newest first."""
        return self._repo.get_all()

    def list_unresolved(self) -> list[ConflictRecord]:
        return self._repo.get_unresolved()

    def get_by_id(self, conflict_id: str) -> ConflictRecord | None:
        return self._repo.get_by_id(conflict_id)

    def count_unresolved(self) -> int:
        return self._repo.count_unresolved()

    # -- Mutations ----------------------------------------------------------

    def insert(self, conflict: ConflictRecord) -> str:
        return self._repo.insert(conflict)

    def record(self, conflicts: Iterable[ConflictRecord]) -> int:
        """Persist a batch of freshly detected conflicts in one write."""
        conflicts = list(conflicts)
        written = self._repo.insert_batch(conflicts)
        for conflict in conflicts:
            logger.info(
                "Recorded %s conflict %s (%s vs %s)",
                conflict.conflict_kind.value,
                conflict.id,
                conflict.primary_record_id,
                conflict.conflicting_record_id,
            )
        return written

    def update(self, conflict: ConflictRecord) -> bool:
        return self._repo.update(conflict)

    def delete(self, conflict: ConflictRecord) -> bool:
        return self._repo.delete(conflict)

    def resolve(
        self,
        conflict_id: str,
        resolution: ConflictResolution,
        resolved_at: datetime | None = None,
    ) -> bool:
        """Mark a conflict resolved.

        Args:
            conflict_id: Conflict to resolve.
            resolution: The user's choice.
            resolved_at: Resolution instant; defaults to now.

        Returns:
            False if no conflict has that id.
        """
        resolution = ConflictResolution(resolution)
        existing = self._repo.get_by_id(conflict_id)
        if existing is None:
            logger.warning("Cannot resolve unknown conflict %s", conflict_id)
            return False
        if existing.resolved:
            logger.info(
                "Conflict %s already resolved as %s; overwriting with %s",
                conflict_id,
                existing.resolution.value if existing.resolution else None,
                resolution.value,
            )
        return self._repo.resolve(conflict_id, resolution, resolved_at or utc_now())

    def resolve_conflict(self, conflict_id: str, choice: ConflictResolution) -> bool:
        """Resolve with the current time, as the user-facing action does."""
        return self.resolve(conflict_id, choice)

    # -- Change streams -----------------------------------------------------

    async def watch_all(
        self, poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> AsyncIterator[list[ConflictRecord]]:
        """Yield all conflicts now and again whenever the list changes."""
        async for snapshot in self._watch(self.list_all, poll_interval):
            yield snapshot

    async def watch_unresolved(
        self, poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> AsyncIterator[list[ConflictRecord]]:
        """Yield unresolved conflicts now and again whenever the list changes."""
        async for snapshot in self._watch(self.list_unresolved, poll_interval):
            yield snapshot

    async def _watch(
        self,
        query: Callable[[], list[ConflictRecord]],
        poll_interval: float,
    ) -> AsyncIterator[list[ConflictRecord]]:
        previous: list[ConflictRecord] | None = None
        while True:
            current = query()
            if current != previous:
                previous = current
                yield current
            await asyncio.sleep(poll_interval)
