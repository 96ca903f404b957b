"""MCP tools for syncing sessions with the external health provider.

Each sync tool checks provider status once, hands it to the engine, and
reports the outcome with a human-readable message. Every run is written
to the audit trail with counts or the error category, never session data.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from vitalsync.core.storage.models import RecordKind
from vitalsync.domains.health.connectors import permission_descriptions
from vitalsync.domains.health.connectors.status import check_provider_status
from vitalsync.domains.health.domain_logic.sync_models import SyncOutcome, SyncSuccess
from vitalsync.domains.health.tools.session_tools import parse_instant

if TYPE_CHECKING:
    from vitalsync.core.audit.logger import AuditLogger
    from vitalsync.domains.health.domain_logic.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

_ALL_KINDS = (RecordKind.SLEEP, RecordKind.EXERCISE)


def outcome_message(kind: RecordKind, outcome: SyncOutcome) -> str:
    if isinstance(outcome, SyncSuccess):
        return f"Sync completed! {outcome.synced} items synced, {outcome.skipped} skipped"
    return f"{kind.value.capitalize()} sync failed: {outcome.message}"


def _parse_kinds(kind: str) -> tuple[RecordKind, ...]:
    if kind == "all":
        return _ALL_KINDS
    return (RecordKind(kind),)


def register_sync_tools(
    mcp: FastMCP,
    engine: ReconciliationEngine,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register provider status and sync tools on the MCP server."""
    provider = engine.provider

    def _report(
        tool_name: str,
        direction: str,
        kind: RecordKind,
        outcome: SyncOutcome,
        elapsed_ms: float,
    ) -> dict[str, Any]:
        payload = outcome.to_dict()
        if audit_logger is not None:
            audit_logger.log_sync(
                tool_name=tool_name,
                record_kind=kind.value,
                provider_source=provider.source.value,
                direction=direction,
                outcome=payload,
                duration_ms=elapsed_ms,
            )
        payload["kind"] = kind.value
        payload["message"] = outcome_message(kind, outcome)
        return payload

    @mcp.tool
    async def provider_status(ctx: Context) -> str:
        """Check whether the health provider is installed and permissions are granted."""
        status = await check_provider_status(provider)
        availability = await provider.get_availability_status()
        missing = await provider.get_missing_permissions()
        return json.dumps({
            "status": "ok",
            "provider": provider.source.value,
            "provider_status": status.value,
            "availability": availability.value,
            "supports_write": provider.supports_write,
            "missing_permissions": sorted(missing),
            "required_permissions": [
                {"permission": name, "description": description,
                 "granted": name not in missing}
                for name, description in permission_descriptions()
            ],
        }, indent=2)

    @mcp.tool
    async def sync_from_provider(
        ctx: Context,
        kind: str = "all",
        start: str = "",
        end: str = "",
    ) -> str:
        """Import sleep and/or exercise sessions from the health provider.

        Exact repeats of sessions already imported are skipped. Sessions that
        overlap your own entries are imported too, and the overlap is logged
        as a conflict for you to review.

        Args:
            kind: 'sleep', 'exercise' or 'all'.
            start: Optional range start (ISO 8601). Give both or neither.
            end: Optional range end (ISO 8601). Defaults to the last 30 days.
        """
        try:
            kinds = _parse_kinds(kind)
            start_at = parse_instant(start) if start else None
            end_at = parse_instant(end) if end else None
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        if (start_at is None) != (end_at is None):
            return json.dumps({
                "status": "error",
                "message": "Provide both start and end, or neither",
            })

        status = await check_provider_status(provider)
        results = []
        for record_kind in kinds:
            t0 = time.monotonic()
            outcome = await engine.sync_from_provider(
                record_kind, start_at, end_at, status=status
            )
            elapsed_ms = (time.monotonic() - t0) * 1000
            results.append(_report("sync_from_provider", "import", record_kind, outcome, elapsed_ms))
        return json.dumps({"status": "ok", "results": results}, indent=2)

    @mcp.tool
    async def sync_to_provider(ctx: Context, kind: str = "all") -> str:
        """Upload your manual sessions (and other providers' sessions) to the provider.

        Args:
            kind: 'sleep', 'exercise' or 'all'.
        """
        try:
            kinds = _parse_kinds(kind)
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        status = await check_provider_status(provider)
        results = []
        for record_kind in kinds:
            t0 = time.monotonic()
            outcome = await engine.sync_to_provider(record_kind, status=status)
            elapsed_ms = (time.monotonic() - t0) * 1000
            results.append(_report("sync_to_provider", "export", record_kind, outcome, elapsed_ms))
        return json.dumps({"status": "ok", "results": results}, indent=2)

    @mcp.tool
    async def full_sync(ctx: Context, kind: str = "all") -> str:
        """Two-way sync: import from the provider, then upload local sessions.

        Args:
            kind: 'sleep', 'exercise' or 'all'.
        """
        try:
            kinds = _parse_kinds(kind)
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        status = await check_provider_status(provider)
        results = []
        total = SyncSuccess()
        failed = False
        for record_kind in kinds:
            t0 = time.monotonic()
            outcome = await engine.perform_full_sync(record_kind, status=status)
            elapsed_ms = (time.monotonic() - t0) * 1000
            results.append(_report("full_sync", "full", record_kind, outcome, elapsed_ms))
            if isinstance(outcome, SyncSuccess):
                total = total + outcome
            else:
                failed = True

        message = "; ".join(r["message"] for r in results if r["status"] == "error")
        if not failed:
            message = outcome_message(kinds[0], total)
        return json.dumps({
            "status": "ok",
            "synced": total.synced,
            "skipped": total.skipped,
            "message": message,
            "results": results,
        }, indent=2)
