"""MCP tools for reviewing and resolving detected conflicts."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from vitalsync.core.storage.models import ConflictRecord, ConflictResolution

if TYPE_CHECKING:
    from vitalsync.core.audit.logger import AuditLogger
    from vitalsync.domains.health.domain_logic.conflict_ledger import ConflictLedger

logger = logging.getLogger(__name__)


def serialize_conflict(conflict: ConflictRecord) -> dict[str, Any]:
    return {
        "id": conflict.id,
        "conflict_kind": conflict.conflict_kind.value,
        "primary_record_id": conflict.primary_record_id,
        "conflicting_record_id": conflict.conflicting_record_id,
        "details": conflict.details,
        "resolved": conflict.resolved,
        "resolution": conflict.resolution.value if conflict.resolution else None,
        "created_at": conflict.created_at.isoformat(),
        "resolved_at": conflict.resolved_at.isoformat() if conflict.resolved_at else None,
    }


def register_conflict_tools(
    mcp: FastMCP,
    ledger: ConflictLedger,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register conflict review tools on the MCP server."""

    @mcp.tool
    async def list_conflicts(
        ctx: Context,
        include_resolved: bool = False,
        limit: int = 20,
    ) -> str:
        """List detected overlaps between your sessions, newest first.

        Args:
            include_resolved: Also show conflicts you already resolved.
            limit: Maximum number of conflicts to return.
        """
        conflicts = ledger.list_all() if include_resolved else ledger.list_unresolved()
        return json.dumps({
            "status": "ok",
            "unresolved_count": ledger.count_unresolved(),
            "count": len(conflicts[:limit]),
            "conflicts": [serialize_conflict(c) for c in conflicts[:limit]],
        }, indent=2)

    @mcp.tool
    async def resolve_conflict(
        ctx: Context,
        conflict_id: str,
        resolution: str,
    ) -> str:
        """Record how a conflict should be settled.

        Resolving an already-resolved conflict replaces the earlier choice.

        Args:
            conflict_id: The conflict's id.
            resolution: keep_manual, keep_health_connect, keep_apple_health,
                keep_garmin, merge_data or delete_duplicate.
        """
        try:
            choice = ConflictResolution(resolution)
        except ValueError:
            valid = ", ".join(r.value for r in ConflictResolution)
            return json.dumps({
                "status": "error",
                "message": f"Unknown resolution '{resolution}'. Choose one of: {valid}",
            })

        if not ledger.resolve_conflict(conflict_id, choice):
            return json.dumps({
                "status": "not_found",
                "conflict_id": conflict_id,
                "message": f"No conflict found with ID {conflict_id}",
            })

        if audit_logger is not None:
            audit_logger.log_conflict_resolution(
                conflict_id=conflict_id,
                resolution=choice.value,
                tool_name="resolve_conflict",
            )
        return json.dumps({
            "status": "resolved",
            "conflict_id": conflict_id,
            "resolution": choice.value,
            "unresolved_remaining": ledger.count_unresolved(),
        })

    @mcp.tool
    async def delete_conflict(ctx: Context, conflict_id: str) -> str:
        """Remove a conflict record without resolving it.

        Args:
            conflict_id: The conflict's id.
        """
        conflict = ledger.get_by_id(conflict_id)
        if conflict is None or not ledger.delete(conflict):
            return json.dumps({
                "status": "not_found",
                "conflict_id": conflict_id,
                "message": f"No conflict found with ID {conflict_id}",
            })

        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_conflict",
                record_kind="conflict",
                count=1,
            )
        logger.info("Deleted conflict %s", conflict_id)
        return json.dumps({"status": "deleted", "conflict_id": conflict_id})
