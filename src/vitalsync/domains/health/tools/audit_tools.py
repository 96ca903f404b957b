"""MCP tools for the health summary and the audit trail.

The audit trail records which tools ran and how syncs ended, never the
sessions themselves.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from vitalsync.domains.health.domain_logic.summary import build_health_summary

if TYPE_CHECKING:
    from vitalsync.core.audit.logger import AuditLogger
    from vitalsync.core.storage.repository import HealthStore

logger = logging.getLogger(__name__)


def register_summary_tools(mcp: FastMCP, store: HealthStore) -> None:
    """Register the health summary tool on the MCP server."""

    @mcp.tool
    async def health_summary(ctx: Context) -> str:
        """Totals, this week's sleep quality and exercise, and open conflicts."""
        summary = build_health_summary(store)
        return json.dumps({"status": "ok", **summary.to_dict()}, indent=2)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """View recent tool usage, sync runs and failures.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        total_events = audit_logger.count_events(since=since)
        sync_runs = audit_logger.count_events(action="sync_run", since=since)
        failed_syncs = audit_logger.count_failed_syncs(since=since)
        recent_events = audit_logger.get_events(since=since, limit=20)

        display_events = []
        for event in recent_events:
            display_events.append({
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "tool_name": event.get("tool_name"),
                "record_kind": event.get("record_kind"),
                "provider_source": event.get("provider_source"),
                "status": event.get("status"),
                "error_type": event.get("error_type"),
                "duration_ms": event.get("duration_ms"),
            })

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": total_events,
            "sync_runs": sync_runs,
            "failed_syncs": failed_syncs,
            "recent_events": display_events,
            "note": "This audit trail contains no session times or notes.",
        }, indent=2)
