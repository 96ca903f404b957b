"""MCP Prompts: interaction templates for sync and conflict review."""

from __future__ import annotations

from fastmcp import FastMCP


def register_health_prompts(mcp: FastMCP) -> None:
    """Register health domain MCP prompts."""

    @mcp.prompt()
    def conflict_review_prompt() -> str:
        """Walk through unresolved overlaps between manual and provider sessions."""
        return """Please help me clean up my sleep and exercise history:

1. List my unresolved conflicts
2. For each one, look up both sessions and explain the overlap in plain words
3. Suggest which one to keep (my manual entry, the provider's record, or a merge)
4. Resolve each conflict once I confirm

Don't delete any sessions without asking me first."""

    @mcp.prompt()
    def weekly_sync_prompt(kind: str = "all") -> str:
        """Prompt template for a routine sync and summary."""
        return f"""Let's catch up on my health data ({kind}):

1. Check that the health provider is available and permissions are granted
2. Run a full sync
3. Tell me how many sessions were synced and skipped
4. Show my weekly summary and any new conflicts"""
