"""vitalsync MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery (`fastmcp run ...app.py:mcp`)
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from vitalsync.core.audit.logger import AuditLogger
from vitalsync.core.config.settings import Settings, get_settings
from vitalsync.core.storage.database import HealthDatabase
from vitalsync.core.storage.encryption import EncryptionError, FieldEncryptor
from vitalsync.core.storage.repository import HealthStore
from vitalsync.domains.health.connectors import HealthProvider
from vitalsync.domains.health.connectors.export_file import ExportFileProvider
from vitalsync.domains.health.connectors.providers import MockHealthProvider
from vitalsync.domains.health.domain_logic.conflict_ledger import ConflictLedger
from vitalsync.domains.health.domain_logic.reconciliation import ReconciliationEngine
from vitalsync.domains.health.prompts.health_prompts import register_health_prompts

logger = logging.getLogger(__name__)


def build_provider(settings: Settings) -> HealthProvider:
    """Construct the configured health provider."""
    if settings.provider_type == "export_file":
        logger.info("Using export file provider: %s", settings.provider_export_path or "(unset)")
        return ExportFileProvider(
            settings.provider_export_path,
            settings.provider_source,
            write_enabled=settings.provider_write_enabled,
        )
    logger.info("Using mock health provider (%s)", settings.provider_source)
    return MockHealthProvider(
        source=settings.provider_source,
        supports_write=settings.provider_write_enabled,
    )


def create_app(
    *,
    provider_override: HealthProvider | None = None,
    store_override: HealthStore | None = None,
    audit_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the vitalsync MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Initializes the configured health provider
    3. Initializes the encrypted session store and audit trail
    4. Wires the conflict ledger and reconciliation engine
    5. Registers all tools and prompts
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "vitalsync",
        instructions=(
            "Sleep and exercise session sync. Log sessions manually, import and "
            "export them with a health provider, and review overlapping records "
            "as conflicts instead of losing data."
        ),
    )

    # --- Health provider ---
    if provider_override is not None:
        provider = provider_override
    else:
        provider = build_provider(settings)

    # --- Encrypted session store ---
    store: HealthStore | None = None
    audit_logger: AuditLogger | None = audit_override
    if store_override is not None:
        store = store_override
    elif settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
            health_db = HealthDatabase(settings.db_path)
            health_db.initialize()
            store = HealthStore.open(health_db, encryptor)
            if audit_logger is None:
                audit_logger = AuditLogger(health_db)
            logger.info(
                "Session store initialized: %s (schema v%d)",
                settings.db_path,
                health_db.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence; sessions will not be stored")
    else:
        logger.info(
            "No ENCRYPTION_KEY configured; running without persistence. "
            "Set ENCRYPTION_KEY to enable the session store."
        )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": "vitalsync",
            "version": "0.1.0",
            "provider": provider.source.value,
            "storage_enabled": store is not None,
        }
        if store is not None:
            status["sleep_sessions_stored"] = store.sleep.count()
            status["exercise_sessions_stored"] = store.exercise.count()
            status["unresolved_conflicts"] = store.conflicts.count_unresolved()
        return status

    if store is not None:
        from vitalsync.domains.health.tools.audit_tools import register_summary_tools
        from vitalsync.domains.health.tools.conflict_tools import register_conflict_tools
        from vitalsync.domains.health.tools.session_tools import register_session_tools
        from vitalsync.domains.health.tools.sync_tools import register_sync_tools

        ledger = ConflictLedger(store.conflicts)
        engine = ReconciliationEngine(
            store,
            ledger,
            provider,
            lookback_days=settings.sync_lookback_days,
            manual_window_hours=settings.manual_conflict_window_hours,
        )
        register_session_tools(server, store, engine, audit_logger)
        register_sync_tools(server, engine, audit_logger)
        register_conflict_tools(server, ledger, audit_logger)
        register_summary_tools(server, store)
        logger.info("Session, sync and conflict tools registered")

    if audit_logger is not None:
        from vitalsync.domains.health.tools.audit_tools import register_audit_tools

        register_audit_tools(server, audit_logger)

    # --- Register prompts ---
    register_health_prompts(server)

    return server


# Module-level instance for FastMCP discovery (`fastmcp run ...app.py:mcp`).
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
