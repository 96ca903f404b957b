"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """vitalsync server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback: the server has no auth layer.
    vitalsync_host: str = "127.0.0.1"
    vitalsync_port: int = 8001
    vitalsync_log_level: str = "info"
    vitalsync_allow_insecure_bind: bool = False

    # Storage (session store)
    db_path: str = "~/.vitalsync/health.db"

    # Encryption of free-text notes; storage is disabled without a key
    encryption_key: str = ""

    # External provider
    provider_type: Literal["mock", "export_file"] = "mock"
    provider_source: Literal["health_connect", "apple_health", "garmin"] = "health_connect"
    provider_export_path: str = ""
    provider_write_enabled: bool = True

    # Reconciliation windows
    sync_lookback_days: int = 30
    manual_conflict_window_hours: int = 12


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
