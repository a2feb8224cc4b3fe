"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message.

Usage:
    from artisan_escrow.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the escrow and call signaling core."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://artisan:artisan_dev"
        "@localhost:5432/artisan_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (call signaling relay) ---
    redis_url: str = "redis://localhost:6379/0"
    redis_channel_prefix: str = "call-"

    # --- Escrow Defaults ---
    default_commission_percent: float = 10.0

    # --- Call Signaling ---
    signaling_channel_ready_timeout_seconds: float = 5.0
    signaling_channel_poll_interval_seconds: float = 0.1
    signaling_ice_servers: str = "stun:stun.l.google.com:19302"
    signaling_rejection_notice_seconds: float = 3.0
    signaling_ring_timeout_seconds: float = 45.0  # 0 disables
    signaling_auto_reject_busy: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def ice_server_list(self) -> list[str]:
        """Parse comma-separated ICE server URLs into a list."""
        if not self.signaling_ice_servers:
            return []
        return [s.strip() for s in self.signaling_ice_servers.split(",") if s.strip()]

    @property
    def uses_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
