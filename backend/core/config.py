"""
FilaBridge — Configuration settings.

Loads from environment variables (and .env) with sensible defaults.
A subset of keys can be changed at runtime through the config API; those
overrides live in the system_config table and are applied over the
environment values at startup (see apply_overrides()).
"""

import logging
from typing import Optional

from pydantic_settings import BaseSettings

log = logging.getLogger("filabridge.config")


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    database_url: str = "sqlite:///./filabridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False
    log_level: str = "INFO"

    # Security - leave empty to disable auth (trusted network mode)
    api_key: Optional[str] = None

    # Comma-separated list, e.g. CORS_ORIGINS=http://localhost:3000
    cors_origins: str = ""

    # Externally reachable URL used when rendering tag URLs (falls back to request.base_url)
    public_base_url: Optional[str] = None

    # Spoolman
    spoolman_url: str = "http://localhost:7912"
    spoolman_username: Optional[str] = None
    spoolman_password: Optional[str] = None
    spoolman_timeout: float = 10

    # PrusaLink polling
    poll_interval: float = 30
    prusalink_timeout: float = 10
    prusalink_file_download_timeout: float = 300
    download_attempts: int = 3
    download_retry_delay: float = 5

    # Pairing sessions (fixed window from creation)
    pairing_session_ttl: int = 300

    # Location catalogue refresh from Spoolman
    location_sync_interval: int = 300

    # Move a replaced spool to a default location when a toolhead gets a new spool
    auto_assign_previous_spool_enabled: bool = False
    auto_assign_previous_spool_location: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

# Keys the config API may change at runtime.
RUNTIME_KEYS = (
    "spoolman_url",
    "spoolman_username",
    "spoolman_password",
    "spoolman_timeout",
    "poll_interval",
    "prusalink_timeout",
    "prusalink_file_download_timeout",
    "download_attempts",
    "download_retry_delay",
    "location_sync_interval",
    "auto_assign_previous_spool_enabled",
    "auto_assign_previous_spool_location",
)


def apply_overrides(overrides: dict) -> dict:
    """Apply persisted runtime overrides onto the live settings object.

    Unknown keys are ignored. Returns the keys that were applied.
    """
    applied = {}
    for key, value in overrides.items():
        if key not in RUNTIME_KEYS:
            log.debug(f"Ignoring unknown config override {key!r}")
            continue
        setattr(settings, key, value)
        applied[key] = value
    return applied
