"""System config routes — read and update the runtime-editable settings."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.config import RUNTIME_KEYS, apply_overrides, settings
from core.db import get_db
from core.models import SystemConfig
from core.registry import registry
from modules.system.schemas import ConfigResponse, ConfigUpdate

log = logging.getLogger("filabridge.api")
router = APIRouter()

_SPOOLMAN_KEYS = {"spoolman_url", "spoolman_username", "spoolman_password", "spoolman_timeout"}


def current_config() -> ConfigResponse:
    return ConfigResponse(
        spoolman_url=settings.spoolman_url,
        spoolman_username=settings.spoolman_username,
        has_spoolman_password=bool(settings.spoolman_password),
        spoolman_timeout=settings.spoolman_timeout,
        poll_interval=settings.poll_interval,
        prusalink_timeout=settings.prusalink_timeout,
        prusalink_file_download_timeout=settings.prusalink_file_download_timeout,
        download_attempts=settings.download_attempts,
        download_retry_delay=settings.download_retry_delay,
        pairing_session_ttl=settings.pairing_session_ttl,
        location_sync_interval=settings.location_sync_interval,
        auto_assign_previous_spool_enabled=settings.auto_assign_previous_spool_enabled,
        auto_assign_previous_spool_location=settings.auto_assign_previous_spool_location,
    )


def load_overrides(db: Session) -> dict:
    """Persisted runtime overrides, keyed by setting name."""
    rows = db.query(SystemConfig).filter(SystemConfig.key.in_(RUNTIME_KEYS)).all()
    return {r.key: r.value for r in rows}


def rebuild_inventory_client() -> None:
    """Swap in a Spoolman client built from the current settings."""
    from modules.inventory import build_client

    old = registry.providers.get("InventoryClient")
    registry.register_provider("InventoryClient", build_client(settings))
    if old is not None and hasattr(old, "close"):
        old.close()
    log.info(f"Spoolman client now pointing at {settings.spoolman_url}")


# ============== Config ==============

@router.get("/config", response_model=ConfigResponse, tags=["Config"])
def get_config():
    """Effective runtime configuration (environment plus persisted overrides)."""
    return current_config()


@router.put("/config", response_model=ConfigResponse, tags=["Config"])
def update_config(body: ConfigUpdate, db: Session = Depends(get_db)):
    """Validate, persist and apply runtime configuration changes."""
    changes = body.model_dump(exclude_unset=True)
    # An empty password field keeps the stored one
    if "spoolman_password" in changes and not changes["spoolman_password"]:
        del changes["spoolman_password"]

    for key, value in changes.items():
        row = db.get(SystemConfig, key)
        if row is None:
            db.add(SystemConfig(key=key, value=value))
        else:
            row.value = value
    db.commit()

    applied = apply_overrides(changes)
    if applied:
        log.info(f"Config updated: {sorted(applied)}")
    if _SPOOLMAN_KEYS & set(applied):
        rebuild_inventory_client()
    return current_config()
