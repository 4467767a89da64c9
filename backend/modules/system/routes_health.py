"""System health routes — health check with Spoolman reachability and monitor status."""

import logging
import pathlib as _pathlib

import httpx
from fastapi import APIRouter

from core.config import settings
from core.registry import registry
from modules.system.schemas import HealthCheck

log = logging.getLogger("filabridge.api")
router = APIRouter()

_version_file = _pathlib.Path(__file__).parent.parent.parent.parent / "VERSION"
if _version_file.exists():
    __version__ = _version_file.read_text().strip()
else:
    __version__ = "0.0.0"


# ============== Health Check ==============

@router.get("/health", response_model=HealthCheck, tags=["System"])
async def health_check():
    """Check API health and connectivity."""
    spoolman_ok = False
    if settings.spoolman_url:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"{settings.spoolman_url.rstrip('/')}/api/v1/health", timeout=5)
                spoolman_ok = resp.status_code == 200
        except httpx.HTTPError as e:
            log.debug(f"Spoolman health probe failed: {e}")

    supervisor = registry.providers.get("MonitorSupervisor")
    running = bool(supervisor and supervisor.running)
    return HealthCheck(
        status="ok",
        version=__version__,
        database=settings.database_url.split("///")[-1],
        spoolman_connected=spoolman_ok,
        monitors_running=running,
        printers_monitored=len(supervisor.snapshot()) if running else 0,
    )
