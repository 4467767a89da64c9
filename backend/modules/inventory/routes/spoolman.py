"""Spoolman integration endpoints — spools, filaments, connection checks."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from core.config import settings
from core.dependencies import get_binding_store, get_inventory
from modules.inventory.schemas import SpoolmanTestRequest
from modules.inventory.spoolman import SpoolmanClient, SpoolmanError

log = logging.getLogger("filabridge.api")
router = APIRouter(prefix="/spoolman", tags=["Spoolman"])


@router.get("/spools")
def list_spoolman_spools(
    available_only: bool = False,
    include_empty: bool = False,
    inventory=Depends(get_inventory),
    store=Depends(get_binding_store),
):
    """Spools from Spoolman; available_only drops spools already bound to a toolhead."""
    try:
        spools = inventory.list_spools(include_empty=include_empty)
    except SpoolmanError as e:
        raise HTTPException(status_code=502, detail=f"Failed to connect to Spoolman: {e}")

    bound = {b.spool_id: b for b in store.all_bindings()}
    for spool in spools:
        binding = bound.get(spool.get("id"))
        spool["bound_to"] = (
            {"printer_id": binding.printer_id, "toolhead_id": binding.toolhead_id} if binding else None
        )
    if available_only:
        spools = [s for s in spools if s["bound_to"] is None]
    return spools


@router.get("/spools/{spool_id}")
def get_spoolman_spool(spool_id: int, inventory=Depends(get_inventory)):
    try:
        return inventory.get_spool(spool_id)
    except SpoolmanError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail=f"Spool {spool_id} not found in Spoolman")
        raise HTTPException(status_code=502, detail=f"Failed to connect to Spoolman: {e}")


@router.get("/filaments")
def get_spoolman_filaments(inventory=Depends(get_inventory)):
    """Fetch all filament types from Spoolman."""
    try:
        return inventory.list_filaments()
    except SpoolmanError as e:
        log.error(f"Spoolman connection failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to connect to Spoolman: {e}")


@router.get("/health")
def spoolman_health(inventory=Depends(get_inventory)):
    return {"url": inventory.base_url, "reachable": inventory.health()}


@router.post("/test")
def test_spoolman_connection(body: SpoolmanTestRequest):
    """Probe a Spoolman URL without saving it."""
    url = (body.url or settings.spoolman_url or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="Spoolman URL not configured")
    client = SpoolmanClient(
        url,
        timeout=settings.spoolman_timeout,
        username=body.username or settings.spoolman_username,
        password=body.password or settings.spoolman_password,
    )
    try:
        info = client.info()
    except SpoolmanError as e:
        return {"success": False, "error": str(e)}
    finally:
        client.close()
    return {"success": True, "version": info.get("version"), "url": url}
