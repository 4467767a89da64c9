"""Location catalogue endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from core.db import SessionLocal
from core.dependencies import get_location_service
from modules.inventory.locations import sync_locations
from modules.inventory.schemas import LocationBody
from modules.inventory.spoolman import SpoolmanError

log = logging.getLogger("filabridge.api")
router = APIRouter(prefix="/locations", tags=["Locations"])


def _bad_request(e: ValueError):
    return HTTPException(status_code=400, detail=str(e))


@router.get("")
def list_locations(service=Depends(get_location_service)):
    return service.list_locations()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_location(body: LocationBody, service=Depends(get_location_service)):
    """Create a storage location locally and (best-effort) in Spoolman."""
    try:
        return service.create(body.name)
    except ValueError as e:
        raise _bad_request(e)


@router.put("/{location_id}")
def rename_location(location_id: int, body: LocationBody, service=Depends(get_location_service)):
    try:
        return service.rename(location_id, body.name)
    except LookupError:
        raise HTTPException(status_code=404, detail="Location not found")
    except ValueError as e:
        raise _bad_request(e)


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(location_id: int, service=Depends(get_location_service)):
    try:
        service.delete(location_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Location not found")


@router.post("/sync")
def sync_locations_now(service=Depends(get_location_service)):
    """Pull location names from Spoolman now instead of waiting for the periodic sync."""
    try:
        added = sync_locations(service, SessionLocal)
    except SpoolmanError as e:
        raise HTTPException(status_code=502, detail=f"Failed to connect to Spoolman: {e}")
    return {"added": added, "locations": service.list_locations()}
