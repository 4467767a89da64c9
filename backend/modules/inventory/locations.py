"""
Location catalogue — local mirror of Spoolman storage locations.

Printer toolhead locations ("<printer> - <toolhead>") are derived from the
printer configuration and are never stored here; only plain storage
locations are.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

from modules.inventory.models import Location
from modules.inventory.spoolman import SpoolmanError

log = logging.getLogger("filabridge.inventory")

PRINTER_LOCATION_SEPARATOR = " - "


class LocationError(ValueError):
    pass


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LocationService:
    """CRUD over the local catalogue, pushed through to Spoolman where it can be."""

    def __init__(self, session_factory, inventory_provider):
        self._session_factory = session_factory
        # Callable returning the current inventory client (it can be swapped at runtime)
        self._inventory = inventory_provider
        self._lock = threading.Lock()

    def list_locations(self) -> List[dict]:
        db = self._session_factory()
        try:
            rows = db.query(Location).order_by(Location.name).all()
            return [_to_dict(r) for r in rows]
        finally:
            db.close()

    def names(self) -> List[str]:
        return [loc["name"] for loc in self.list_locations()]

    def exists(self, name: str) -> bool:
        db = self._session_factory()
        try:
            return db.query(Location).filter(Location.name == name).first() is not None
        finally:
            db.close()

    def create(self, name: str) -> dict:
        name = _clean_name(name)
        with self._lock:
            db = self._session_factory()
            try:
                if db.query(Location).filter(Location.name == name).first():
                    raise LocationError(f"location '{name}' already exists")
                row = Location(name=name)
                db.add(row)
                db.commit()
                row_id = row.id
            finally:
                db.close()

        in_spoolman = False
        try:
            self._inventory().create_location(name)
            in_spoolman = True
        except SpoolmanError as e:
            log.warning(f"Could not create location '{name}' in Spoolman: {e}")
        return self._mark(row_id, in_spoolman)

    def rename(self, location_id: int, new_name: str) -> dict:
        new_name = _clean_name(new_name)
        with self._lock:
            db = self._session_factory()
            try:
                row = db.get(Location, location_id)
                if row is None:
                    raise LookupError(f"location {location_id} not found")
                clash = db.query(Location).filter(Location.name == new_name, Location.id != location_id).first()
                if clash:
                    raise LocationError(f"location '{new_name}' already exists")
                old_name = row.name
                row.name = new_name
                db.commit()
            finally:
                db.close()

        if old_name != new_name:
            try:
                self._inventory().rename_location(old_name, new_name)
            except SpoolmanError as e:
                log.warning(f"Could not rename Spoolman location '{old_name}': {e}")
        return self.get(location_id)

    def delete(self, location_id: int) -> None:
        with self._lock:
            db = self._session_factory()
            try:
                row = db.get(Location, location_id)
                if row is None:
                    raise LookupError(f"location {location_id} not found")
                db.delete(row)
                db.commit()
            finally:
                db.close()

    def get(self, location_id: int) -> Optional[dict]:
        db = self._session_factory()
        try:
            row = db.get(Location, location_id)
            return _to_dict(row) if row else None
        finally:
            db.close()

    def ensure(self, name: str) -> None:
        """Make sure a location exists locally (used when a scan names a new one)."""
        name = _clean_name(name)
        with self._lock:
            db = self._session_factory()
            try:
                if db.query(Location).filter(Location.name == name).first() is None:
                    db.add(Location(name=name))
                    db.commit()
            finally:
                db.close()

    def sync_from_spoolman(self, printer_names: Optional[List[str]] = None) -> int:
        """
        Pull Spoolman's location names into the catalogue.

        Names that look like printer toolhead locations for a configured
        printer are skipped. Returns the number of new locations added.
        """
        remote = self._inventory().list_locations()
        prefixes = tuple(f"{p}{PRINTER_LOCATION_SEPARATOR}" for p in (printer_names or []))
        remote = [n for n in remote if not (prefixes and n.startswith(prefixes))]

        added = 0
        now = _utcnow()
        with self._lock:
            db = self._session_factory()
            try:
                existing = {r.name: r for r in db.query(Location).all()}
                for name in remote:
                    row = existing.get(name)
                    if row is None:
                        db.add(Location(name=name, in_spoolman=True, synced_at=now))
                        added += 1
                    else:
                        row.in_spoolman = True
                        row.synced_at = now
                remote_set = set(remote)
                for name, row in existing.items():
                    if name not in remote_set:
                        row.in_spoolman = False
                db.commit()
            finally:
                db.close()
        if added:
            log.info(f"Location sync added {added} location(s) from Spoolman")
        return added

    def _mark(self, location_id: int, in_spoolman: bool) -> dict:
        db = self._session_factory()
        try:
            row = db.get(Location, location_id)
            row.in_spoolman = in_spoolman
            if in_spoolman:
                row.synced_at = _utcnow()
            db.commit()
            return _to_dict(row)
        finally:
            db.close()


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise LocationError("location name cannot be empty")
    if len(name) > 200:
        raise LocationError("location name is too long")
    return name


def _to_dict(row: Location) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "in_spoolman": bool(row.in_spoolman),
        "synced_at": row.synced_at.isoformat() if row.synced_at else None,
    }


def sync_locations(service: LocationService, session_factory) -> int:
    """One catalogue refresh, skipping the configured printers' toolhead locations."""
    from core import events as ev
    from core.event_bus import emit
    from modules.printers.models import Printer

    db = session_factory()
    try:
        names = [p.name for p in db.query(Printer).all()]
    finally:
        db.close()
    added = service.sync_from_spoolman(printer_names=names)
    emit(ev.LOCATIONS_SYNCED, "inventory", count=added)
    return added
