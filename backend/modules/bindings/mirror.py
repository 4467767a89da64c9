"""
Location mirror — best-effort copy of local bindings into Spoolman.

The local binding store is the source of truth for what is loaded where;
Spoolman's spool "location" field is advisory. Every failure here is
logged and swallowed so a Spoolman outage never rolls back a binding.
"""

import logging
from typing import Callable, Optional

from core.base import default_toolhead_name
from core.event_bus import emit
from core import events as ev
from modules.inventory.locations import PRINTER_LOCATION_SEPARATOR
from modules.printers.models import Printer

log = logging.getLogger("filabridge.bindings")


def printer_location_name(printer_name: str, toolhead_display_name: str) -> str:
    return f"{printer_name}{PRINTER_LOCATION_SEPARATOR}{toolhead_display_name}"


class LocationMirror:

    def __init__(self, session_factory, inventory_provider: Callable,
                 settings, location_exists: Optional[Callable[[str], bool]] = None):
        self._session_factory = session_factory
        self._inventory = inventory_provider
        self._settings = settings
        self._location_exists = location_exists

    def location_for(self, printer_id: int, toolhead_id: int) -> Optional[str]:
        """Spoolman location name for a toolhead, or None for an unknown printer."""
        db = self._session_factory()
        try:
            printer = db.get(Printer, printer_id)
            if printer is None:
                return None
            return printer_location_name(printer.name, printer.toolhead_display_name(toolhead_id))
        finally:
            db.close()

    def on_bind(self, result) -> None:
        binding = result.binding
        emit(
            ev.BINDING_CHANGED, "bindings",
            printer_id=binding.printer_id, toolhead_id=binding.toolhead_id,
            spool_id=binding.spool_id, previous_spool_id=result.previous_spool_id,
        )

        location = self.location_for(binding.printer_id, binding.toolhead_id)
        if location is None:
            location = printer_location_name(
                f"Printer {binding.printer_id}", default_toolhead_name(binding.toolhead_id)
            )
        try:
            self._inventory().set_spool_location(binding.spool_id, location)
        except Exception as e:
            log.warning(f"Failed to update Spoolman location for spool {binding.spool_id}: {e}")

        if result.previous_spool_id and result.changed:
            self._auto_assign_previous(result.previous_spool_id)

    def on_unbind(self, printer_id: int, toolhead_id: int, spool_id: int) -> None:
        emit(
            ev.BINDING_CHANGED, "bindings",
            printer_id=printer_id, toolhead_id=toolhead_id,
            spool_id=None, previous_spool_id=spool_id,
        )
        location = self.location_for(printer_id, toolhead_id)
        if location is None:
            return
        try:
            inventory = self._inventory()
            # Only clear the location if Spoolman still shows the spool on this toolhead
            if (inventory.get_spool(spool_id).get("location") or "") == location:
                inventory.set_spool_location(spool_id, "")
        except Exception as e:
            log.warning(f"Failed to clear Spoolman location for spool {spool_id}: {e}")

    def _auto_assign_previous(self, spool_id: int) -> None:
        if not self._settings.auto_assign_previous_spool_enabled:
            return
        location = (self._settings.auto_assign_previous_spool_location or "").strip()
        if not location:
            return
        try:
            if self._location_exists is not None and not self._location_exists(location):
                log.warning(
                    f"Auto-assign location '{location}' does not exist, "
                    f"skipping auto-assignment of spool {spool_id}"
                )
                return
            self._inventory().set_spool_location(spool_id, location)
            log.info(f"Auto-assigned replaced spool {spool_id} to '{location}'")
        except Exception as e:
            log.warning(f"Failed to auto-assign spool {spool_id} to '{location}': {e}")
