"""
Spool assignment — one entry point for "put spool S at location L".

Used by the manual location assign route and by completed pairing
sessions. A printer toolhead location goes through the Binding Store
(conflicts surface to the caller); any other location frees the spool
from every toolhead and sets its Spoolman location, which must succeed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core import events as ev
from core.base import default_toolhead_name
from core.event_bus import emit
from modules.inventory.locations import PRINTER_LOCATION_SEPARATOR
from modules.printers.models import Printer

log = logging.getLogger("filabridge.bindings")

_TOOLHEAD_PREFIX = "Toolhead "


@dataclass(frozen=True)
class ParsedLocation:
    location_name: str
    printer_id: Optional[int] = None
    printer_name: Optional[str] = None
    toolhead_id: Optional[int] = None

    @property
    def is_printer(self) -> bool:
        return self.printer_id is not None and self.toolhead_id is not None


def parse_location(db, text: Optional[str]) -> Optional[ParsedLocation]:
    """
    Resolve a scanned/typed location string.

    "<printer> - <toolhead display name>" and "<printer> - Toolhead N" resolve
    to a printer toolhead when the printer exists and N is in range. Custom
    display names win over the numeric form. Anything else is a plain
    storage location. Returns None for an empty string.
    """
    text = (text or "").strip()
    if not text:
        return None

    if PRINTER_LOCATION_SEPARATOR in text:
        printer_name, toolhead_part = (p.strip() for p in text.split(PRINTER_LOCATION_SEPARATOR, 1))
        printer = db.query(Printer).filter(Printer.name == printer_name).first()
        if printer is not None:
            toolheads = printer.toolheads or 0
            for row in printer.toolhead_names:
                if row.display_name == toolhead_part and 0 <= row.toolhead_id < toolheads:
                    return ParsedLocation(text, printer.id, printer.name, row.toolhead_id)
            for tid in range(toolheads):
                if default_toolhead_name(tid) == toolhead_part:
                    return ParsedLocation(text, printer.id, printer.name, tid)
            if toolhead_part.startswith(_TOOLHEAD_PREFIX):
                try:
                    tid = int(toolhead_part[len(_TOOLHEAD_PREFIX):])
                except ValueError:
                    tid = -1
                if 0 <= tid < toolheads:
                    return ParsedLocation(text, printer.id, printer.name, tid)

    return ParsedLocation(text)


class SpoolAssigner:

    def __init__(self, binding_store, inventory_provider: Callable,
                 location_service=None):
        self._store = binding_store
        self._inventory = inventory_provider
        self._locations = location_service

    def assign(self, spool_id: int, target: ParsedLocation) -> dict:
        """
        Raises BindingConflict / UnknownPrinter / InvalidToolhead for printer
        targets and SpoolmanError when a plain location cannot be set.
        """
        if target.is_printer:
            result = self._store.bind(target.printer_id, target.toolhead_id, spool_id)
            log.info(f"Assigned spool {spool_id} to {target.location_name}")
            return {
                "spool_id": spool_id,
                "location": target.location_name,
                "is_printer_location": True,
                "printer_id": target.printer_id,
                "toolhead_id": target.toolhead_id,
                "previous_spool_id": result.previous_spool_id,
            }

        freed = self._store.unbind_spool(spool_id)
        for printer_id, toolhead_id in freed:
            emit(ev.BINDING_CHANGED, "bindings",
                 printer_id=printer_id, toolhead_id=toolhead_id,
                 spool_id=None, previous_spool_id=spool_id)

        inventory = self._inventory()
        inventory.get_or_create_location(target.location_name)
        inventory.set_spool_location(spool_id, target.location_name)
        if self._locations is not None:
            self._locations.ensure(target.location_name)
        log.info(f"Assigned spool {spool_id} to location '{target.location_name}'")
        return {
            "spool_id": spool_id,
            "location": target.location_name,
            "is_printer_location": False,
            "freed": [{"printer_id": p, "toolhead_id": t} for p, t in freed],
        }
