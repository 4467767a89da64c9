"""
Shared test doubles.

FakeInventory stands in for SpoolmanClient (same method names, in-memory
spools). FakeAdapter replays a scripted list of machine states.
"""

from modules.inventory.spoolman import SpoolmanError
from modules.printers.adapters.prusalink import MachineStatus, PrusaLinkError


class FakeInventory:
    """In-memory Spoolman. Spool ids listed in fail_spools reject updates."""

    base_url = "http://spoolman.test:7912"

    def __init__(self, spools=None, locations=None):
        self.spools = spools if spools is not None else {}
        self.locations = list(locations or [])
        self.fail_spools = set()
        self.unreachable = False
        self.location_calls = []

    def _check(self):
        if self.unreachable:
            raise SpoolmanError("error talking to Spoolman: connection refused")

    def add_spool(self, spool_id, used_weight=0.0, location="", name="Galaxy Black",
                  material="PLA", brand="Prusament", remaining_weight=1000.0):
        self.spools[spool_id] = {
            "id": spool_id,
            "used_weight": used_weight,
            "remaining_weight": remaining_weight,
            "location": location,
            "name": name,
            "material": material,
            "brand": brand,
            "color_hex": "000000",
            "display_name": f"{material} - {brand} - {name}",
        }

    def get_spool(self, spool_id):
        self._check()
        if spool_id not in self.spools:
            raise SpoolmanError(f"Spoolman API error (HTTP 404): spool {spool_id}", status_code=404)
        return dict(self.spools[spool_id])

    def add_spool_usage(self, spool_id, grams):
        self._check()
        if spool_id in self.fail_spools:
            raise SpoolmanError("Spoolman API error (HTTP 500): boom", status_code=500)
        spool = self.spools.setdefault(spool_id, {"id": spool_id, "used_weight": 0.0})
        spool["used_weight"] = float(spool.get("used_weight") or 0.0) + grams
        return spool["used_weight"]

    def set_spool_location(self, spool_id, location):
        self._check()
        self.location_calls.append((spool_id, location))
        self.spools.setdefault(spool_id, {"id": spool_id, "used_weight": 0.0})["location"] = location

    def list_spools(self, include_empty=False):
        self._check()
        return [dict(s) for s in self.spools.values()]

    def list_filaments(self):
        self._check()
        return []

    def list_locations(self):
        self._check()
        return list(self.locations)

    def location_exists(self, name):
        return name in self.list_locations()

    def create_location(self, name):
        self._check()
        if name not in self.locations:
            self.locations.append(name)
        return name

    def get_or_create_location(self, name):
        return self.create_location(name)

    def rename_location(self, old_name, new_name):
        self._check()
        self.locations = [new_name if n == old_name else n for n in self.locations]

    def info(self):
        self._check()
        return {"version": "0.20.0"}

    def health(self):
        return not self.unreachable


class FakeAdapter:
    """Replays (state, label) pairs; an Exception entry makes that poll fail."""

    address = "fake-printer.local"

    def __init__(self, script, payload=b"; filament used [g]=10.0\n"):
        self.script = list(script)
        self.payload = payload
        self.downloads = []

    def get_machine_status(self):
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        state, label = item if isinstance(item, tuple) else (item, None)
        return MachineStatus(state=state, internal_state=state.value, job_label=label)

    def download_file_with_retry(self, label, attempts=3, delay=5, cancel=None):
        self.downloads.append(label)
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


def poll_error(message="connection refused"):
    return PrusaLinkError(message)
