"""
Spoolman client — the external filament inventory.

Synchronous httpx client: it is called from monitor threads and from sync
FastAPI routes (which FastAPI runs in its threadpool). Every request
carries an explicit timeout; optional HTTP basic auth.

Only the fields the bridge depends on are interpreted: spool id,
used_weight, remaining_weight, first_used/last_used, location, archived,
and the filament name/material/vendor used for sorting and display.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

log = logging.getLogger("filabridge.spoolman")


class SpoolmanError(Exception):
    """A Spoolman request failed. status_code is None for transport errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def spool_display_name(spool: dict) -> str:
    """Display label "Material - Brand - Name", used for sorting and dropdowns."""
    filament = spool.get("filament") or {}
    vendor = filament.get("vendor") or {}
    return " - ".join([
        filament.get("material") or "Unknown Material",
        vendor.get("name") or "Unknown Brand",
        filament.get("name") or "Unnamed Spool",
    ])


def normalize_spool(spool: dict) -> dict:
    """Flatten the nested filament/vendor fields the UI shows."""
    filament = spool.get("filament") or {}
    vendor = filament.get("vendor") or {}
    out = dict(spool)
    out["name"] = filament.get("name") or f"Spool {spool.get('id')}"
    out["material"] = filament.get("material") or ""
    out["brand"] = vendor.get("name") or ""
    out["color_hex"] = filament.get("color_hex")
    out["display_name"] = spool_display_name(spool)
    return out


class SpoolmanClient:
    """Client for the Spoolman REST API (v1)."""

    def __init__(self, base_url: str, timeout: float = 10,
                 username: Optional[str] = None, password: Optional[str] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        auth = httpx.BasicAuth(username, password) if username and password else None
        self._client = httpx.Client(
            base_url=self.base_url, timeout=timeout, auth=auth, transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "SpoolmanClient":
        return cls(
            settings.spoolman_url,
            timeout=settings.spoolman_timeout,
            username=settings.spoolman_username,
            password=settings.spoolman_password,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SpoolmanError(f"error talking to Spoolman ({method} {path}): {e}") from e
        if resp.status_code >= 400:
            raise SpoolmanError(_error_message(resp), status_code=resp.status_code)
        return resp

    def _json(self, method: str, path: str, **kwargs) -> Any:
        resp = self._request(method, path, **kwargs)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise SpoolmanError(f"invalid JSON from Spoolman {path}") from e

    # ------------------------------------------------------------------
    # Spools / filaments
    # ------------------------------------------------------------------

    def health(self) -> bool:
        try:
            self._request("GET", "/api/v1/health")
            return True
        except SpoolmanError:
            return False

    def info(self) -> dict:
        return self._json("GET", "/api/v1/info") or {}

    def get_spool(self, spool_id: int) -> dict:
        return self._json("GET", f"/api/v1/spool/{spool_id}") or {}

    def get_spool_used_weight(self, spool_id: int) -> float:
        return float(self.get_spool(spool_id).get("used_weight") or 0.0)

    def update_spool(self, spool_id: int, data: Dict[str, Any]) -> dict:
        return self._json("PATCH", f"/api/v1/spool/{spool_id}", json=data) or {}

    def set_spool_used_weight(self, spool_id: int, used_weight: float) -> dict:
        return self.update_spool(spool_id, {"used_weight": used_weight})

    def add_spool_usage(self, spool_id: int, grams: float) -> float:
        """
        Add grams to the spool's used_weight (read-modify-write, not a blind
        overwrite). Also stamps last_used, and first_used when unset.
        Returns the new used_weight.
        """
        spool = self.get_spool(spool_id)
        current = float(spool.get("used_weight") or 0.0)
        new_used = current + grams
        stamp = _now_iso()
        data: Dict[str, Any] = {"used_weight": new_used, "last_used": stamp}
        if not spool.get("first_used"):
            data["first_used"] = stamp
        self.update_spool(spool_id, data)
        log.info(f"Updated spool {spool_id}: used_weight {current:.2f}g -> {new_used:.2f}g (+{grams:.2f}g)")
        return new_used

    def list_spools(self, include_empty: bool = False) -> List[dict]:
        """Non-archived spools sorted by display name, then remaining weight (ascending)."""
        spools = self._json("GET", "/api/v1/spool") or []
        spools = [s for s in spools if not s.get("archived")]
        if not include_empty:
            spools = [s for s in spools if s.get("remaining_weight") is None or s["remaining_weight"] > 0]
        spools.sort(key=lambda s: (spool_display_name(s), s.get("remaining_weight") or 0))
        return [normalize_spool(s) for s in spools]

    def list_filaments(self) -> List[dict]:
        filaments = self._json("GET", "/api/v1/filament") or []
        return sorted(
            (f for f in filaments if not f.get("archived")),
            key=lambda f: f.get("id") or 0,
        )

    def set_spool_location(self, spool_id: int, location: str) -> None:
        self.update_spool(spool_id, {"location": location})
        log.info(f"Spool {spool_id} location set to {location!r}")

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def list_locations(self) -> List[str]:
        """
        Location names known to Spoolman.

        Accepts a list of names, a list of {"name": ...} objects, or a
        {"data"|"results": [...]} wrapper. When the endpoint is missing
        (older Spoolman), falls back to the distinct spool locations.
        """
        try:
            body = self._json("GET", "/api/v1/location") or []
        except SpoolmanError as e:
            if e.status_code not in (404, 405):
                raise
            spools = self._json("GET", "/api/v1/spool") or []
            return sorted({s["location"] for s in spools if s.get("location")})

        if isinstance(body, dict):
            body = body.get("data") or body.get("results") or []
        if not isinstance(body, list):
            snippet = str(body)[:300]
            raise SpoolmanError(f"unexpected /location response shape: {snippet}")

        names = []
        for entry in body:
            name = entry.get("name") if isinstance(entry, dict) else entry
            if isinstance(name, str) and name:
                names.append(name)
        return names

    def location_exists(self, name: str) -> bool:
        return name in self.list_locations()

    def create_location(self, name: str) -> str:
        """
        Create a location. Spoolman builds without a location resource create
        locations implicitly the first time a spool uses them, so 404/405 is
        treated as success.
        """
        try:
            self._request("POST", "/api/v1/location", json={"name": name})
        except SpoolmanError as e:
            if e.status_code not in (404, 405):
                raise
            log.debug(f"Spoolman has no location resource; {name!r} will be created implicitly")
        return name

    def get_or_create_location(self, name: str) -> str:
        if self.location_exists(name):
            return name
        return self.create_location(name)

    def rename_location(self, old_name: str, new_name: str) -> None:
        self._request("PATCH", f"/api/v1/location/{quote(old_name, safe='')}", json={"name": new_name})
        log.info(f"Renamed Spoolman location {old_name!r} -> {new_name!r}")


def _error_message(resp: httpx.Response) -> str:
    """Surface Spoolman's {"title", "detail"} error body when present."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, list):
            detail = "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
        title = body.get("title")
        if detail or title:
            parts = [p for p in (title, detail) if p]
            return f"Spoolman API error (HTTP {resp.status_code}): {' - '.join(str(p) for p in parts)}"
    return f"Spoolman API error (HTTP {resp.status_code}): {resp.text[:300]}"
