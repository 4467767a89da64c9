"""
FilaBridge — Core request dependencies.

FastAPI dependencies that resolve module-provided services from the
registry at request time, plus the client-identity helper shared by the
pairing and audit-style logging paths.
"""

import logging

from fastapi import HTTPException, Request

from core.registry import registry

log = logging.getLogger("filabridge.api")


def _provider(interface_name: str):
    def _resolve():
        provider = registry.get_provider(interface_name)
        if provider is None:
            raise HTTPException(status_code=503, detail=f"{interface_name} is not available")
        return provider
    _resolve.__name__ = f"get_{interface_name}"
    return _resolve


get_binding_store = _provider("BindingStore")
get_inventory = _provider("InventoryClient")
get_reconciler = _provider("Reconciler")
get_monitor_supervisor = _provider("MonitorSupervisor")
get_pairing_manager = _provider("PairingSessionManager")
get_location_service = _provider("LocationService")
get_spool_assigner = _provider("SpoolAssigner")


def client_ip(request: Request) -> str:
    """Best-effort client address; honours the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"
