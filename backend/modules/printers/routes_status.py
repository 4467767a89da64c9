"""Printer status routes — combined printer state + bindings snapshot, monitor details."""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.base import MachineState, MonitorPhase, NO_PRINTERS_KEY
from core.db import get_db
from core.dependencies import get_binding_store, get_monitor_supervisor
from modules.printers.models import Printer

log = logging.getLogger("filabridge.api")
router = APIRouter()


def build_status(db: Session, store, supervisor) -> dict:
    """
    Snapshot used by the dashboard and pushed over the WebSocket.

    Bindings come from one store read so they are a single point in time.
    """
    printers = db.query(Printer).order_by(Printer.display_order, Printer.id).all()
    runtime = supervisor.snapshot()
    bindings = store.all_bindings()

    printer_data = {}
    binding_data = {}
    for printer in printers:
        live = runtime.get(printer.id)
        if live is not None:
            state, phase, label = live["state"], live["phase"], live["job_label"]
        else:
            state = printer.last_state or MachineState.OFFLINE.value
            phase, label = MonitorPhase.IDLE_OR_OFFLINE.value, None
        names = printer.toolhead_display_names()
        printer_data[str(printer.id)] = {
            "name": printer.name,
            "model": printer.model,
            "state": state or MachineState.OFFLINE.value,
            "phase": phase,
            "job_label": label,
            "toolheads": printer.toolheads,
            "toolhead_names": {str(k): v for k, v in names.items()},
            "is_active": bool(printer.is_active),
            "monitored": live is not None,
        }
        binding_data[str(printer.id)] = {}

    names_by_printer = {p.id: p for p in printers}
    for binding in bindings:
        printer = names_by_printer.get(binding.printer_id)
        if printer is None:
            continue
        binding_data[str(binding.printer_id)][str(binding.toolhead_id)] = {
            "spool_id": binding.spool_id,
            "display_name": printer.toolhead_display_name(binding.toolhead_id),
            "bound_at": binding.bound_at.isoformat() if binding.bound_at else None,
        }

    if not printer_data:
        printer_data[NO_PRINTERS_KEY] = {
            "name": "No printers configured",
            "model": None,
            "state": MachineState.NOT_CONFIGURED.value,
            "phase": MonitorPhase.IDLE_OR_OFFLINE.value,
            "job_label": None,
            "toolheads": 0,
        }

    return {
        "printers": printer_data,
        "bindings": binding_data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/status", tags=["Status"])
def get_status(
    db: Session = Depends(get_db),
    store=Depends(get_binding_store),
    supervisor=Depends(get_monitor_supervisor),
):
    """Per-printer state and all bindings."""
    return build_status(db, store, supervisor)


@router.get("/printers/{printer_id}/monitor", tags=["Status"])
def get_monitor_state(
    printer_id: int,
    db: Session = Depends(get_db),
    supervisor=Depends(get_monitor_supervisor),
):
    """Runtime state of one printer's monitor thread."""
    printer = db.get(Printer, printer_id)
    if not printer:
        raise HTTPException(status_code=404, detail="Printer not found")
    live = supervisor.snapshot().get(printer_id)
    if live is None:
        return {
            "printer_id": printer_id,
            "name": printer.name,
            "monitored": False,
            "state": printer.last_state,
            "last_seen": printer.last_seen.isoformat() if printer.last_seen else None,
        }
    return {**live, "monitored": True}
