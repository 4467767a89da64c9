"""Printer CRUD routes — create, read, update, delete, toolhead names, test-connection."""

from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from core import events as ev
from core.config import settings
from core.db import get_db
from core.dependencies import get_binding_store, get_monitor_supervisor
from core.event_bus import emit
from modules.bindings.models import ToolheadBinding
from modules.printers.adapters.prusalink import PrusaLinkError, PrusaLinkPrinter
from modules.printers.models import Printer, ToolheadName
from modules.printers.printer_models import (
    SUPPORTED_MODELS, UNKNOWN_MODEL, default_toolheads, detect_model,
)
from modules.printers.schemas import (
    PrinterCreate, PrinterUpdate, PrinterResponse, ToolheadNameUpdate, ConnectionTestRequest,
)

log = logging.getLogger("filabridge.api")
router = APIRouter()


def _to_response(printer: Printer) -> PrinterResponse:
    return PrinterResponse(
        id=printer.id,
        name=printer.name,
        model=printer.model,
        address=printer.address,
        toolheads=printer.toolheads,
        is_active=bool(printer.is_active),
        display_order=printer.display_order or 0,
        has_api_key=bool(printer.api_key),
        last_state=printer.last_state,
        last_seen=printer.last_seen,
        toolhead_names=printer.toolhead_display_names(),
    )


def _get_printer_or_404(db: Session, printer_id: int) -> Printer:
    printer = db.get(Printer, printer_id)
    if not printer:
        raise HTTPException(status_code=404, detail="Printer not found")
    return printer


def _resync(supervisor, printer_id: int, action: str) -> None:
    supervisor.sync()
    emit(ev.PRINTERS_CHANGED, "printers", printer_id=printer_id, action=action)


# ====================================================================
# Printers CRUD
# ====================================================================

@router.get("/printers", response_model=List[PrinterResponse], tags=["Printers"])
def list_printers(active_only: bool = False, db: Session = Depends(get_db)):
    """List all printers."""
    query = db.query(Printer)
    if active_only:
        query = query.filter(Printer.is_active.is_(True))
    return [_to_response(p) for p in query.order_by(Printer.display_order, Printer.id).all()]


# Static route registered before /printers/{printer_id}
@router.get("/printers/models", tags=["Printers"])
def list_printer_models():
    """Known PrusaLink models and their default toolhead counts."""
    return {
        "models": SUPPORTED_MODELS,
        "default_toolheads": {m: default_toolheads(m) for m in SUPPORTED_MODELS},
    }


@router.post("/printers", response_model=PrinterResponse, status_code=status.HTTP_201_CREATED, tags=["Printers"])
def create_printer(
    printer: PrinterCreate,
    db: Session = Depends(get_db),
    supervisor=Depends(get_monitor_supervisor),
):
    """Create a new printer."""
    existing = db.query(Printer).filter(Printer.name == printer.name).first()
    if existing:
        raise HTTPException(status_code=400, detail=f"Printer '{printer.name}' already exists")

    db_printer = Printer(
        name=printer.name,
        model=printer.model,
        address=printer.address,
        api_key=printer.api_key or None,
        username=printer.username or "maker",
        password=printer.password or None,
        toolheads=printer.toolheads,
        is_active=printer.is_active,
        display_order=printer.display_order,
    )
    db.add(db_printer)
    db.commit()
    db.refresh(db_printer)
    log.info(f"Added printer {db_printer.name} ({db_printer.address}, {db_printer.toolheads} toolheads)")

    _resync(supervisor, db_printer.id, "created")
    return _to_response(db_printer)


@router.get("/printers/{printer_id}", response_model=PrinterResponse, tags=["Printers"])
def get_printer(printer_id: int, db: Session = Depends(get_db)):
    """Get a specific printer."""
    return _to_response(_get_printer_or_404(db, printer_id))


@router.put("/printers/{printer_id}", response_model=PrinterResponse, tags=["Printers"])
def update_printer(
    printer_id: int,
    updates: PrinterUpdate,
    db: Session = Depends(get_db),
    supervisor=Depends(get_monitor_supervisor),
):
    """Update a printer. Shrinking the toolhead count is refused while the removed toolheads hold spools."""
    printer = _get_printer_or_404(db, printer_id)
    update_data = updates.model_dump(exclude_unset=True)

    if "name" in update_data:
        name = (update_data["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="printer name is required")
        clash = db.query(Printer).filter(Printer.name == name, Printer.id != printer_id).first()
        if clash:
            raise HTTPException(status_code=400, detail=f"Printer '{name}' already exists")
        update_data["name"] = name

    new_count = update_data.get("toolheads")
    if new_count is not None and new_count < printer.toolheads:
        stranded = db.query(ToolheadBinding).filter(
            ToolheadBinding.printer_id == printer_id,
            ToolheadBinding.toolhead_id >= new_count,
        ).order_by(ToolheadBinding.toolhead_id).all()
        if stranded:
            taken = ", ".join(f"toolhead {b.toolhead_id} (spool {b.spool_id})" for b in stranded)
            raise HTTPException(
                status_code=400,
                detail=f"Cannot reduce toolheads to {new_count}: unassign {taken} first",
            )
        db.query(ToolheadName).filter(
            ToolheadName.printer_id == printer_id,
            ToolheadName.toolhead_id >= new_count,
        ).delete(synchronize_session=False)

    # Empty credential fields mean "keep the stored value"
    for secret in ("api_key", "password"):
        if secret in update_data and not update_data[secret]:
            del update_data[secret]

    for field, value in update_data.items():
        setattr(printer, field, value)

    db.commit()
    db.refresh(printer)
    _resync(supervisor, printer_id, "updated")
    return _to_response(printer)


@router.delete("/printers/{printer_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Printers"])
def delete_printer(
    printer_id: int,
    db: Session = Depends(get_db),
    store=Depends(get_binding_store),
    supervisor=Depends(get_monitor_supervisor),
):
    """Delete a printer and its bindings."""
    printer = _get_printer_or_404(db, printer_id)
    name = printer.name
    removed = store.remove_printer(printer_id)

    db.delete(printer)
    db.commit()
    log.info(f"Deleted printer {name} ({len(removed)} binding(s) removed)")
    _resync(supervisor, printer_id, "deleted")


# ====================================================================
# Toolhead names
# ====================================================================

@router.put("/printers/{printer_id}/toolheads/{toolhead_id}/name", tags=["Printers"])
def set_toolhead_name(
    printer_id: int,
    toolhead_id: int,
    body: ToolheadNameUpdate,
    db: Session = Depends(get_db),
):
    """Set the display name used for a toolhead (and its Spoolman location)."""
    printer = _get_printer_or_404(db, printer_id)
    if toolhead_id < 0 or toolhead_id >= printer.toolheads:
        raise HTTPException(
            status_code=400,
            detail=f"toolhead {toolhead_id} is out of range for {printer.name} (0..{printer.toolheads - 1})",
        )

    display_name = body.display_name.strip()
    if not display_name:
        raise HTTPException(status_code=400, detail="display name cannot be empty")

    row = db.query(ToolheadName).filter(
        ToolheadName.printer_id == printer_id,
        ToolheadName.toolhead_id == toolhead_id,
    ).first()
    if row is None:
        row = ToolheadName(printer_id=printer_id, toolhead_id=toolhead_id, display_name=display_name)
        db.add(row)
    else:
        row.display_name = display_name
    db.commit()
    emit(ev.PRINTERS_CHANGED, "printers", printer_id=printer_id, action="toolhead_renamed")
    return {"printer_id": printer_id, "toolhead_id": toolhead_id, "display_name": display_name}


# ====================================================================
# Test Connection
# ====================================================================

@router.post("/printers/test-connection", tags=["Printers"])
def test_printer_connection(request: ConnectionTestRequest):
    """
    Test connection to a printer without saving, and detect its model from the hostname.

    An unreachable printer is not an error here: the response carries
    detected=False and a warning so it can still be added by hand.
    """
    client = PrusaLinkPrinter(
        address=request.address,
        api_key=request.api_key or "",
        username=request.username or "maker",
        password=request.password or "",
        timeout=settings.prusalink_timeout,
    )
    try:
        info = client.test_connection()
    except PrusaLinkError as e:
        log.info(f"Model detection for {request.address} failed: {e}")
        return {
            "success": False,
            "error": str(e),
            "model": UNKNOWN_MODEL,
            "hostname": "Unknown",
            "detected": False,
            "warning": "Could not connect to printer. You can still add it manually.",
        }
    model = detect_model(info.get("hostname"))
    log.info(f"Detected {model} at {request.address} (hostname {info.get('hostname')!r})")
    return {
        "success": True,
        **info,
        "model": model,
        "detected": True,
        "default_toolheads": default_toolheads(model),
    }
