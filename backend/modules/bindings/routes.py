"""Binding routes — toolhead/spool bindings and spool-to-location assignment."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.db import get_db
from core.dependencies import get_binding_store, get_spool_assigner
from modules.bindings.assignment import parse_location
from modules.bindings.schemas import BindingRequest, LocationAssignRequest
from modules.bindings.store import BindingConflict, InvalidToolhead, UnknownPrinter
from modules.inventory.spoolman import SpoolmanError
from modules.printers.models import Printer

log = logging.getLogger("filabridge.api")
router = APIRouter(tags=["Bindings"])


def conflict_response(e: BindingConflict) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(e),
            "existing_printer_id": e.printer_id,
            "existing_toolhead_id": e.toolhead_id,
        },
    )


@router.get("/bindings")
def list_bindings(db: Session = Depends(get_db), store=Depends(get_binding_store)):
    """Every current binding, with printer and toolhead display names."""
    printers = {p.id: p for p in db.query(Printer).all()}
    result = []
    for binding in store.all_bindings():
        printer = printers.get(binding.printer_id)
        entry = binding.to_dict()
        entry["printer_name"] = printer.name if printer else None
        entry["display_name"] = printer.toolhead_display_name(binding.toolhead_id) if printer else None
        result.append(entry)
    return result


@router.get("/bindings/spool/{spool_id}")
def find_spool_binding(spool_id: int, store=Depends(get_binding_store)):
    """Where a spool is loaded, or 404."""
    binding = store.find_spool(spool_id)
    if binding is None:
        raise HTTPException(status_code=404, detail=f"Spool {spool_id} is not bound")
    return binding.to_dict()


@router.post("/bindings")
def set_binding(body: BindingRequest, store=Depends(get_binding_store)):
    """Bind a spool to a toolhead; spool_id 0/null unbinds the toolhead."""
    if not body.spool_id:
        removed = store.unbind(body.printer_id, body.toolhead_id)
        return {
            "status": "unbound",
            "printer_id": body.printer_id,
            "toolhead_id": body.toolhead_id,
            "spool_id": removed,
        }

    try:
        result = store.bind(body.printer_id, body.toolhead_id, body.spool_id)
    except BindingConflict as e:
        return conflict_response(e)
    except UnknownPrinter as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidToolhead, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "status": "bound",
        **result.binding.to_dict(),
        "previous_spool_id": result.previous_spool_id,
    }


@router.delete("/bindings/{printer_id}/{toolhead_id}")
def delete_binding(printer_id: int, toolhead_id: int, store=Depends(get_binding_store)):
    """Unbind a toolhead (no-op if nothing is bound)."""
    removed = store.unbind(printer_id, toolhead_id)
    return {"printer_id": printer_id, "toolhead_id": toolhead_id, "spool_id": removed}


@router.post("/locations/assign")
def assign_spool_location(
    body: LocationAssignRequest,
    db: Session = Depends(get_db),
    assigner=Depends(get_spool_assigner),
):
    """Put a spool at a printer toolhead ("<printer> - <toolhead>") or a storage location."""
    target = parse_location(db, body.location)
    if target is None:
        raise HTTPException(status_code=400, detail="location is required")
    try:
        return assigner.assign(body.spool_id, target)
    except BindingConflict as e:
        return conflict_response(e)
    except UnknownPrinter as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidToolhead, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SpoolmanError as e:
        raise HTTPException(status_code=502, detail=f"Spoolman: {e}")
