"""Reconciliation routes — error ledger, usage ledger, manual completion trigger."""

from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from core.db import get_db
from core.dependencies import get_reconciler
from modules.printers.models import Printer
from modules.reconciliation.schemas import PrintCompleteTestRequest

log = logging.getLogger("filabridge.api")
router = APIRouter(tags=["Reconciliation"])


# ====================================================================
# Error ledger
# ====================================================================

@router.get("/print-errors")
def list_print_errors(include_acknowledged: bool = False, reconciler=Depends(get_reconciler)):
    """Reconciliation failures awaiting a manual Spoolman correction."""
    return reconciler.list_errors(include_acknowledged=include_acknowledged)


@router.post("/print-errors/{error_id}/acknowledge")
def acknowledge_print_error(error_id: int, reconciler=Depends(get_reconciler)):
    if not reconciler.acknowledge(error_id):
        raise HTTPException(status_code=404, detail="Print error not found")
    return {"id": error_id, "acknowledged": True}


# ====================================================================
# Usage ledger
# ====================================================================

@router.get("/usage-events")
def list_usage_events(
    printer_id: Optional[int] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    reconciler=Depends(get_reconciler),
):
    """Most recent usage charged to spools, newest first."""
    return reconciler.usage_events(printer_id=printer_id, limit=limit)


# ====================================================================
# Manual trigger
# ====================================================================

@router.post("/test/print_complete")
def simulate_print_complete(
    body: PrintCompleteTestRequest,
    db: Session = Depends(get_db),
    reconciler=Depends(get_reconciler),
):
    """Run reconciliation for a fabricated completion, exactly as a real one would."""
    printer = db.get(Printer, body.printer_id)
    if not printer:
        raise HTTPException(status_code=404, detail="Printer not found")
    log.info(f"Manual print completion for {printer.name}: {body.usage} ({body.job_label})")
    outcome = reconciler.reconcile(printer.id, body.usage, body.job_label, printer_name=printer.name)
    return outcome.to_dict()
