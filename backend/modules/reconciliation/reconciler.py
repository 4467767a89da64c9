"""
Usage Reconciler — charges extracted usage to the bound spools.

Flow for one detected completion (handle_completion):
  1. download the print file (the adapter retries internally)
  2. extract {toolhead: grams}
  3. for each toolhead with usage: look up the bound spool; skip unbound
     toolheads; add the grams to the spool in Spoolman (read + add + write);
     append a UsageEvent
  4. any failure in 1-3 produces exactly one ReconciliationError for the
     print, carrying every failure message; other toolheads still run

The download and the Spoolman calls happen outside every lock; only the
ledger inserts are serialized.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core import events as ev
from core.event_bus import emit
from modules.inventory.spoolman import SpoolmanError
from modules.reconciliation.extractor import extract_usage
from modules.reconciliation.models import ReconciliationError, UsageEvent

log = logging.getLogger("filabridge.reconcile")

NO_LABEL_MESSAGE = "print finished but no job file was captured"
NO_USAGE_MESSAGE = "no filament usage data found in print file"


class NoUsageData(Exception):
    """The extractor ran but the file carries no usable usage data."""


@dataclass
class ReconcileOutcome:
    printer_id: int
    job_label: Optional[str]
    applied: List[dict] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "printer_id": self.printer_id,
            "job_label": self.job_label,
            "ok": self.ok,
            "applied": self.applied,
            "skipped_toolheads": self.skipped,
            "errors": self.errors,
            "error_id": self.error_id,
        }


class Reconciler:

    def __init__(self, session_factory, binding_store, inventory_provider: Callable):
        self._session_factory = session_factory
        self._store = binding_store
        self._inventory = inventory_provider
        self._ledger_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Completion handling
    # ------------------------------------------------------------------

    def handle_completion(self, printer_id: int, printer_name: str,
                          job_label: Optional[str], download: Callable[[str], bytes]) -> ReconcileOutcome:
        """Download, extract and reconcile one finished print."""
        if not job_label:
            return self._fail(printer_id, printer_name, job_label, NO_LABEL_MESSAGE)

        try:
            payload = download(job_label)
        except Exception as e:
            return self._fail(printer_id, printer_name, job_label, f"failed to download print file: {e}")

        try:
            usage = self.extract(payload)
        except NoUsageData:
            return self._fail(printer_id, printer_name, job_label, NO_USAGE_MESSAGE)

        log.info(f"[{printer_name}] {job_label}: usage {usage}")
        return self.reconcile(printer_id, usage, job_label, printer_name=printer_name)

    @staticmethod
    def extract(payload: bytes) -> Dict[int, float]:
        usage = extract_usage(payload)
        if not usage:
            raise NoUsageData()
        return usage

    def reconcile(self, printer_id: int, usage: Dict[int, float], job_label: Optional[str],
                  printer_name: Optional[str] = None) -> ReconcileOutcome:
        """Apply usage for one print. Never raises for per-toolhead failures."""
        outcome = ReconcileOutcome(printer_id=printer_id, job_label=job_label)
        inventory = self._inventory()

        for toolhead_id in sorted(usage):
            grams = float(usage[toolhead_id])
            if grams <= 0:
                continue

            spool_id = self._store.lookup(printer_id, toolhead_id)
            if spool_id is None:
                log.info(f"[{printer_name or printer_id}] Toolhead {toolhead_id} used {grams:.2f}g but has no spool mapped, skipping")
                outcome.skipped.append(toolhead_id)
                continue

            try:
                new_used = inventory.add_spool_usage(spool_id, grams)
            except SpoolmanError as e:
                outcome.errors.append(f"toolhead {toolhead_id} (spool {spool_id}): failed to update Spoolman: {e}")
                continue

            try:
                event = self._append_event(printer_id, printer_name, toolhead_id, spool_id, grams, job_label)
            except SQLAlchemyError as e:
                outcome.errors.append(
                    f"toolhead {toolhead_id} (spool {spool_id}): Spoolman updated but ledger write failed: {e}"
                )
                continue
            event["used_weight"] = new_used
            outcome.applied.append(event)

        if outcome.errors:
            outcome.error_id = self.record_error(
                printer_id, printer_name, job_label, "; ".join(outcome.errors)
            )
            emit(ev.PRINT_RECONCILE_FAILED, "reconciliation",
                 printer_id=printer_id, job_label=job_label,
                 error_id=outcome.error_id, message=outcome.errors[0])
        if outcome.applied:
            emit(ev.PRINT_COMPLETED, "reconciliation",
                 printer_id=printer_id, job_label=job_label,
                 usage={str(k): v for k, v in usage.items()}, events=outcome.applied)
        return outcome

    def _fail(self, printer_id, printer_name, job_label, message) -> ReconcileOutcome:
        outcome = ReconcileOutcome(printer_id=printer_id, job_label=job_label, errors=[message])
        outcome.error_id = self.record_error(printer_id, printer_name, job_label, message)
        emit(ev.PRINT_RECONCILE_FAILED, "reconciliation",
             printer_id=printer_id, job_label=job_label,
             error_id=outcome.error_id, message=message)
        return outcome

    # ------------------------------------------------------------------
    # Ledgers
    # ------------------------------------------------------------------

    def _append_event(self, printer_id, printer_name, toolhead_id, spool_id, grams, job_label) -> dict:
        with self._ledger_lock:
            db = self._session_factory()
            try:
                row = UsageEvent(
                    printer_id=printer_id, printer_name=printer_name,
                    toolhead_id=toolhead_id, spool_id=spool_id,
                    grams=grams, job_label=job_label,
                    recorded_at=_utcnow(),
                )
                db.add(row)
                db.commit()
                return row.to_dict()
            except SQLAlchemyError:
                db.rollback()
                raise
            finally:
                db.close()

    def record_error(self, printer_id: int, printer_name: Optional[str],
                     job_label: Optional[str], message: str) -> int:
        """Insert one unacknowledged ReconciliationError; returns its id."""
        log.error(
            f"Print processing failed for {printer_name or printer_id} ({job_label or 'no file'}): "
            f"{message} - manual Spoolman update required"
        )
        with self._ledger_lock:
            db = self._session_factory()
            try:
                row = ReconciliationError(
                    printer_id=printer_id, printer_name=printer_name,
                    job_label=job_label, message=message,
                    occurred_at=_utcnow(), acknowledged=False,
                )
                db.add(row)
                db.commit()
                return row.id
            finally:
                db.close()

    def list_errors(self, include_acknowledged: bool = False) -> List[dict]:
        db = self._session_factory()
        try:
            q = db.query(ReconciliationError)
            if not include_acknowledged:
                q = q.filter(ReconciliationError.acknowledged.is_(False))
            rows = q.order_by(ReconciliationError.occurred_at.desc(), ReconciliationError.id.desc()).all()
            return [r.to_dict() for r in rows]
        finally:
            db.close()

    def acknowledge(self, error_id: int) -> bool:
        """Flip acknowledged. Returns False for an unknown id; idempotent otherwise."""
        with self._ledger_lock:
            db = self._session_factory()
            try:
                row = db.get(ReconciliationError, error_id)
                if row is None:
                    return False
                if not row.acknowledged:
                    row.acknowledged = True
                    row.acknowledged_at = _utcnow()
                    db.commit()
            finally:
                db.close()
        emit(ev.PRINT_ERROR_ACKNOWLEDGED, "reconciliation", error_id=error_id)
        return True

    def usage_events(self, printer_id: Optional[int] = None, limit: int = 100) -> List[dict]:
        db = self._session_factory()
        try:
            q = db.query(UsageEvent)
            if printer_id is not None:
                q = q.filter(UsageEvent.printer_id == printer_id)
            rows = q.order_by(UsageEvent.recorded_at.desc(), UsageEvent.id.desc()).limit(limit).all()
            return [r.to_dict() for r in rows]
        finally:
            db.close()


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)
