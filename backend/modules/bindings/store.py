"""
Binding Store — durable (printer, toolhead) -> spool map.

Invariant: a spool id appears in at most one binding across the whole store.

Concurrency:
  - Every mutation runs under one process-wide writer lock and inside a
    single DB transaction, so the conflict check and the write cannot be
    interleaved by a concurrent binder.
  - The UNIQUE(spool_id) constraint backs the check up at the DB level.
  - Reads are single SELECTs and need no lock.
  - The location mirror (remote, slow, best-effort) is called after the
    transaction commits and outside the lock.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from modules.bindings.models import ToolheadBinding
from modules.printers.models import Printer

log = logging.getLogger("filabridge.bindings")


class UnknownPrinter(LookupError):
    def __init__(self, printer_id):
        super().__init__(f"printer {printer_id} not found")
        self.printer_id = printer_id


class InvalidToolhead(ValueError):
    def __init__(self, printer_name: str, toolhead_id: int, toolheads: int):
        super().__init__(
            f"toolhead {toolhead_id} is out of range for {printer_name} "
            f"(0..{toolheads - 1})"
        )
        self.toolhead_id = toolhead_id


class BindingConflict(Exception):
    """The spool is already bound to a different (printer, toolhead)."""

    def __init__(self, spool_id: int, printer_id: int, toolhead_id: int, printer_name: str = ""):
        super().__init__(
            f"spool {spool_id} is already assigned to "
            f"{printer_name or f'printer {printer_id}'} toolhead {toolhead_id}"
        )
        self.spool_id = spool_id
        self.printer_id = printer_id
        self.toolhead_id = toolhead_id
        self.printer_name = printer_name


@dataclass(frozen=True)
class Binding:
    printer_id: int
    toolhead_id: int
    spool_id: int
    bound_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: ToolheadBinding) -> "Binding":
        return cls(row.printer_id, row.toolhead_id, row.spool_id, row.bound_at)

    def to_dict(self) -> dict:
        return {
            "printer_id": self.printer_id,
            "toolhead_id": self.toolhead_id,
            "spool_id": self.spool_id,
            "bound_at": self.bound_at.isoformat() if self.bound_at else None,
        }


@dataclass(frozen=True)
class BindResult:
    binding: Binding
    previous_spool_id: Optional[int] = None

    @property
    def changed(self) -> bool:
        return self.previous_spool_id != self.binding.spool_id


class BindingStore:
    """Toolhead-to-spool bindings with a global spool-uniqueness invariant."""

    def __init__(self, session_factory, mirror=None):
        self._session_factory = session_factory
        self._write_lock = threading.RLock()
        self.mirror = mirror

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def bind(self, printer_id: int, toolhead_id: int, spool_id: int) -> BindResult:
        """
        Bind spool_id to (printer_id, toolhead_id).

        Raises BindingConflict when the spool is bound elsewhere; re-binding the
        same pair is an idempotent overwrite. Raises UnknownPrinter /
        InvalidToolhead for bad targets. Nothing is written on failure.
        """
        if spool_id is None or spool_id <= 0:
            raise ValueError("spool_id must be a positive integer")

        with self._write_lock:
            db = self._session_factory()
            try:
                printer = self._get_printer(db, printer_id)
                _check_toolhead(printer, toolhead_id)

                holder = db.query(ToolheadBinding).filter(
                    ToolheadBinding.spool_id == spool_id
                ).first()
                if holder and (holder.printer_id, holder.toolhead_id) != (printer_id, toolhead_id):
                    raise BindingConflict(
                        spool_id, holder.printer_id, holder.toolhead_id,
                        holder.printer.name if holder.printer else "",
                    )

                row = db.get(ToolheadBinding, (printer_id, toolhead_id))
                previous = row.spool_id if row else None
                now = datetime.now(timezone.utc).replace(tzinfo=None)
                if row is None:
                    row = ToolheadBinding(
                        printer_id=printer_id, toolhead_id=toolhead_id,
                        spool_id=spool_id, bound_at=now,
                    )
                    db.add(row)
                elif previous != spool_id:
                    row.spool_id = spool_id
                    row.bound_at = now
                db.commit()
                result = BindResult(Binding.from_row(row), previous)
            except IntegrityError:
                db.rollback()
                holder = self._find_spool(db, spool_id)
                if holder is None:
                    raise
                raise BindingConflict(spool_id, holder.printer_id, holder.toolhead_id)
            finally:
                db.close()

        log.info(
            f"Bound spool {spool_id} to printer {printer_id} toolhead {toolhead_id}"
            + (f" (replaced spool {previous})" if previous and previous != spool_id else "")
        )
        if self.mirror is not None:
            self.mirror.on_bind(result)
        return result

    def unbind(self, printer_id: int, toolhead_id: int) -> Optional[int]:
        """Remove a binding. Returns the spool that was bound, or None (no-op)."""
        with self._write_lock:
            db = self._session_factory()
            try:
                row = db.get(ToolheadBinding, (printer_id, toolhead_id))
                if row is None:
                    return None
                spool_id = row.spool_id
                db.delete(row)
                db.commit()
            finally:
                db.close()

        log.info(f"Unbound spool {spool_id} from printer {printer_id} toolhead {toolhead_id}")
        if self.mirror is not None:
            self.mirror.on_unbind(printer_id, toolhead_id, spool_id)
        return spool_id

    def unbind_spool(self, spool_id: int) -> List[Tuple[int, int]]:
        """Remove the spool from whichever toolhead holds it. Returns the freed pairs."""
        with self._write_lock:
            db = self._session_factory()
            try:
                rows = db.query(ToolheadBinding).filter(ToolheadBinding.spool_id == spool_id).all()
                freed = [(r.printer_id, r.toolhead_id) for r in rows]
                for r in rows:
                    db.delete(r)
                db.commit()
            finally:
                db.close()
        for printer_id, toolhead_id in freed:
            log.info(f"Cleared spool {spool_id} from printer {printer_id} toolhead {toolhead_id}")
        return freed

    def remove_printer(self, printer_id: int) -> List[Tuple[int, int]]:
        """
        Drop every binding of a printer. Returns the freed (toolhead_id, spool_id) pairs.

        Call this before deleting the printer row: each freed binding is
        mirrored like an unbind, which needs the printer name.
        """
        with self._write_lock:
            db = self._session_factory()
            try:
                rows = db.query(ToolheadBinding).filter(
                    ToolheadBinding.printer_id == printer_id
                ).order_by(ToolheadBinding.toolhead_id).all()
                freed = [(r.toolhead_id, r.spool_id) for r in rows]
                for r in rows:
                    db.delete(r)
                db.commit()
            finally:
                db.close()

        for toolhead_id, spool_id in freed:
            log.info(f"Unbound spool {spool_id} from printer {printer_id} toolhead {toolhead_id} (printer removed)")
            if self.mirror is not None:
                self.mirror.on_unbind(printer_id, toolhead_id, spool_id)
        return freed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, printer_id: int, toolhead_id: int) -> Optional[int]:
        db = self._session_factory()
        try:
            row = db.get(ToolheadBinding, (printer_id, toolhead_id))
            return row.spool_id if row else None
        finally:
            db.close()

    def find_spool(self, spool_id: int) -> Optional[Binding]:
        db = self._session_factory()
        try:
            row = self._find_spool(db, spool_id)
            return Binding.from_row(row) if row else None
        finally:
            db.close()

    def all_bindings(self) -> List[Binding]:
        """Point-in-time snapshot of every binding (one SELECT)."""
        db = self._session_factory()
        try:
            rows = db.query(ToolheadBinding).order_by(
                ToolheadBinding.printer_id, ToolheadBinding.toolhead_id
            ).all()
            return [Binding.from_row(r) for r in rows]
        finally:
            db.close()

    def bindings_for(self, printer_id: int) -> Dict[int, Binding]:
        return {b.toolhead_id: b for b in self.all_bindings() if b.printer_id == printer_id}

    # ------------------------------------------------------------------

    @staticmethod
    def _get_printer(db, printer_id: int) -> Printer:
        printer = db.get(Printer, printer_id)
        if printer is None:
            raise UnknownPrinter(printer_id)
        return printer

    @staticmethod
    def _find_spool(db, spool_id: int) -> Optional[ToolheadBinding]:
        return db.query(ToolheadBinding).filter(ToolheadBinding.spool_id == spool_id).first()


def _check_toolhead(printer: Printer, toolhead_id: int) -> None:
    if toolhead_id is None or toolhead_id < 0 or toolhead_id >= (printer.toolheads or 0):
        raise InvalidToolhead(printer.name, toolhead_id, printer.toolheads or 0)
