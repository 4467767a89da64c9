"""
Pairing Session Manager — merges a spool scan and a location scan into one assignment.

A phone scans two tags in either order (spool then location, or location
then spool). Both scans carry the same client key, so they merge into one
session row; when the row holds a spool and a location the assignment runs
and the session is deleted.

Rules:
  - an expired session is treated as absent (and deleted on sight)
  - a merge only overwrites a field when the new scan supplies a value
  - TTL runs from creation; merges do not extend it
  - a session is claimed (deleted) under the lock before the assignment
    runs, so concurrent completing scans assign exactly once
  - on BindingConflict the session stays deleted so the user can rescan;
    on any other assignment failure it is put back for a retry
"""

import hashlib
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core import events as ev
from core.event_bus import emit
from modules.bindings.assignment import ParsedLocation, parse_location
from modules.bindings.store import BindingConflict
from modules.pairing.models import PairingSession

log = logging.getLogger("filabridge.pairing")

SWEEP_INTERVAL = 60


class PairingError(ValueError):
    pass


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def session_key_for(client_ip: str) -> str:
    """Deterministic session key: first 16 hex chars of md5(client address)."""
    return hashlib.md5((client_ip or "").encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class SessionView:
    session_key: str
    spool_id: Optional[int]
    location_name: Optional[str]
    printer_id: Optional[int]
    printer_name: Optional[str]
    toolhead_id: Optional[int]
    is_printer_location: bool
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_row(cls, row: PairingSession) -> "SessionView":
        return cls(
            session_key=row.session_key,
            spool_id=row.spool_id,
            location_name=row.location_name,
            printer_id=row.printer_id,
            printer_name=row.printer_name,
            toolhead_id=row.toolhead_id,
            is_printer_location=bool(row.is_printer_location),
            created_at=row.created_at,
            expires_at=row.expires_at,
        )

    @property
    def has_spool(self) -> bool:
        return bool(self.spool_id and self.spool_id > 0)

    @property
    def has_location(self) -> bool:
        if self.is_printer_location:
            return self.printer_id is not None and self.toolhead_id is not None
        return bool(self.location_name)

    @property
    def is_complete(self) -> bool:
        return self.has_spool and self.has_location

    def target(self) -> ParsedLocation:
        if self.is_printer_location:
            return ParsedLocation(self.location_name, self.printer_id, self.printer_name, self.toolhead_id)
        return ParsedLocation(self.location_name)

    def message(self) -> str:
        if self.has_spool and not self.has_location:
            return f"Spool {self.spool_id} selected. Now scan a location tag."
        if self.has_location and not self.has_spool:
            return f"Location '{self.location_name}' selected. Now scan a spool tag."
        return "Session started. Scan a spool or location tag."

    def to_dict(self) -> dict:
        return {
            "active": True,
            "session_id": self.session_key,
            "has_spool": self.has_spool,
            "has_location": self.has_location,
            "spool_id": self.spool_id,
            "location_name": self.location_name,
            "printer_id": self.printer_id,
            "printer_name": self.printer_name,
            "toolhead_id": self.toolhead_id,
            "is_printer_location": self.is_printer_location,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass
class ScanResult:
    session: SessionView
    complete: bool = False
    assignment: Optional[dict] = None

    def to_dict(self) -> dict:
        if self.complete:
            return {"complete": True, "message": "Assignment complete.", "assignment": self.assignment}
        return {"complete": False, "message": self.session.message(), "session": self.session.to_dict()}


class PairingSessionManager:

    def __init__(self, session_factory, assigner, settings,
                 clock: Optional[Callable[[], datetime]] = None):
        self._session_factory = session_factory
        self._assigner = assigner
        self._settings = settings
        self._clock = clock or _utcnow
        self._lock = threading.Lock()

    def scan(self, client_key: str, spool_id: Optional[int] = None,
             location: Optional[str] = None) -> ScanResult:
        """
        Record one scan. Raises PairingError for an empty scan, and lets
        BindingConflict (and other assignment errors) propagate.
        """
        if spool_id is not None and spool_id <= 0:
            spool_id = None
        location = (location or "").strip() or None
        if spool_id is None and location is None:
            raise PairingError("scan must carry a spool id or a location")

        db = self._session_factory()
        try:
            target = parse_location(db, location) if location else None
        finally:
            db.close()

        with self._lock:
            db = self._session_factory()
            try:
                now = self._clock()
                row = db.get(PairingSession, client_key)
                if row is not None and row.expires_at <= now:
                    log.info(f"Session {client_key} expired, starting a new one")
                    db.delete(row)
                    db.flush()
                    row = None
                if row is None:
                    row = PairingSession(
                        session_key=client_key,
                        created_at=now,
                        expires_at=now + timedelta(seconds=self._settings.pairing_session_ttl),
                        is_printer_location=False,
                    )
                    db.add(row)

                if spool_id is not None:
                    row.spool_id = spool_id
                if target is not None:
                    row.location_name = target.location_name
                    row.is_printer_location = target.is_printer
                    row.printer_id = target.printer_id
                    row.printer_name = target.printer_name
                    row.toolhead_id = target.toolhead_id

                db.flush()
                view = SessionView.from_row(row)
                if view.is_complete:
                    db.delete(row)
                db.commit()
            finally:
                db.close()

        if not view.is_complete:
            emit(ev.PAIRING_UPDATED, "pairing",
                 session_key=client_key, has_spool=view.has_spool, has_location=view.has_location)
            return ScanResult(session=view)

        try:
            assignment = self._assigner.assign(view.spool_id, view.target())
        except BindingConflict as e:
            log.warning(f"Pairing {client_key} rejected: {e}")
            raise
        except Exception:
            self._restore(view)
            raise

        log.info(f"Pairing {client_key} completed: spool {view.spool_id} -> {view.location_name}")
        emit(ev.PAIRING_COMPLETED, "pairing",
             session_key=client_key, spool_id=view.spool_id, location=view.location_name)
        return ScanResult(session=view, complete=True, assignment=assignment)

    def status(self, client_key: str) -> Optional[SessionView]:
        """The live session for a client, or None (expired sessions are pruned)."""
        with self._lock:
            db = self._session_factory()
            try:
                row = db.get(PairingSession, client_key)
                if row is None:
                    return None
                if row.expires_at <= self._clock():
                    db.delete(row)
                    db.commit()
                    return None
                return SessionView.from_row(row)
            finally:
                db.close()

    def cancel(self, client_key: str) -> bool:
        with self._lock:
            db = self._session_factory()
            try:
                row = db.get(PairingSession, client_key)
                if row is None:
                    return False
                db.delete(row)
                db.commit()
                return True
            finally:
                db.close()

    def sweep_expired(self) -> int:
        """Delete every expired session. Returns how many were removed."""
        with self._lock:
            db = self._session_factory()
            try:
                count = db.query(PairingSession).filter(
                    PairingSession.expires_at <= self._clock()
                ).delete(synchronize_session=False)
                db.commit()
            finally:
                db.close()
        if count:
            log.debug(f"Swept {count} expired pairing session(s)")
        return count

    def _restore(self, view: SessionView) -> None:
        with self._lock:
            db = self._session_factory()
            try:
                if db.get(PairingSession, view.session_key) is None:
                    db.add(PairingSession(
                        session_key=view.session_key,
                        spool_id=view.spool_id,
                        location_name=view.location_name,
                        printer_id=view.printer_id,
                        printer_name=view.printer_name,
                        toolhead_id=view.toolhead_id,
                        is_printer_location=view.is_printer_location,
                        created_at=view.created_at,
                        expires_at=view.expires_at,
                    ))
                    db.commit()
            finally:
                db.close()
