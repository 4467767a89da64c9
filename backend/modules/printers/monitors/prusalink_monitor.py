"""
PrusaLink Monitor — polling threads that turn printer state into completion edges.

Architecture:
  - One daemon thread per active printer, polling every settings.poll_interval
  - Each thread owns one DeviceRuntimeState; nothing else mutates it
  - A completion edge (PRINTING on the previous poll, IDLE/FINISHED now)
    hands the captured job label to the Reconciler, on the same thread
  - MonitorSupervisor reconciles the thread set against the printers table
  - On shutdown, a thread that is mid-completion is joined until its download
    finishes or times out; retry delays end early once the stop event is set

A failed poll is "no data this tick": the runtime state is left untouched,
so a print that finishes during a short network blip is still detected.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core import events as ev
from core.base import MachineState, MonitorPhase
from core.event_bus import emit
from modules.printers.adapters import make_adapter
from modules.printers.adapters.prusalink import PrusaLinkError
from modules.printers.models import Printer

log = logging.getLogger("filabridge.monitor")

MAX_CONSECUTIVE_FAILURES = 3
JOIN_TIMEOUT = 5
# Spoolman updates and ledger writes after the download
RECONCILE_GRACE = 30


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def completion_timeout(settings) -> float:
    """Upper bound for one completion: every download attempt timing out, plus the retry delays."""
    attempts = max(1, settings.download_attempts)
    return (attempts * settings.prusalink_file_download_timeout
            + (attempts - 1) * settings.download_retry_delay
            + RECONCILE_GRACE)


@dataclass
class DeviceRuntimeState:
    """
    Per-device state machine value.

    The job label is first-writer-wins: a label captured while printing is
    only replaced after the completion that owns it clears it, or after a
    failed completion retained it and a new print has started.
    """
    phase: MonitorPhase = MonitorPhase.IDLE_OR_OFFLINE
    last_state: Optional[MachineState] = None
    was_printing: bool = False
    job_label: Optional[str] = None
    label_retained: bool = False
    consecutive_failures: int = 0
    last_poll: Optional[datetime] = None
    last_error: Optional[str] = None
    completions: int = 0

    def observe(self, state: MachineState, label: Optional[str] = None) -> bool:
        """Apply one successful poll. Returns True exactly on the completion edge."""
        edge = self.was_printing and state.is_terminal

        if state == MachineState.PRINTING:
            if not self.was_printing and self.label_retained:
                # A new print started; the failed completion's label is abandoned
                self.job_label = None
                self.label_retained = False
            if label and self.job_label is None:
                self.job_label = label
            self.phase = MonitorPhase.PRINTING
        elif edge:
            self.phase = MonitorPhase.COMPLETING
        else:
            if state.is_terminal and not self.label_retained:
                self.job_label = None
            self.phase = MonitorPhase.IDLE_OR_OFFLINE

        self.was_printing = state == MachineState.PRINTING
        self.last_state = state
        self.consecutive_failures = 0
        self.last_poll = _utcnow()
        if edge:
            self.completions += 1
        return edge

    def complete(self, success: bool) -> None:
        """Leave COMPLETING. The label is cleared on success and retained on failure."""
        self.phase = MonitorPhase.IDLE_OR_OFFLINE
        if success:
            self.job_label = None
            self.label_retained = False
        else:
            self.label_retained = self.job_label is not None

    def fail(self, message: str) -> int:
        self.consecutive_failures += 1
        self.last_error = message
        return self.consecutive_failures

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "state": self.last_state.value if self.last_state else None,
            "job_label": self.job_label,
            "label_retained": self.label_retained,
            "consecutive_failures": self.consecutive_failures,
            "last_poll": self.last_poll.isoformat() if self.last_poll else None,
            "last_error": self.last_error,
            "completions": self.completions,
        }


class PrinterMonitorThread(threading.Thread):
    """Monitor thread for a single PrusaLink printer."""

    def __init__(self, printer_id: int, name: str, adapter, reconciler, settings,
                 session_factory=None):
        super().__init__(daemon=True, name=f"monitor-{printer_id}")
        self.printer_id = printer_id
        self.printer_name = name
        self.adapter = adapter
        self.reconciler = reconciler
        self.settings = settings
        self._session_factory = session_factory
        self.runtime = DeviceRuntimeState()
        self._stop_event = threading.Event()
        self._snapshot_lock = threading.Lock()
        self._marked_offline = False

    def stop(self):
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def completing(self) -> bool:
        with self._snapshot_lock:
            return self.runtime.phase == MonitorPhase.COMPLETING

    def run(self):
        log.info(f"[{self.printer_name}] PrusaLink monitor started for {getattr(self.adapter, 'address', '?')}")
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                log.error(f"[{self.printer_name}] Monitor tick failed: {e}", exc_info=True)
            self._stop_event.wait(max(1, self.settings.poll_interval))
        log.info(f"[{self.printer_name}] PrusaLink monitor stopped")

    def tick(self) -> bool:
        """One poll. Returns True when a completion was handled on this tick."""
        try:
            status = self.adapter.get_machine_status()
        except PrusaLinkError as e:
            self._poll_failed(str(e))
            return False

        with self._snapshot_lock:
            previous = self.runtime.last_state
            edge = self.runtime.observe(status.state, status.job_label)
            label = self.runtime.job_label

        if self._marked_offline:
            log.info(f"[{self.printer_name}] Back online ({status.state.value})")
            self._marked_offline = False
        if previous != status.state:
            log.info(
                f"[{self.printer_name}] State {previous.value if previous else 'unknown'} -> {status.state.value}"
                + (f" ({label})" if label else "")
            )
            emit(ev.PRINTER_STATE_CHANGED, "printers",
                 printer_id=self.printer_id, name=self.printer_name,
                 old_state=previous.value if previous else None,
                 new_state=status.state.value)
        self._heartbeat(status.state.value)

        if edge:
            self._complete(label)
        return edge

    def _complete(self, label: Optional[str]) -> None:
        log.info(f"[{self.printer_name}] Print finished: {label or 'no job file captured'}")
        success = False
        try:
            outcome = self.reconciler.handle_completion(
                self.printer_id, self.printer_name, label, self._download,
            )
            success = outcome.ok
        except Exception as e:
            log.error(f"[{self.printer_name}] Completion handling failed: {e}", exc_info=True)
        finally:
            with self._snapshot_lock:
                self.runtime.complete(success)

    def _download(self, label: str) -> bytes:
        return self.adapter.download_file_with_retry(
            label,
            attempts=self.settings.download_attempts,
            delay=self.settings.download_retry_delay,
            cancel=self._stop_event,
        )

    def _poll_failed(self, message: str) -> None:
        with self._snapshot_lock:
            failures = self.runtime.fail(message)
        if failures < MAX_CONSECUTIVE_FAILURES:
            log.warning(f"[{self.printer_name}] Poll failed ({failures}/{MAX_CONSECUTIVE_FAILURES}): {message}")
            return
        if not self._marked_offline:
            self._marked_offline = True
            log.error(f"[{self.printer_name}] Unreachable after {failures} attempts, marking offline: {message}")
            emit(ev.PRINTER_OFFLINE, "printers",
                 printer_id=self.printer_id, name=self.printer_name, failures=failures)
            self._heartbeat(MachineState.OFFLINE.value, seen=False)

    def _heartbeat(self, state: str, seen: bool = True) -> None:
        if self._session_factory is None:
            return
        values = {"last_state": state}
        if seen:
            values["last_seen"] = _utcnow()
        db = self._session_factory()
        try:
            db.query(Printer).filter(Printer.id == self.printer_id).update(values)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.warning(f"[{self.printer_name}] Failed to record heartbeat: {e}")
        finally:
            db.close()

    def snapshot(self) -> dict:
        with self._snapshot_lock:
            data = self.runtime.to_dict()
        if self._marked_offline:
            data["state"] = MachineState.OFFLINE.value
        data.update({"printer_id": self.printer_id, "name": self.printer_name})
        return data


def _fingerprint(printer: Printer) -> tuple:
    return (printer.name, printer.address, printer.api_key, printer.username, printer.password)


@dataclass
class _Entry:
    thread: PrinterMonitorThread
    fingerprint: tuple = field(default_factory=tuple)


class MonitorSupervisor:
    """Starts, restarts and stops per-printer monitor threads."""

    def __init__(self, session_factory, reconciler, settings,
                 adapter_factory: Callable = make_adapter,
                 thread_cls=PrinterMonitorThread):
        self._session_factory = session_factory
        self._reconciler = reconciler
        self._settings = settings
        self._adapter_factory = adapter_factory
        self._thread_cls = thread_cls
        self._entries: Dict[int, _Entry] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> Dict[str, List[int]]:
        self._running = True
        log.info("Monitor supervisor starting...")
        return self.sync()

    def sync(self) -> Dict[str, List[int]]:
        """Match running threads to the active printers. No-op until start()."""
        started: List[int] = []
        stopped: List[int] = []
        if not self._running:
            return {"started": started, "stopped": stopped}

        db = self._session_factory()
        try:
            printers = db.query(Printer).filter(Printer.is_active.is_(True)).all()
            wanted = {p.id: (p, _fingerprint(p)) for p in printers}
            with self._lock:
                for pid in list(self._entries):
                    entry = self._entries[pid]
                    target = wanted.get(pid)
                    if target is None or target[1] != entry.fingerprint or not entry.thread.is_alive():
                        entry.thread.stop()
                        del self._entries[pid]
                        stopped.append(pid)
                        log.info(f"Stopped monitor for printer {pid}")

                for pid, (printer, fingerprint) in wanted.items():
                    if pid in self._entries:
                        continue
                    thread = self._thread_cls(
                        printer_id=pid,
                        name=printer.name,
                        adapter=self._adapter_factory(printer, self._settings),
                        reconciler=self._reconciler,
                        settings=self._settings,
                        session_factory=self._session_factory,
                    )
                    thread.start()
                    self._entries[pid] = _Entry(thread=thread, fingerprint=fingerprint)
                    started.append(pid)
                    log.info(f"Started monitor for {printer.name} (id={pid})")
        finally:
            db.close()
        return {"started": started, "stopped": stopped}

    def snapshot(self) -> Dict[int, dict]:
        with self._lock:
            threads = {pid: e.thread for pid, e in self._entries.items()}
        return {pid: t.snapshot() for pid, t in threads.items()}

    def stop_all(self, timeout: float = JOIN_TIMEOUT) -> None:
        """
        Signal every thread and wait for it to exit.

        An idle thread gets `timeout` seconds. A thread that is reconciling a
        completion is waited on for up to completion_timeout(), so its usage is
        either written to the ledger or recorded as a ReconciliationError before
        the process exits.
        """
        self._running = False
        with self._lock:
            threads = [e.thread for e in self._entries.values()]
            self._entries.clear()
        if not threads:
            return
        log.info(f"Stopping {len(threads)} monitor thread(s)...")
        for thread in threads:
            thread.stop()
        grace = completion_timeout(self._settings)
        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive() and getattr(thread, "completing", False):
                log.info(f"Waiting up to {grace:.0f}s for {thread.name} to finish reconciling...")
                thread.join(timeout=grace)
            if thread.is_alive():
                log.warning(f"Monitor thread {thread.name} did not stop in time")
