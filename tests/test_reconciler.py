"""
Unit tests for modules/reconciliation/reconciler.py — charging usage to
bound spools, the usage ledger and the reconciliation error log.

Run:
    pytest tests/test_reconciler.py -v
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import pytest

from core import events as ev
from core.event_bus import get_event_bus
from modules.printers.adapters.prusalink import DownloadError
from modules.reconciliation.reconciler import (
    NO_LABEL_MESSAGE, NO_USAGE_MESSAGE, Reconciler,
)


@pytest.fixture
def reconciler(session_factory, binding_store, inventory):
    return Reconciler(session_factory, binding_store, lambda: inventory)


@pytest.fixture
def published():
    received = []
    bus = get_event_bus()
    bus.subscribe("*", received.append)
    yield received
    bus.unsubscribe("*", received.append)


def _download(payload):
    def _fetch(label):
        if isinstance(payload, Exception):
            raise payload
        return payload
    return _fetch


class TestReconcile:
    def test_usage_added_to_bound_spool(self, reconciler, binding_store, make_printer, inventory):
        pid = make_printer()
        inventory.add_spool(42, used_weight=100.0)
        binding_store.bind(pid, 0, 42)

        outcome = reconciler.reconcile(pid, {0: 12.5}, "benchy.bgcode", printer_name="CORE One")

        assert outcome.ok
        assert inventory.spools[42]["used_weight"] == pytest.approx(112.5)
        assert outcome.applied[0]["spool_id"] == 42
        assert outcome.applied[0]["used_weight"] == pytest.approx(112.5)
        events = reconciler.usage_events()
        assert len(events) == 1
        assert events[0]["grams"] == pytest.approx(12.5)
        assert events[0]["job_label"] == "benchy.bgcode"

    def test_unbound_toolhead_skipped(self, reconciler, binding_store, make_printer, inventory):
        pid = make_printer(name="XL", toolheads=5)
        binding_store.bind(pid, 0, 42)

        outcome = reconciler.reconcile(pid, {0: 5.0, 3: 2.0}, "two-color.bgcode")

        assert outcome.ok
        assert outcome.skipped == [3]
        assert [e["toolhead_id"] for e in outcome.applied] == [0]
        assert reconciler.list_errors() == []

    def test_spoolman_failure_records_one_error(self, reconciler, binding_store, make_printer, inventory):
        pid = make_printer(name="XL", toolheads=5)
        binding_store.bind(pid, 0, 42)
        binding_store.bind(pid, 1, 43)
        binding_store.bind(pid, 2, 44)
        inventory.fail_spools = {42, 44}

        outcome = reconciler.reconcile(pid, {0: 1.0, 1: 2.0, 2: 3.0}, "job.bgcode")

        assert not outcome.ok
        assert len(outcome.errors) == 2
        # the healthy toolhead still got its usage
        assert inventory.spools[43]["used_weight"] == pytest.approx(2.0)
        errors = reconciler.list_errors()
        assert len(errors) == 1
        assert errors[0]["id"] == outcome.error_id
        assert "spool 42" in errors[0]["message"] and "spool 44" in errors[0]["message"]

    def test_zero_usage_is_ignored(self, reconciler, binding_store, make_printer, inventory):
        pid = make_printer()
        binding_store.bind(pid, 0, 42)
        outcome = reconciler.reconcile(pid, {0: 0.0}, "job.bgcode")
        assert outcome.ok
        assert outcome.applied == []
        assert 42 not in inventory.spools

    def test_completion_event_published(self, reconciler, binding_store, make_printer, published):
        pid = make_printer()
        binding_store.bind(pid, 0, 42)
        reconciler.reconcile(pid, {0: 3.0}, "job.bgcode")
        completed = [e for e in published if e.event_type == ev.PRINT_COMPLETED]
        assert len(completed) == 1
        assert completed[0].data["printer_id"] == pid


class TestHandleCompletion:
    def test_download_extract_reconcile(self, reconciler, binding_store, make_printer, inventory):
        pid = make_printer()
        binding_store.bind(pid, 0, 42)
        payload = b"; filament used [g]=21.07\n"

        outcome = reconciler.handle_completion(pid, "CORE One", "usb/a.bgcode", _download(payload))

        assert outcome.ok
        assert inventory.spools[42]["used_weight"] == pytest.approx(21.07)

    def test_download_failure_records_exactly_one_error(self, reconciler, make_printer, published):
        pid = make_printer()
        failure = DownloadError("failed to download 'usb/a.bgcode' after 3 attempts: timeout")

        outcome = reconciler.handle_completion(pid, "CORE One", "usb/a.bgcode", _download(failure))

        assert not outcome.ok
        errors = reconciler.list_errors()
        assert len(errors) == 1
        assert errors[0]["acknowledged"] is False
        assert errors[0]["job_label"] == "usb/a.bgcode"
        assert "failed to download" in errors[0]["message"]
        assert len([e for e in published if e.event_type == ev.PRINT_RECONCILE_FAILED]) == 1

    def test_missing_label(self, reconciler, make_printer):
        pid = make_printer()
        outcome = reconciler.handle_completion(pid, "CORE One", None, _download(b""))
        assert outcome.errors == [NO_LABEL_MESSAGE]
        assert reconciler.list_errors()[0]["message"] == NO_LABEL_MESSAGE

    def test_file_without_usage(self, reconciler, make_printer):
        pid = make_printer()
        outcome = reconciler.handle_completion(pid, "CORE One", "a.gcode", _download(b"G28\nG1 X0\n"))
        assert outcome.errors == [NO_USAGE_MESSAGE]
        assert len(reconciler.list_errors()) == 1


class TestErrorLedger:
    def test_acknowledge_hides_error(self, reconciler, make_printer):
        pid = make_printer()
        error_id = reconciler.record_error(pid, "CORE One", "a.bgcode", "boom")

        assert reconciler.acknowledge(error_id) is True
        assert reconciler.list_errors() == []
        everything = reconciler.list_errors(include_acknowledged=True)
        assert everything[0]["acknowledged"] is True
        assert everything[0]["acknowledged_at"] is not None

    def test_acknowledge_is_idempotent(self, reconciler, make_printer):
        pid = make_printer()
        error_id = reconciler.record_error(pid, "CORE One", "a.bgcode", "boom")
        reconciler.acknowledge(error_id)
        first = reconciler.list_errors(include_acknowledged=True)[0]["acknowledged_at"]
        assert reconciler.acknowledge(error_id) is True
        assert reconciler.list_errors(include_acknowledged=True)[0]["acknowledged_at"] == first

    def test_acknowledge_unknown(self, reconciler):
        assert reconciler.acknowledge(12345) is False

    def test_usage_events_filtered_by_printer(self, reconciler, binding_store, make_printer):
        a = make_printer(name="A")
        b = make_printer(name="B", address="192.168.1.51")
        binding_store.bind(a, 0, 1)
        binding_store.bind(b, 0, 2)
        reconciler.reconcile(a, {0: 1.0}, "a.bgcode")
        reconciler.reconcile(b, {0: 2.0}, "b.bgcode")
        assert [e["spool_id"] for e in reconciler.usage_events(printer_id=b)] == [2]
        assert len(reconciler.usage_events()) == 2
