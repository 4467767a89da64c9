"""
Unit tests for modules/printers/adapters/prusalink.py — state mapping, job
label derivation, status polling and download retries.

requests.get is patched; no printer required.

Run:
    pytest tests/test_prusalink_adapter.py -v
"""

import sys
import os
import threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from unittest.mock import MagicMock, patch

import pytest
import requests

from core.base import MachineState
from modules.printers.adapters.prusalink import (
    DownloadError, PrusaLinkError, PrusaLinkPrinter, job_file_label, map_state,
)


def _response(status_code=200, json_body=None, content=b""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_body
    resp.content = content if json_body is None else b"{...}"
    resp.text = ""
    return resp


class TestStateMapping:
    @pytest.mark.parametrize("raw,expected", [
        ("PRINTING", MachineState.PRINTING),
        ("printing", MachineState.PRINTING),
        ("IDLE", MachineState.IDLE),
        ("READY", MachineState.IDLE),
        ("FINISHED", MachineState.FINISHED),
        ("PAUSED", MachineState.PAUSED),
        ("STOPPED", MachineState.STOPPED),
        ("ATTENTION", MachineState.ATTENTION),
        ("SOMETHING_NEW", MachineState.IDLE),
        (None, MachineState.IDLE),
    ])
    def test_map_state(self, raw, expected):
        assert map_state(raw) is expected


class TestJobFileLabel:
    def test_prefers_download_ref(self):
        job = {"file": {"name": "benchy.bgcode", "path": "/usb", "refs": {"download": "/usb/BENCHY~1.BGC"}}}
        assert job_file_label(job) == "usb/BENCHY~1.BGC"

    def test_path_and_name(self):
        job = {"file": {"name": "benchy.bgcode", "path": "/usb/"}}
        assert job_file_label(job) == "usb/benchy.bgcode"

    def test_name_only(self):
        assert job_file_label({"file": {"name": "benchy.bgcode"}}) == "benchy.bgcode"

    @pytest.mark.parametrize("job", [None, {}, {"file": {}}, {"file": {"name": "  "}}])
    def test_no_file(self, job):
        assert job_file_label(job) is None


class TestMachineStatus:
    def test_printing_fetches_job_label(self):
        printer = PrusaLinkPrinter("192.168.1.50", api_key="abc")
        responses = {
            "http://192.168.1.50/api/v1/status": _response(json_body={
                "printer": {"state": "PRINTING"}, "job": {"progress": 42.0},
            }),
            "http://192.168.1.50/api/v1/job": _response(json_body={
                "file": {"name": "part.bgcode", "path": "/usb"},
            }),
        }
        with patch("requests.get", side_effect=lambda url, **kw: responses[url]) as get:
            status = printer.get_machine_status()
        assert status.state is MachineState.PRINTING
        assert status.job_label == "usb/part.bgcode"
        assert status.progress_percent == 42.0
        assert get.call_args.kwargs["headers"] == {"X-Api-Key": "abc"}

    def test_idle_skips_job_lookup(self):
        printer = PrusaLinkPrinter("http://mk4.local/")
        with patch("requests.get", return_value=_response(json_body={"printer": {"state": "IDLE"}})) as get:
            status = printer.get_machine_status()
        assert status.state is MachineState.IDLE
        assert status.job_label is None
        assert get.call_count == 1
        assert get.call_args.args[0] == "http://mk4.local/api/v1/status"

    def test_job_lookup_failure_keeps_state(self):
        printer = PrusaLinkPrinter("192.168.1.50")

        def fake_get(url, **kw):
            if url.endswith("/job"):
                raise requests.exceptions.ConnectionError("reset")
            return _response(json_body={"printer": {"state": "PRINTING"}})

        with patch("requests.get", side_effect=fake_get):
            status = printer.get_machine_status()
        assert status.state is MachineState.PRINTING
        assert status.job_label is None

    def test_no_active_job_is_empty(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        with patch("requests.get", return_value=_response(status_code=204)):
            assert printer.get_job() == {}

    def test_timeout_raises(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        with patch("requests.get", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(PrusaLinkError):
                printer.get_status()

    def test_auth_failure_raises(self):
        printer = PrusaLinkPrinter("192.168.1.50", username="maker", password="secret")
        with patch("requests.get", return_value=_response(status_code=401)) as get:
            with pytest.raises(PrusaLinkError, match="auth failed"):
                printer.get_status()
        assert get.call_args.kwargs["auth"] is not None


class TestDownload:
    def test_download_uses_long_timeout(self):
        printer = PrusaLinkPrinter("192.168.1.50", timeout=10, download_timeout=300)
        with patch("requests.get", return_value=_response(content=b"; filament used [g]=1.0")) as get:
            assert printer.download_file("/usb/a.bgcode") == b"; filament used [g]=1.0"
        assert get.call_args.args[0] == "http://192.168.1.50/usb/a.bgcode"
        assert get.call_args.kwargs["timeout"] == 300

    def test_retry_then_success(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        sleeps = []
        with patch("requests.get", side_effect=[
            requests.exceptions.ConnectionError("reset"),
            _response(status_code=503),
            _response(content=b"data"),
        ]):
            payload = printer.download_file_with_retry("a.bgcode", attempts=3, delay=5, sleep=sleeps.append)
        assert payload == b"data"
        assert sleeps == [5, 5]

    def test_retries_exhausted(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        sleeps = []
        with patch("requests.get", side_effect=requests.exceptions.ConnectionError("reset")) as get:
            with pytest.raises(DownloadError, match="after 2 attempts"):
                printer.download_file_with_retry("a.bgcode", attempts=2, delay=1, sleep=sleeps.append)
        assert get.call_count == 2
        assert sleeps == [1]

    def test_empty_label_is_not_requested(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        with patch("requests.get") as get:
            with pytest.raises(DownloadError):
                printer.download_file_with_retry("", attempts=2, delay=0, sleep=lambda s: None)
        get.assert_not_called()

    def test_cancel_stops_further_attempts(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        cancel = threading.Event()
        cancel.set()
        with patch("requests.get", side_effect=requests.exceptions.ConnectionError("reset")) as get:
            with pytest.raises(DownloadError, match="shutting down"):
                printer.download_file_with_retry("a.bgcode", attempts=3, delay=60, cancel=cancel)
        assert get.call_count == 1

    def test_unset_cancel_waits_between_attempts(self):
        printer = PrusaLinkPrinter("192.168.1.50")
        cancel = threading.Event()
        with patch("requests.get", side_effect=[
            requests.exceptions.ConnectionError("reset"),
            _response(content=b"data"),
        ]):
            assert printer.download_file_with_retry("a.bgcode", attempts=2, delay=0.01, cancel=cancel) == b"data"
