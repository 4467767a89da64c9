"""
PrusaLink Adapter — REST API client for Prusa 3D printers.

Supports: MK4/S, MK3.9, MK3.5, MINI+, XL, CORE One
Protocol: PrusaLink REST API (v1)
Auth: API key header (X-Api-Key) or HTTP Digest (username + password)
Endpoints: /api/v1/status, /api/v1/job, /api/v1/info, /<storage path> (file download)

Reference:
  - OpenAPI spec: https://github.com/prusa3d/Prusa-Link-Web/blob/master/spec/openapi.yaml

Architecture note:
  This is the adapter (API client) used as the Device Status Source. The
  polling loop lives in modules/printers/monitors/prusalink_monitor.py.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

import requests
from requests.auth import HTTPDigestAuth

from core.base import MachineState
from modules.printers.adapters import DeviceStatusSource

log = logging.getLogger("filabridge.prusalink")


class PrusaLinkError(Exception):
    """A PrusaLink request failed (network, auth, or unexpected status)."""


class DownloadError(PrusaLinkError):
    """A print file could not be downloaded after all retry attempts."""


_STATE_MAP = {
    "IDLE": MachineState.IDLE,
    "READY": MachineState.IDLE,
    "OPERATIONAL": MachineState.IDLE,
    "PRINTING": MachineState.PRINTING,
    "PAUSED": MachineState.PAUSED,
    "ATTENTION": MachineState.ATTENTION,
    "BUSY": MachineState.BUSY,
    "ERROR": MachineState.ERROR,
    "FINISHED": MachineState.FINISHED,
    "STOPPED": MachineState.STOPPED,
}


@dataclass
class MachineStatus:
    """What the monitor needs from one poll: state plus the active file label."""
    state: MachineState = MachineState.OFFLINE
    internal_state: str = "OFFLINE"
    job_label: Optional[str] = None
    progress_percent: float = 0.0
    raw_data: Dict[str, Any] = field(default_factory=dict)


def map_state(state_str: Optional[str]) -> MachineState:
    """Map a PrusaLink state string to MachineState. Unknown strings map to IDLE."""
    return _STATE_MAP.get((state_str or "IDLE").upper(), MachineState.IDLE)


def job_file_label(job: Optional[dict]) -> Optional[str]:
    """
    Derive the downloadable file label from a /api/v1/job payload.

    Prefers file.refs.download (leading "/" stripped), falling back to
    file.path + "/" + file.name. Returns None when no file is reported.
    """
    if not job:
        return None
    file_info = job.get("file") or {}
    download = ((file_info.get("refs") or {}).get("download") or "").strip()
    if download:
        return download.lstrip("/")
    name = (file_info.get("name") or "").strip()
    if not name:
        return None
    path = (file_info.get("path") or "").strip().strip("/")
    return f"{path}/{name}" if path else name


class PrusaLinkPrinter(DeviceStatusSource):
    """
    Client for PrusaLink REST API.

    Handles all communication with a single PrusaLink-based printer.
    No persistent connection — each call is a simple HTTP request with an
    explicit timeout. Failures raise PrusaLinkError.
    """

    def __init__(self, address: str, api_key: str = "", username: str = "maker",
                 password: str = "", timeout: float = 10,
                 download_timeout: float = 300):
        self.address = address
        self.api_key = api_key or ""
        self.username = username or "maker"
        self.password = password or ""
        if address.startswith(("http://", "https://")):
            self.base_url = address.rstrip("/")
        else:
            self.base_url = f"http://{address}"
        self.timeout = timeout
        self.download_timeout = download_timeout

    def _request_kwargs(self, timeout: float) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"timeout": timeout}
        if self.api_key:
            kwargs["headers"] = {"X-Api-Key": self.api_key}
        elif self.password:
            kwargs["auth"] = HTTPDigestAuth(self.username, self.password)
        return kwargs

    def _get(self, path: str, timeout: Optional[float] = None) -> requests.Response:
        """Make an authenticated GET request. Raises PrusaLinkError unless 200/204."""
        url = f"{self.base_url}{path}"
        try:
            resp = requests.get(url, **self._request_kwargs(timeout or self.timeout))
        except requests.exceptions.Timeout as e:
            raise PrusaLinkError(f"timeout talking to {self.address}") from e
        except requests.exceptions.RequestException as e:
            raise PrusaLinkError(f"connection to {self.address} failed: {e}") from e

        if resp.status_code in (200, 204):
            return resp
        if resp.status_code == 401:
            raise PrusaLinkError(f"PrusaLink auth failed for {self.address}")
        raise PrusaLinkError(f"PrusaLink API error: {resp.status_code} - {resp.text[:200]}")

    def _get_json(self, path: str) -> Dict[str, Any]:
        resp = self._get(path)
        if resp.status_code == 204 or not resp.content:
            return {}  # No content (e.g., no active job)
        try:
            return resp.json()
        except ValueError as e:
            raise PrusaLinkError(f"invalid JSON from {path}") from e

    def get_status(self) -> Dict[str, Any]:
        """
        GET /api/v1/status — combined printer + job summary.

        Response format:
        {
            "job": {"id": 297, "progress": 91.0, "time_remaining": 600},
            "printer": {"state": "PRINTING", "temp_bed": 60.0, "temp_nozzle": 209.9}
        }
        """
        return self._get_json("/api/v1/status")

    def get_job(self) -> Dict[str, Any]:
        """GET /api/v1/job — active job details; {} when the printer reports 204."""
        return self._get_json("/api/v1/job")

    def get_info(self) -> Dict[str, Any]:
        """GET /api/v1/info — hostname, serial, nozzle diameter, mmu flag."""
        return self._get_json("/api/v1/info")

    def get_machine_status(self) -> MachineStatus:
        """
        Poll state and, when a print is active, the job file label.

        The job is only looked up while printing, where the label is captured. A job
        lookup failure is not fatal: the state is still returned without a label.
        """
        data = self.get_status()
        printer = data.get("printer") or {}
        internal = (printer.get("state") or "IDLE").upper()
        status = MachineStatus(
            state=map_state(internal),
            internal_state=internal,
            progress_percent=(data.get("job") or {}).get("progress", 0.0) or 0.0,
            raw_data=data,
        )

        if status.state == MachineState.PRINTING:
            try:
                status.job_label = job_file_label(self.get_job())
            except PrusaLinkError as e:
                log.debug(f"Job lookup failed for {self.address}: {e}")
        return status

    def download_file(self, label: str) -> bytes:
        """GET /<label> — raw print file bytes, using the long download timeout."""
        if not label:
            raise DownloadError("no file name to download")
        resp = self._get("/" + label.lstrip("/"), timeout=self.download_timeout)
        return resp.content

    def download_file_with_retry(self, label: str, attempts: int = 3,
                                 delay: float = 5, cancel: Optional[threading.Event] = None,
                                 sleep=time.sleep) -> bytes:
        """
        Download with a bounded number of attempts and a fixed delay between them.

        When cancel is given the delay waits on it instead, and once it is set no
        further attempt starts. The attempt already in flight still finishes or
        times out on its own.
        """
        attempts = max(1, attempts)
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return self.download_file(label)
            except PrusaLinkError as e:
                last_error = e
                log.warning(
                    f"Download of {label!r} from {self.address} failed "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                if attempt == attempts:
                    break
                if cancel is None:
                    sleep(delay)
                elif cancel.wait(delay):
                    raise DownloadError(
                        f"download of {label!r} abandoned after {attempt} attempt(s): shutting down"
                    ) from last_error
        raise DownloadError(
            f"failed to download {label!r} after {attempts} attempts: {last_error}"
        ) from last_error

    def test_connection(self) -> Dict[str, Any]:
        """Probe status and info; returns a summary dict. Raises PrusaLinkError."""
        status = self.get_status()
        try:
            info = self.get_info()
        except PrusaLinkError:
            info = {}
        return {
            "state": map_state((status.get("printer") or {}).get("state")).value,
            "hostname": info.get("hostname"),
            "serial": info.get("serial"),
            "nozzle_diameter": info.get("nozzle_diameter"),
            "mmu": info.get("mmu"),
        }
