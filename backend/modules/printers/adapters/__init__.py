"""
Printer adapters package.

Canonical adapter implementations:
- prusalink.py — PrusaLinkPrinter (REST)

The monitor only depends on the DeviceStatusSource interface below, so any
adapter (or a test fake) providing these two calls can drive it.
"""

from abc import ABC, abstractmethod


class DeviceStatusSource(ABC):
    """Base interface for a polled print endpoint."""

    @abstractmethod
    def get_machine_status(self):
        """Return a MachineStatus (state plus optional active file label)."""

    @abstractmethod
    def download_file_with_retry(self, label: str, attempts: int = 3, delay: float = 5,
                                 cancel=None) -> bytes:
        """Return the raw bytes of the named print file, retrying transient failures."""


def make_adapter(printer, settings) -> "DeviceStatusSource":
    """Build the adapter for a Printer row using the current timeouts."""
    from modules.printers.adapters.prusalink import PrusaLinkPrinter

    return PrusaLinkPrinter(
        address=printer.address,
        api_key=printer.api_key or "",
        username=printer.username or "maker",
        password=printer.password or "",
        timeout=settings.prusalink_timeout,
        download_timeout=settings.prusalink_file_download_timeout,
    )
