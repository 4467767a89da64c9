"""
core/base.py — Declarative Base and shared enums.

All ORM models import Base from here.
Enums used by more than one module live here to avoid circular imports
between domain modules.
"""

from enum import Enum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class MachineState(str, Enum):
    """Normalized machine state reported by a Device Status Source."""
    IDLE = "IDLE"
    BUSY = "BUSY"
    PRINTING = "PRINTING"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"
    ATTENTION = "ATTENTION"
    OFFLINE = "offline"
    NOT_CONFIGURED = "not_configured"

    @property
    def is_terminal(self) -> bool:
        """States that end a print (the far side of the completion edge)."""
        return self in (MachineState.IDLE, MachineState.FINISHED)


class MonitorPhase(str, Enum):
    """Per-device monitor phase."""
    IDLE_OR_OFFLINE = "idle_or_offline"
    PRINTING = "printing"
    COMPLETING = "completing"


# Sentinel printer key used by the status snapshot when nothing is configured
NO_PRINTERS_KEY = "no_printers"

# Toolhead bounds accepted for a configured printer
MIN_TOOLHEADS = 1
MAX_TOOLHEADS = 10


def default_toolhead_name(toolhead_id: int) -> str:
    return f"Toolhead {toolhead_id}"
