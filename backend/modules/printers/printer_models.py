"""
printer_models.py — PrusaLink model code mappings.

Maps the model codes PrusaLink reports (GET /api/v1/info "printer_type"/
"hostname" hints, or what an operator types into the printer form) to the
friendly names shown in the UI.

Usage:
    from modules.printers.printer_models import normalize_model_name

    normalize_model_name("COREONE")   # -> "CORE One"
    normalize_model_name("MK4")       # -> "MK4"
    normalize_model_name("Custom")    # -> "Custom" (passthrough)
    normalize_model_name("")          # -> None
    detect_model("prusa-xl")          # -> "XL"
"""

from typing import Optional

# ---------------------------------------------------------------------------
# PrusaLink model codes -> friendly names
# ---------------------------------------------------------------------------
_PRUSALINK_MODELS = {
    "MK4S": "MK4S",
    "MK4": "MK4",
    "MK39": "MK3.9",
    "MK3.9": "MK3.9",
    "MK35": "MK3.5",
    "MK3.5": "MK3.5",
    "MINI": "MINI+",
    "MINI+": "MINI+",
    "MINIPLUS": "MINI+",
    "XL": "XL",
    "CORE_ONE": "CORE One",
    "COREONE": "CORE One",
    "CORE ONE": "CORE One",
}

# Toolhead counts a model ships with, used as the form default
DEFAULT_TOOLHEADS = {
    "XL": 5,
}

SUPPORTED_MODELS = ["CORE One", "XL", "MK4S", "MK4", "MK3.9", "MK3.5", "MINI+"]

UNKNOWN_MODEL = "Unknown"

# Hostname fragments PrusaLink printers ship with, checked in order
_HOSTNAME_PATTERNS = [
    ("core", "CORE One"),
    ("xl", "XL"),
    ("mk4", "MK4"),
    ("mk3", "MK3.5"),
    ("mini", "MINI+"),
]


def normalize_model_name(raw_value: Optional[str]) -> Optional[str]:
    """
    Map a raw PrusaLink model code to a friendly display name.

    Matching is case-insensitive. Unknown values pass through stripped;
    empty values return None. Never raises.
    """
    if not raw_value or not raw_value.strip():
        return None
    raw_stripped = raw_value.strip()
    return _PRUSALINK_MODELS.get(raw_stripped.upper(), raw_stripped)


def default_toolheads(model: Optional[str]) -> int:
    return DEFAULT_TOOLHEADS.get(normalize_model_name(model) or "", 1)


def detect_model(hostname: Optional[str]) -> str:
    """Guess the model from a PrusaLink hostname. Returns UNKNOWN_MODEL when nothing matches."""
    lowered = (hostname or "").strip().lower()
    for fragment, model in _HOSTNAME_PATTERNS:
        if fragment in lowered:
            return model
    return UNKNOWN_MODEL
