"""
Usage extractor — filament mass per toolhead from a print file.

PrusaSlicer writes a metadata line such as

    ; filament used [g]=12.50, 0.00, 3.20

into both plain .gcode and the text metadata blocks of binary .bgcode.
List position i is toolhead i. Non-positive or unparsable entries are
dropped (not zero-filled) so the returned keys keep their toolhead index.
"""

import math
import re
from typing import Dict, Union

USAGE_MARKER = re.compile(rb"filament used \[g\][ \t]*=([^\r\n\x00]*)")


def extract_usage(payload: Union[bytes, str]) -> Dict[int, float]:
    """
    Return {toolhead_index: grams} for every toolhead with usage > 0.

    An empty dict means the marker is absent (or every entry was zero):
    "no usage data", not a failure.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8", errors="replace")
    if not payload:
        return {}

    match = USAGE_MARKER.search(payload)
    if not match:
        return {}

    usage: Dict[int, float] = {}
    for index, raw in enumerate(match.group(1).split(b",")):
        raw = raw.strip()
        try:
            grams = float(raw)
        except ValueError:
            continue
        if math.isfinite(grams) and grams > 0:
            usage[index] = grams
    return usage
