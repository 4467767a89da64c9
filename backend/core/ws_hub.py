"""
WebSocket Event Hub — hand-off between monitor threads and the FastAPI WebSocket.

Monitor threads and request handlers call push_event(); the async
broadcaster in core.app reads new events by id and sends them to every
connected /ws/status client. Events live in a bounded in-memory buffer,
so a slow or absent WebSocket client never blocks a monitor thread.
"""

import itertools
import logging
import threading
import time
from collections import deque
from typing import List, Tuple

log = logging.getLogger("ws_hub")

_MAX_EVENTS = 500

_lock = threading.Lock()
_events: deque = deque(maxlen=_MAX_EVENTS)
_ids = itertools.count(1)


def push_event(event_type: str, data: dict) -> int:
    """Queue an event for WebSocket clients. Returns the event id."""
    with _lock:
        event_id = next(_ids)
        _events.append((event_id, {"type": event_type, "data": data, "ts": time.time()}))
    return event_id


def read_events_since(last_id: int) -> Tuple[List[dict], int]:
    """
    Read events with id > last_id.
    Returns (events_list, new_last_id).
    """
    with _lock:
        rows = [(eid, payload) for eid, payload in _events if eid > last_id]
    if not rows:
        return [], last_id
    return [payload for _, payload in rows], rows[-1][0]


def clear() -> None:
    with _lock:
        _events.clear()


# ---------------------------------------------------------------------------
# Event bus integration
# ---------------------------------------------------------------------------

def _forward(event) -> None:
    push_event(event.event_type, event.data)


def subscribe_to_bus(bus) -> None:
    """
    Forward every bus event to WebSocket clients under its canonical type.

    Called once from the app lifespan after the bus singleton is ready.
    """
    bus.subscribe("*", _forward)
    log.debug("ws_hub subscribed to event bus")
