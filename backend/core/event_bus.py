# core/event_bus.py — InMemoryEventBus implementation
#
# Synchronous in-process pub/sub. Monitor threads publish from their own
# threads, so the handler tables are guarded by a lock; handlers themselves
# run on the publishing thread, outside the lock.

import logging
import threading
from collections import defaultdict
from typing import Callable, Any

from core.interfaces.event_bus import EventBus, Event

log = logging.getLogger("event_bus")


class InMemoryEventBus(EventBus):
    """
    Synchronous in-process event bus.

    Handlers are called in registration order. Exceptions in one handler do not
    prevent subsequent handlers from running.
    """

    def __init__(self):
        self._lock = threading.Lock()
        # event_type -> list of callables
        self._handlers: dict[str, list[Callable[[Event], Any]]] = defaultdict(list)
        # wildcard handlers subscribed to "*" receive every event
        self._wildcard_handlers: list[Callable[[Event], Any]] = []

    def publish(self, event: Event) -> None:
        """Dispatch an event to all registered handlers for its type, then wildcards."""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))
            wildcards = list(self._wildcard_handlers)

        for handler in handlers + wildcards:
            try:
                handler(event)
            except Exception as e:
                log.error(
                    f"Event handler {handler!r} raised for event "
                    f"'{event.event_type}': {e}",
                    exc_info=True,
                )

    def subscribe(self, event_type: str, handler: Callable[[Event], Any]) -> None:
        """
        Register a handler for an event type.

        Use event_type="*" to receive all events (wildcard).
        """
        with self._lock:
            target = self._wildcard_handlers if event_type == "*" else self._handlers[event_type]
            if handler not in target:
                target.append(handler)

    def unsubscribe(self, event_type: str, handler: Callable) -> None:
        """Remove a previously registered handler. Unknown handlers are ignored."""
        with self._lock:
            target = self._wildcard_handlers if event_type == "*" else self._handlers.get(event_type, [])
            if handler in target:
                target.remove(handler)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_bus: InMemoryEventBus = InMemoryEventBus()


def get_event_bus() -> InMemoryEventBus:
    """Return the application-level event bus singleton."""
    return _bus


def emit(event_type: str, source_module: str, **data) -> None:
    """Shorthand for publishing on the singleton bus."""
    _bus.publish(Event(event_type=event_type, source_module=source_module, data=data))
