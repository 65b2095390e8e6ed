"""Synchronous notification channel for controller events.

Handlers are called on the thread that raises the event: the caller's
thread for foreground calls, the worker thread for background loops. A
handler that blocks stalls that thread, so handlers should return quickly.
"""

import logging
import threading
from typing import Any, Callable, Dict, List

from hp_counter_lib.models import CounterEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class EventChannel:
    """Thread-safe registry of handlers for each CounterEvent."""

    def __init__(self) -> None:
        self._handlers: Dict[CounterEvent, List[EventHandler]] = {
            event: [] for event in CounterEvent
        }
        self._lock = threading.Lock()

    def subscribe(self, event: CounterEvent, handler: EventHandler) -> None:
        """Register ``handler`` to be called with the sender on ``event``."""
        with self._lock:
            self._handlers[event].append(handler)

    def unsubscribe(self, event: CounterEvent, handler: EventHandler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        with self._lock:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

    def clear(self) -> None:
        """Remove all handlers."""
        with self._lock:
            for handlers in self._handlers.values():
                handlers.clear()

    def emit(self, event: CounterEvent, sender: Any) -> None:
        """Call every handler of ``event`` in registration order.

        A failing handler is logged and does not prevent the others from
        running.
        """
        with self._lock:
            handlers = list(self._handlers[event])

        for handler in handlers:
            try:
                handler(sender)
            except Exception:
                logger.exception(f"Error in {event.value} handler {handler!r}")
