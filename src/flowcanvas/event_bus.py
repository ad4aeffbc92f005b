"""
Event bus for FlowCanvas sessions.

Graph editing and run dispatch publish their state changes here; UI
components subscribe instead of polling. Everything runs on the caller's
event loop thread, so callbacks are invoked synchronously in
subscription order.
"""

from typing import Any, Callable, Dict, List

from flowcanvas.utilities.logging import get_logger

logger = get_logger("event_bus")

EventCallback = Callable[[str, Dict[str, Any]], Any]

# Event names published by the core
NOTIFICATION = "notification"
GRAPH_CHANGED = "graph_changed"
CATALOG_REPLACED = "catalog_replaced"
RUN_PENDING = "run_pending"
RUN_STARTED = "run_started"
RUN_CHUNK = "run_chunk"
RUN_SUCCEEDED = "run_succeeded"
RUN_FAILED = "run_failed"

RUN_EVENTS = (RUN_PENDING, RUN_STARTED, RUN_CHUNK, RUN_SUCCEEDED, RUN_FAILED)


class EventBus:
    """
    Simple synchronous event bus.

    A failing subscriber is logged and skipped; it never breaks the
    publisher or the remaining subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[EventCallback]] = {}

    def subscribe(self, event_type: str, callback: EventCallback) -> None:
        self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: EventCallback) -> None:
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        for cb in list(self._subscribers.get(event_type, [])):
            try:
                cb(event_type, payload)
            except Exception:
                logger.exception("EventBus callback error for '%s'", event_type)
