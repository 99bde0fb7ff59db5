"""
In-process event bus for the vision node's control plane.

Carries low-frequency events only (faults, shutdown). Frames and
telemetry never travel over it. Handlers run synchronously on the
publisher's thread, so they must stay cheap.
"""
import threading
from collections import defaultdict
from typing import Callable, Any, Dict, List, Type
from utils.logger import Logger


class EventBus:
    """
    Thread-safe publish/subscribe hub.

    Usage:
        bus = EventBus()
        bus.subscribe(CaptureFault, monitor.on_capture_fault)
        bus.publish(CaptureFault(source="front", message="timed out"))
    """

    def __init__(self):
        self._subscribers: Dict[Type, List[Callable[[Any], None]]] = defaultdict(list)
        self._lock = threading.Lock()
        self.logger = Logger("EventBus")

    def subscribe(self, event_type: Type, handler: Callable[[Any], None]) -> None:
        with self._lock:
            self._subscribers[event_type].append(handler)
        self.logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to {event_type.__name__}")

    def unsubscribe(self, event_type: Type, handler: Callable[[Any], None]) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Any) -> None:
        """
        Deliver an event to every handler registered for its exact type.

        A failing handler is logged and skipped; it never reaches the
        publisher, which is usually a frame worker that must keep running.
        """
        event_type = type(event)
        with self._lock:
            handlers = list(self._subscribers.get(event_type, ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in handler {getattr(handler, '__qualname__', handler)} for "
                    f"{event_type.__name__}: {e}"
                )

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: Type) -> int:
        with self._lock:
            return len(self._subscribers.get(event_type, []))
