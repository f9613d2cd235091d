import logging
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from venc.domain.events import Event

class EventBus:
    """A synchronous, thread-safe event bus for decoupled communication.

    Callbacks run on the publishing thread. A callback that raises is logged
    and skipped so a broken subscriber cannot fail the publisher.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        return callback

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]) -> bool:
        """Removes a previously subscribed callback. Returns False if it was not subscribed."""
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback not in callbacks:
                return False
            callbacks.remove(callback)
            return True

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers."""
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"EVENT_HANDLER_ERROR: event={type(event).__name__} error={e}")
