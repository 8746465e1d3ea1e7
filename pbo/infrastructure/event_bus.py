import threading
from typing import Type, Callable, List, Dict, Any, Optional
from pbo.domain.events import Event

class EventBus:
    """Synchronous, thread-safe publish/subscribe hub.

    Subscribers registered for a base class also receive its subclasses, so a
    reporter subscribed to ``Message`` sees ``WorkerStarted`` too.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to an event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: Event):
        """Delivers the event to subscribers of its type and of every base type."""
        with self._lock:
            callbacks = []
            for klass in type(event).__mro__:
                callbacks.extend(self._subscribers.get(klass, ()))
        for callback in callbacks:
            callback(event)
