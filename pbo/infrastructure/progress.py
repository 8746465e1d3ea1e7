"""Progress channel between pipeline workers and the reporting layer.

Producers call :meth:`ProgressChannel.emit` from any thread. The queue is
unbounded, so producers never wait on the consumer. A single
:class:`ProgressSink` thread drains it for the lifetime of the run and
republishes every event on the EventBus, where the UI layer subscribes.

Events from one producer thread keep their order; events from different
threads interleave arbitrarily.
"""

import logging
import queue
import threading
from typing import Optional

from pbo.domain.events import ProgressEvent
from pbo.infrastructure.event_bus import EventBus

_CLOSE = object()


class ProgressChannel:
    def __init__(self):
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()
        self.logger = logging.getLogger(__name__)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def emit(self, event: ProgressEvent) -> None:
        if self._closed.is_set():
            self.logger.debug(f"Progress event dropped after close: {event!r}")
            return
        self._queue.put(event)

    def close(self) -> None:
        """Lets the sink exit once everything emitted so far has been delivered."""
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSE)

    def get(self, timeout: Optional[float] = None) -> object:
        return self._queue.get(timeout=timeout)


class ProgressSink:
    """Single consumer draining a ProgressChannel onto an EventBus."""

    def __init__(self, channel: ProgressChannel, event_bus: EventBus):
        self.channel = channel
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._thread: Optional[threading.Thread] = None

    def _drain(self):
        while True:
            event = self.channel.get()
            if event is _CLOSE:
                break
            try:
                self.event_bus.publish(event)
            except Exception as e:
                # Keep draining after a subscriber failure.
                self.logger.error(f"Progress subscriber failed on {type(event).__name__}: {e}")

    def start(self):
        self._thread = threading.Thread(target=self._drain, name="progress-sink", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Closes the channel and waits until all pending events are delivered."""
        self.channel.close()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
