import threading
from datetime import datetime
from collections import deque
from typing import List, Optional
from pbo.domain.events import WorkError

class RunState:
    """Thread-safe counters fed by the progress sink."""

    def __init__(self, recent_errors_max: int = 20):
        self._lock = threading.RLock()

        self.total_estimate: Optional[int] = None
        self.completed_count = 0
        self.failed_count = 0
        self.workers_started = 0
        self.messages_seen = 0
        self.fatal = False

        self.recent_errors = deque(maxlen=recent_errors_max)
        self.start_time = datetime.now()
        self.finished_time: Optional[datetime] = None

    def set_total(self, total: int):
        with self._lock:
            self.total_estimate = total

    def add_completed(self, count: int = 1):
        with self._lock:
            self.completed_count += count

    def add_error(self, error: WorkError):
        with self._lock:
            if error.fatal:
                self.fatal = True
            else:
                self.failed_count += 1
            self.recent_errors.appendleft(error)

    def add_message(self, worker_started: bool = False):
        with self._lock:
            self.messages_seen += 1
            if worker_started:
                self.workers_started += 1

    def mark_finished(self):
        with self._lock:
            self.finished_time = datetime.now()

    @property
    def done_count(self) -> int:
        with self._lock:
            return self.completed_count + self.failed_count

    def errors(self) -> List[WorkError]:
        with self._lock:
            return list(self.recent_errors)

    def summary_line(self) -> str:
        with self._lock:
            end = self.finished_time or datetime.now()
            elapsed = (end - self.start_time).total_seconds()
            total = self.total_estimate if self.total_estimate is not None else "?"
            return (
                f"Done {self.completed_count}/{total}, failed {self.failed_count}, "
                f"workers {self.workers_started}, elapsed {elapsed:.1f}s"
            )
