"""Bounded worker pool fed through an unbuffered work channel.

A control loop holds ``max_workers`` permits. Whenever a permit is free it
launches a fresh worker thread; the worker takes at most one WorkItem from the
channel, runs it, and gives its permit back on exit no matter how it exits.
Workers are never reused, so per-item cleanup happens when the worker ends.

Launching a worker costs a permit, not a WorkItem: when the driver runs out of
work the idle workers see the channel close and exit without doing anything.
"""

import itertools
import logging
import threading
from collections import Counter, deque
from typing import Callable, Optional

from pbo.domain.events import WorkError, WorkerStarted
from pbo.domain.models import ItemStatus, WorkItem
from pbo.infrastructure.progress import ProgressChannel
from pbo.pipeline.runner import DuplicateResolutionError

WorkFunc = Callable[[str, WorkItem], ItemStatus]


class _Handoff:
    __slots__ = ("item", "taken")

    def __init__(self, item: WorkItem):
        self.item = item
        self.taken = False


class WorkChannel:
    """Rendezvous hand-off: ``send`` returns only once a receiver owns the item."""

    def __init__(self):
        self._cond = threading.Condition()
        self._pending: "deque[_Handoff]" = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def send(self, item: WorkItem) -> bool:
        """Blocks until a worker takes ``item``. False if the channel closed first."""
        handoff = _Handoff(item)
        with self._cond:
            if self._closed:
                return False
            self._pending.append(handoff)
            self._cond.notify_all()
            self._cond.wait_for(lambda: handoff.taken or self._closed)
            if not handoff.taken:
                self._pending.remove(handoff)
                return False
            return True

    def receive(self) -> Optional[WorkItem]:
        """Blocks until an item is available (returned) or the channel closes (None)."""
        with self._cond:
            self._cond.wait_for(lambda: self._pending or self._closed)
            if self._closed:
                return None
            handoff = self._pending.popleft()
            handoff.taken = True
            self._cond.notify_all()
            return handoff.item

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class WorkerPool:
    """Runs ``work_fn`` for items received on ``channel``, at most ``max_workers`` at a time.

    Usage::

        pool = WorkerPool(n, runner.run, progress)
        pool.start()
        for item in items:
            pool.channel.send(item)
        pool.close()
        pool.wait()   # join barrier; re-raises a fatal worker error
    """

    def __init__(
        self,
        max_workers: int,
        work_fn: WorkFunc,
        progress: ProgressChannel,
        channel: Optional[WorkChannel] = None,
    ):
        self.max_workers = max(1, int(max_workers))
        self.work_fn = work_fn
        self.progress = progress
        self.channel = channel or WorkChannel()
        self.logger = logging.getLogger(__name__)

        self._cond = threading.Condition()
        self._free = self.max_workers
        self._no_more_work = False
        self._fatal: Optional[BaseException] = None
        self._worker_ids = itertools.count(1)
        self._control: Optional[threading.Thread] = None

        self._stats_lock = threading.Lock()
        self.stats: Counter = Counter()
        self.workers_launched = 0

    @property
    def available_permits(self) -> int:
        with self._cond:
            return self._free

    @property
    def active_workers(self) -> int:
        with self._cond:
            return self.max_workers - self._free

    @property
    def fatal_error(self) -> Optional[BaseException]:
        with self._cond:
            return self._fatal

    def start(self) -> None:
        self._control = threading.Thread(target=self._control_loop, name="pool-supervisor", daemon=True)
        self._control.start()
        self.logger.debug(f"Supervisor running (max_workers={self.max_workers})")

    def _control_loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._free > 0 or self._no_more_work)
                if self._no_more_work:
                    break
                self._free -= 1
                worker_id = str(next(self._worker_ids))
                self.workers_launched += 1
            thread = threading.Thread(
                target=self._worker,
                args=(worker_id,),
                name=f"worker-{worker_id}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError:
                self._release()
                raise
        self.logger.debug("Supervisor loop finished")

    def _release(self) -> None:
        with self._cond:
            self._free += 1
            self._cond.notify_all()

    def _worker(self, worker_id: str) -> None:
        try:
            self.progress.emit(WorkerStarted(text=f"[WORKER {worker_id}] Started", worker_id=worker_id))
            item = self.channel.receive()
            if item is None:
                return
            status = self.work_fn(worker_id, item)
            if status is not None:
                with self._stats_lock:
                    self.stats[ItemStatus(status).value] += 1
        except Exception as e:
            self._abort(worker_id, e)
        finally:
            self._release()

    def _abort(self, worker_id: str, error: Exception) -> None:
        """Records the first fatal error and stops new work from being handed out."""
        self.logger.error(f"[WORKER {worker_id}] Fatal: {error}")
        with self._cond:
            if self._fatal is None:
                self._fatal = error
        self.progress.emit(WorkError(
            message=f"[WORKER {worker_id}] Fatal: {error}",
            worker_id=worker_id,
            stage="dedupe" if isinstance(error, DuplicateResolutionError) else None,
            cause=str(error),
            fatal=True,
        ))
        self.close()

    def close(self) -> None:
        """Signals that no more work will be sent. Running workers carry on."""
        with self._cond:
            self._no_more_work = True
            self._cond.notify_all()
        self.channel.close()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every permit is back. Re-raises the fatal worker error, if any.

        Returns False if ``timeout`` elapsed first.
        """
        with self._cond:
            finished = self._cond.wait_for(
                lambda: self._no_more_work and self._free == self.max_workers,
                timeout=timeout,
            )
            fatal = self._fatal
        if not finished:
            return False
        if self._control is not None:
            self._control.join(timeout)
        if fatal is not None:
            raise fatal
        return True
