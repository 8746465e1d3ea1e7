import logging
from pbo.infrastructure.event_bus import EventBus
from pbo.ui.state import RunState
from pbo.domain.events import (
    Message, WorkerStarted, CountUpdate, TotalEstimate, WorkError, RunFinished
)

class ReportManager:
    """Subscribes to EventBus, updates RunState and writes the run log.

    Status messages are logged at INFO (worker start-up chatter at DEBUG),
    errors at ERROR. Whether INFO reaches the console is decided by the
    logging setup, not here.
    """

    def __init__(self, bus: EventBus, state: RunState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(Message, self.on_message)
        self.bus.subscribe(CountUpdate, self.on_count_update)
        self.bus.subscribe(TotalEstimate, self.on_total_estimate)
        self.bus.subscribe(WorkError, self.on_work_error)
        self.bus.subscribe(RunFinished, self.on_run_finished)

    def on_message(self, event: Message):
        started = isinstance(event, WorkerStarted)
        self.state.add_message(worker_started=started)
        if started:
            self.logger.debug(event.text)
        else:
            self.logger.info(event.text)

    def on_count_update(self, event: CountUpdate):
        self.state.add_completed(event.count)

    def on_total_estimate(self, event: TotalEstimate):
        self.state.set_total(event.total)
        self.logger.debug(f"Total estimate: {event.total}")

    def on_work_error(self, event: WorkError):
        self.state.add_error(event)
        self.logger.error(event.message)

    def on_run_finished(self, event: RunFinished):
        self.state.mark_finished()
        line = self.state.summary_line()
        if event.aborted or event.failed:
            self.logger.warning(f"Run finished with errors: {line}")
        else:
            self.logger.info(f"Run finished: {line}")
