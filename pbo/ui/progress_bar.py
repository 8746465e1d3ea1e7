from typing import Optional
from rich.console import Console
from rich.progress import Progress, BarColumn, TextColumn, TimeRemainingColumn, MofNCompleteColumn
from pbo.infrastructure.event_bus import EventBus
from pbo.domain.events import CountUpdate, TotalEstimate, WorkError


class ProgressBarReporter:
    """Rich progress bar driven by CountUpdate / TotalEstimate events.

    Starts against ``initial_total`` (the number of input patterns) until the
    list builder sends the real total. Abandoned items advance the bar too, so
    it reaches the end even when some documents fail.
    """

    def __init__(self, bus: EventBus, initial_total: int, console: Optional[Console] = None):
        self.progress = Progress(
            TextColumn("{task.description}"),
            MofNCompleteColumn(),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=console or Console(stderr=True),
            transient=False,
        )
        self.task_id = self.progress.add_task("OCR", total=initial_total, start=False)
        bus.subscribe(CountUpdate, self.on_count_update)
        bus.subscribe(TotalEstimate, self.on_total_estimate)
        bus.subscribe(WorkError, self.on_work_error)

    def on_count_update(self, event: CountUpdate):
        self.progress.start_task(self.task_id)
        self.progress.advance(self.task_id, event.count)

    def on_total_estimate(self, event: TotalEstimate):
        self.progress.update(self.task_id, total=event.total)

    def on_work_error(self, event: WorkError):
        if event.item_id and not event.fatal:
            self.progress.advance(self.task_id, 1)

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()
        return False
