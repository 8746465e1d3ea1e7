"""Progress events produced by the pipeline.

Workers, the list builder and the supervisor emit these onto the progress
channel (`infrastructure/progress.py`). A single sink drains the channel and
republishes each event on the EventBus for the reporting layer.

The set of progress events is closed: ``Message``, ``CountUpdate``,
``TotalEstimate`` and ``WorkError``. ``WorkerStarted`` is a ``Message`` subtype
so reporters that only care about text can ignore the distinction.
"""

from pathlib import Path
from typing import Optional, Union
from pydantic import BaseModel


class Event(BaseModel):
    """Base class for all events carried by the EventBus."""

    pass


class Message(Event):
    """Human-readable status line."""

    text: str
    worker_id: Optional[str] = None


class WorkerStarted(Message):
    """Emitted by every worker slot as soon as it is launched."""

    pass


class CountUpdate(Event):
    """One or more work units finished (successfully, skipped or failed)."""

    count: int = 1


class TotalEstimate(Event):
    """Revises the expected number of work units."""

    total: int


class WorkError(Event):
    """A work item was abandoned, or the run hit a fatal error.

    ``stage`` names the pipeline step that failed so the log line is enough to
    diagnose without re-running.
    """

    message: str
    worker_id: Optional[str] = None
    item_id: Optional[str] = None
    source: Optional[Path] = None
    stage: Optional[str] = None
    cause: Optional[str] = None
    fatal: bool = False


ProgressEvent = Union[Message, CountUpdate, TotalEstimate, WorkError]


class RunFinished(Event):
    """Published once by the driver after the join barrier."""

    completed: int = 0
    failed: int = 0
    aborted: bool = False
