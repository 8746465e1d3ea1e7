"""Run driver: discovery → work items → bounded worker pool → join.

Builds the work list (optionally pruning duplicate inputs), turns each source
into an immutable WorkItem, hands the items one by one to the worker pool and
blocks until every worker slot is free again. All per-run shared state (the
dedupe index, the id sequence, the scratch root) lives in a RunContext created
here and passed explicitly to the pieces that need it.
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from pbo.config.models import AppConfig, GeneralConfig
from pbo.domain.models import (
    CompressionStyle,
    IdSequence,
    ItemStatus,
    WorkItem,
    scratch_dir_for,
)
from pbo.infrastructure.dedupe import DedupeIndex
from pbo.infrastructure.file_scanner import ListBuilder
from pbo.infrastructure.progress import ProgressChannel
from pbo.infrastructure.tools import Toolchain
from pbo.pipeline.runner import PipelineRunner
from pbo.pipeline.supervisor import WorkerPool


@dataclass
class RunContext:
    scratch_root: Path
    pid: int = field(default_factory=os.getpid)
    ids: IdSequence = field(default_factory=IdSequence)
    dedupe_index: Optional[DedupeIndex] = None

    @classmethod
    def from_config(cls, general: GeneralConfig) -> "RunContext":
        return cls(
            scratch_root=Path(general.temp_dir) / general.scratch_folder,
            dedupe_index=DedupeIndex() if general.dedupe else None,
        )


@dataclass
class RunSummary:
    discovered: int = 0
    sent: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    workers_launched: int = 0
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.sent == self.discovered


class Orchestrator:
    """Drives one batch run.

    Args:
        config: AppConfig; ``config.general`` supplies paths, concurrency and policy flags.
        toolchain: adapters for the rasterize, recognize and compress tools.
        progress: channel every component reports on.
        context: per-run state; built from config when omitted.
    """

    def __init__(
        self,
        config: AppConfig,
        toolchain: Toolchain,
        progress: ProgressChannel,
        context: Optional[RunContext] = None,
    ):
        self.config = config
        self.toolchain = toolchain
        self.progress = progress
        self.context = context or RunContext.from_config(config.general)
        self.logger = logging.getLogger(__name__)

    def make_item(self, source: Path) -> WorkItem:
        general = self.config.general
        item_id = self.context.ids.next_id()
        return WorkItem(
            id=item_id,
            source=Path(source),
            scratch_dir=scratch_dir_for(self.context.scratch_root, self.context.pid, item_id),
            output_dir=Path(general.output_dir),
            compress=CompressionStyle(general.compress),
            skip_existing=general.skip_existing,
            reprocess=general.reprocess,
            clean=general.clean,
            dedupe=general.dedupe,
        )

    def _check_output_dir(self) -> Path:
        output_dir = Path(self.config.general.output_dir)
        if not output_dir.exists():
            raise FileNotFoundError(f"Output location '{output_dir}' does not exist.")
        if not output_dir.is_dir():
            raise NotADirectoryError(f"Output location '{output_dir}' is not a directory.")
        return output_dir

    def discover(self, patterns: Iterable[str]) -> List[Path]:
        builder = ListBuilder(dedupe_index=self.context.dedupe_index, progress=self.progress)
        files = builder.build(patterns)
        self.logger.info(f"Discovery finished: {len(files)} documents to process")
        if self.context.dedupe_index is not None:
            groups = self.context.dedupe_index.groups()
            if groups:
                dupes = sum(len(paths) - 1 for paths in groups.values())
                self.logger.info(f"Discovery: {dupes} duplicate inputs will be copied from {len(groups)} canonical documents")
        return files

    def run(self, patterns: Iterable[str]) -> RunSummary:
        general = self.config.general
        start = time.monotonic()
        self._check_output_dir()
        self.context.scratch_root.mkdir(parents=True, exist_ok=True)

        summary = RunSummary()
        try:
            files = self.discover(patterns)
            summary.discovered = len(files)

            runner = PipelineRunner(self.toolchain, self.progress, self.context.dedupe_index)
            pool = WorkerPool(general.threads, runner.run, self.progress)
            pool.start()
            try:
                for source in files:
                    if not pool.channel.send(self.make_item(source)):
                        self.logger.warning(f"Work channel closed, {source} not processed")
                        break
                    summary.sent += 1
            finally:
                pool.close()
                self.logger.debug("Done sending work. Waiting...")
                # Re-raises a fatal worker error once every slot is back.
                pool.wait()
            self.logger.debug("Job is done!")

            summary.completed = pool.stats[ItemStatus.COMPLETED.value]
            summary.skipped = pool.stats[ItemStatus.SKIPPED.value]
            summary.failed = pool.stats[ItemStatus.FAILED.value]
            summary.workers_launched = pool.workers_launched
        finally:
            if general.clean:
                shutil.rmtree(self.context.scratch_root, ignore_errors=True)
            summary.elapsed_s = time.monotonic() - start

        self.logger.info(
            f"Run finished: discovered={summary.discovered}, completed={summary.completed}, "
            f"skipped={summary.skipped}, failed={summary.failed}, elapsed={summary.elapsed_s:.1f}s"
        )
        return summary
