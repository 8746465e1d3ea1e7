"""Per-document pipeline: rasterize → recognize → compress → duplicate copies.

Every stage checks the skip/reprocess policy of its WorkItem before doing any
work, and announces itself on the progress channel before it starts. Tool and
filesystem failures abandon the item with a ``WorkError`` event; they never
stop the run. Failures while copying results to duplicate inputs do stop the
run: they raise ``DuplicateResolutionError`` out of :meth:`PipelineRunner.run`.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

from pbo.domain.events import CountUpdate, Message, WorkError
from pbo.domain.models import (
    ArtifactPaths,
    CompressionStyle,
    ItemStatus,
    WorkItem,
    artifact_paths,
)
from pbo.infrastructure.dedupe import DedupeIndex, copy_file, sha256_file
from pbo.infrastructure.progress import ProgressChannel
from pbo.infrastructure.tools import ToolError, Toolchain


class DuplicateResolutionError(RuntimeError):
    """Hashing or copying failed while materializing duplicate outputs."""


class PipelineRunner:
    def __init__(
        self,
        toolchain: Toolchain,
        progress: ProgressChannel,
        dedupe_index: Optional[DedupeIndex] = None,
    ):
        self.toolchain = toolchain
        self.progress = progress
        self.dedupe_index = dedupe_index
        self.logger = logging.getLogger(__name__)

    def _say(self, worker_id: str, text: str) -> None:
        self.progress.emit(Message(text=f"[WORKER {worker_id}] {text}", worker_id=worker_id))

    def _done(self, worker_id: str, text: str) -> None:
        self._say(worker_id, text)
        self.progress.emit(CountUpdate(count=1))

    def _fail(self, worker_id: str, item: WorkItem, stage: str, error: Exception) -> ItemStatus:
        self.progress.emit(WorkError(
            message=f"[WORKER {worker_id}] Error {stage} '{item.source}': {error}",
            worker_id=worker_id,
            item_id=item.id,
            source=item.source,
            stage=stage,
            cause=str(error),
        ))
        return ItemStatus.FAILED

    def run(self, worker_id: str, item: WorkItem) -> ItemStatus:
        """Processes one WorkItem to completion or failure."""
        paths = artifact_paths(item.source, item.output_dir, item.compress)
        self._say(worker_id, f"Work! {item.id} '{item.source}'")

        try:
            status = self._run_stages(worker_id, item, paths)
        finally:
            if item.clean:
                self._remove_scratch(worker_id, item)

        if item.dedupe and status != ItemStatus.FAILED:
            self._resolve_duplicates(worker_id, item, paths.product)
        return status

    def _run_stages(self, worker_id: str, item: WorkItem, paths: ArtifactPaths) -> ItemStatus:
        compressing = item.compress != CompressionStyle.NONE

        if item.reprocess and not (paths.fixed.exists() or paths.compressed.exists()):
            self._done(
                worker_id,
                f"Reprocessing '{item.source}' unneeded, as no fixed variant exists. "
                "Completed Work! Skipping all the things!",
            )
            return ItemStatus.SKIPPED

        if compressing and item.skip_existing and paths.compressed.exists():
            self._done(
                worker_id,
                f"Compress file '{paths.compressed}' already exists. Completed Work! Skipping all the things!",
            )
            return ItemStatus.SKIPPED

        if item.skip_existing and paths.fixed.exists():
            self._say(worker_id, f"{paths.fixed} found, skipping rasterize and recognize")
        else:
            failed = self._extract_and_recognize(worker_id, item, paths)
            if failed:
                return failed

        if compressing:
            if item.skip_existing and paths.compressed.exists():
                self._say(worker_id, f"{paths.compressed} found, skipping compress")
            else:
                self._say(worker_id, f"compress({item.compress.value}, {paths.fixed}, {paths.compressed})")
                try:
                    self.toolchain.compressor.compress(item.compress.value, paths.fixed, paths.compressed)
                except (ToolError, OSError) as e:
                    return self._fail(worker_id, item, "compress", e)
                if item.clean:
                    self._say(worker_id, f"Removing intermediate '{paths.fixed}'")
                    try:
                        paths.fixed.unlink()
                    except FileNotFoundError:
                        pass

        self._done(worker_id, f"Completed Work! See '{paths.product}'")
        return ItemStatus.COMPLETED

    def _extract_and_recognize(self, worker_id: str, item: WorkItem, paths: ArtifactPaths) -> Optional[ItemStatus]:
        try:
            item.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._fail(worker_id, item, "scratch", e)

        self._say(worker_id, f"rasterize({item.source}, {item.scratch_dir}/)")
        try:
            self.toolchain.rasterizer.rasterize(item.source, item.scratch_dir)
        except (ToolError, OSError) as e:
            return self._fail(worker_id, item, "rasterize", e)

        self._say(worker_id, "createPageList")
        try:
            manifest = self._write_manifest(item)
        except OSError as e:
            return self._fail(worker_id, item, "manifest", e)

        self._say(worker_id, f"recognize({manifest}, {paths.stem})")
        try:
            self.toolchain.recognizer.recognize(manifest, paths.stem)
        except (ToolError, OSError) as e:
            return self._fail(worker_id, item, "recognize", e)
        return None

    def _write_manifest(self, item: WorkItem) -> Path:
        """Lists the rasterized pages, in page order, one path per line."""
        manifest = item.scratch_dir / f"{item.id}.lst"
        pages = sorted(item.scratch_dir.glob(self.toolchain.rasterizer.page_glob))
        with open(manifest, "w") as f:
            for page in pages:
                f.write(f"{page}\n")
        return manifest

    def _remove_scratch(self, worker_id: str, item: WorkItem) -> None:
        if not item.scratch_dir.exists():
            return
        try:
            shutil.rmtree(item.scratch_dir)
        except OSError as e:
            self.logger.warning(f"[WORKER {worker_id}] Failed to remove scratch dir {item.scratch_dir}: {e}")

    def _resolve_duplicates(self, worker_id: str, item: WorkItem, product: Path) -> None:
        if self.dedupe_index is None:
            return
        if not product.exists():
            self._say(worker_id, f"No product at '{product}', duplicate copies skipped")
            return

        try:
            digest = sha256_file(item.source)
        except OSError as e:
            raise DuplicateResolutionError(f"Hashing '{item.source}' failed: {e}") from e

        for other in self.dedupe_index.duplicates_of(digest, item.source):
            target = artifact_paths(other, item.output_dir, item.compress).product
            if target.resolve() == product.resolve():
                # Same basename as the canonical source
                self._say(
                    worker_id,
                    f"Post-process dupe copy for '{other}' skipped, its product is '{product}' itself",
                )
                continue
            if item.skip_existing and target.exists():
                self._say(
                    worker_id,
                    f"Post-process dupe copy of '{product}' to '{target}' for '{other}' skipped, as it exists!",
                )
                continue
            self._say(worker_id, f"Post-process dupe copy of '{product}' to '{target}' for '{other}'")
            try:
                copy_file(product, target)
            except OSError as e:
                raise DuplicateResolutionError(f"Copying '{product}' to '{target}' failed: {e}") from e
