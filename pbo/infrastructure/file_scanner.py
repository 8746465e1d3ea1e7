import glob
import logging
import stat
from pathlib import Path
from typing import Iterable, List, Optional, Set

from pbo.domain.events import Message, TotalEstimate
from pbo.domain.models import FIXED_SUFFIX
from pbo.infrastructure.progress import ProgressChannel
from pbo.infrastructure.dedupe import DedupeIndex, sha256_file

GLOB_CHARS = ("*", "?")


class InputNotFoundError(FileNotFoundError):
    """A literal input path could not be statted."""


class ListBuilder:
    """Expands input patterns into the concrete list of documents to process.

    - Patterns containing ``*`` or ``?`` are globbed and the matches expanded in turn.
    - Literal paths must exist; anything else aborts the build.
    - Directories are skipped, as are names carrying the ``_fixed`` marker.
    - A file reached through several patterns is listed once.
    - With a DedupeIndex, only the first path of each content hash is returned.
    """

    def __init__(
        self,
        dedupe_index: Optional[DedupeIndex] = None,
        progress: Optional[ProgressChannel] = None,
    ):
        self.dedupe_index = dedupe_index
        self.progress = progress
        self.logger = logging.getLogger(__name__)

    def build(
        self,
        patterns: Iterable[str],
        emit_estimate: bool = True,
        _seen: Optional[Set[Path]] = None,
    ) -> List[Path]:
        seen = set() if _seen is None else _seen
        files: List[Path] = []
        for pattern in patterns:
            pattern = str(pattern)
            if FIXED_SUFFIX in Path(pattern).name:
                # Output of an earlier run
                self.logger.debug(f"BUILDLIST_SKIP: {pattern} (already processed)")
                continue

            if any(ch in pattern for ch in GLOB_CHARS):
                matches = sorted(glob.glob(pattern, recursive=True))
                if self.logger.isEnabledFor(logging.DEBUG):
                    self.logger.debug(f"BUILDLIST_GLOB: {pattern} -> {len(matches)} matches")
                files.extend(self.build(matches, emit_estimate=False, _seen=seen))
                continue

            path = Path(pattern)
            try:
                st = path.stat()
            except OSError as e:
                raise InputNotFoundError(f"File {pattern} cannot be found: {e}") from e

            if stat.S_ISDIR(st.st_mode):
                continue

            key = path.resolve()
            if key in seen:
                self.logger.debug(f"BUILDLIST_SKIP: {pattern} (already listed)")
                continue
            seen.add(key)

            if self.dedupe_index is not None and not self._register(path):
                continue
            files.append(path)

        if emit_estimate and self.progress is not None:
            self.progress.emit(TotalEstimate(total=len(files)))
        return files

    def _register(self, path: Path) -> bool:
        """Records the path in the dedupe index. False when it duplicates an earlier input."""
        digest = sha256_file(path)
        canonical, loaded = self.dedupe_index.load_or_store(digest, path)
        if not loaded:
            return True
        text = f"[BUILDLIST] DUPE! File '{canonical}' and '{path}' share a sum ({digest})!"
        self.logger.info(text)
        if self.progress is not None:
            self.progress.emit(Message(text=text))
        return False
