import itertools
import secrets
import threading
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional
from pydantic import BaseModel, ConfigDict

# Marker carried by every artifact this tool writes. Inputs containing it are never re-queued.
FIXED_SUFFIX = "_fixed"
OUTPUT_EXTENSION = ".pdf"


class ItemStatus(str, Enum):
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class CompressionStyle(str, Enum):
    NONE = "none"
    EBOOK = "ebook"    # ~150 DPI
    SCREEN = "screen"  # ~72 DPI


class WorkItem(BaseModel):
    """One source document plus the policy it is processed under.

    Immutable once built; the worker that receives it from the work channel owns it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source: Path
    scratch_dir: Path
    output_dir: Path
    compress: CompressionStyle = CompressionStyle.NONE
    skip_existing: bool = True
    reprocess: bool = False
    clean: bool = True
    dedupe: bool = False


class ArtifactPaths(NamedTuple):
    stem: Path        # extensionless recognizer target
    fixed: Path       # post-recognition artifact
    compressed: Path  # post-compression artifact (only meaningful when compressing)
    product: Path     # whichever of the two is final for the style


def artifact_paths(source: Path, output_dir: Path, compress: CompressionStyle) -> ArtifactPaths:
    """Compute output names for a source before any stage runs.

    <out>/<name>_fixed.pdf and <out>/<name>_fixed_<style>.pdf
    """
    style = CompressionStyle(compress)
    stem = Path(output_dir) / f"{Path(source).stem}{FIXED_SUFFIX}"
    fixed = stem.with_name(stem.name + OUTPUT_EXTENSION)
    compressed = stem.with_name(f"{stem.name}_{style.value}{OUTPUT_EXTENSION}")
    product = fixed if style == CompressionStyle.NONE else compressed
    return ArtifactPaths(stem=stem, fixed=fixed, compressed=compressed, product=product)


def scratch_dir_for(scratch_root: Path, pid: int, item_id: str) -> Path:
    return Path(scratch_root) / f"{pid}.{item_id}"


class IdSequence:
    """Thread-safe generator of short work identifiers, unique for the life of the run."""

    def __init__(self, start: int = 1, salt: Optional[str] = None):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()
        self._salt = salt if salt is not None else secrets.token_hex(2)

    def next_id(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{self._salt}{n:x}"
