import hashlib
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple


def sha256_file(path: Path, chunk_size: int = 8 * 1024 * 1024) -> str:
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def copy_file(src: Path, dst: Path, mode_from: Optional[Path] = None) -> int:
    """Byte-copies src to dst and applies the permission bits of ``mode_from`` (default: src)."""
    shutil.copyfile(src, dst)
    shutil.copymode(mode_from or src, dst)
    return Path(dst).stat().st_size


class DedupeIndex:
    """Content hash → ordered list of source paths sharing that content.

    The first path stored under a hash is the canonical one; the rest are
    duplicates satisfied by copying the canonical artifact. Created once per
    run, filled while the work list is built, read by workers afterwards.
    """

    def __init__(self):
        self._entries: Dict[str, List[Path]] = {}
        self._lock = threading.Lock()

    def load_or_store(self, digest: str, path: Path) -> Tuple[Path, bool]:
        """Atomically records ``path`` under ``digest``.

        Returns ``(canonical, loaded)``. ``loaded`` is False when ``path`` became
        the canonical entry, True when the digest was already present and
        ``path`` was appended as a duplicate.
        """
        path = Path(path)
        with self._lock:
            paths = self._entries.get(digest)
            if paths is None:
                self._entries[digest] = [path]
                return path, False
            if path not in paths:
                paths.append(path)
            return paths[0], True

    def paths_for(self, digest: str) -> List[Path]:
        with self._lock:
            return list(self._entries.get(digest, ()))

    def duplicates_of(self, digest: str, path: Path) -> List[Path]:
        """Every path sharing ``digest`` except ``path`` itself."""
        path = Path(path)
        return [p for p in self.paths_for(digest) if p != path]

    def groups(self) -> Dict[str, List[Path]]:
        """Snapshot of hashes that have at least one duplicate."""
        with self._lock:
            return {h: list(p) for h, p in self._entries.items() if len(p) > 1}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
