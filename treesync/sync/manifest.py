"""Authoritative server-side manifest of the content tree."""

from __future__ import annotations

import fnmatch
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence

from .errors import ManifestRebuildError
from .hashing import hash_file

logger = logging.getLogger("treesync.sync.manifest")


class ManifestStore:
    """Mapping of relative path to content fingerprint for the content root.

    The mapping is replaced wholesale by :meth:`rebuild` and mutated one path
    at a time by the update applier through :meth:`set` and :meth:`remove`.
    Appliers wrap each filesystem write and its store mutation in
    :meth:`mutation`; a rebuild waits for those to drain and holds new ones
    back until the fresh mapping is in place.
    """

    def __init__(
        self,
        content_dir: Path,
        exclude_patterns: Optional[Sequence[str]] = None,
    ):
        self.content_dir = content_dir
        self.exclude_patterns = list(exclude_patterns) if exclude_patterns else []
        self._entries: Dict[str, str] = {}
        self._ready = False
        self._lock = threading.Lock()
        self._gate = threading.Condition()
        self._active_mutations = 0
        self._rebuilding = False

    @property
    def ready(self) -> bool:
        """Whether the store has been populated by a successful rebuild."""
        return self._ready

    def rebuild(self) -> int:
        """Rescan the content root and replace the whole mapping.

        Returns the number of tracked files. Raises ManifestRebuildError when
        the tree cannot be read; the previous mapping is left untouched.
        """
        with self._gate:
            while self._rebuilding or self._active_mutations:
                self._gate.wait()
            self._rebuilding = True

        try:
            entries = self._scan()
            with self._lock:
                self._entries = entries
                self._ready = True
        finally:
            with self._gate:
                self._rebuilding = False
                self._gate.notify_all()

        logger.info("Rebuilt manifest with %d files from %s", len(entries), self.content_dir)
        return len(entries)

    def get(self) -> Dict[str, str]:
        """Return a copy of the current mapping."""
        with self._lock:
            return dict(self._entries)

    def set(self, path: str, fingerprint: str) -> None:
        with self._lock:
            self._entries[path] = fingerprint
        logger.debug("Manifest set %s -> %s", path, fingerprint)

    def remove(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)
        logger.debug("Manifest removed %s", path)

    @contextmanager
    def mutation(self) -> Iterator["ManifestStore"]:
        """Hold off rebuilds while a single path is written and recorded."""
        with self._gate:
            while self._rebuilding:
                self._gate.wait()
            self._active_mutations += 1
        try:
            yield self
        finally:
            with self._gate:
                self._active_mutations -= 1
                self._gate.notify_all()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries

    def _scan(self) -> Dict[str, str]:
        root = self.content_dir
        if not root.exists():
            raise ManifestRebuildError(f"Content directory '{root}' does not exist.")
        if not root.is_dir():
            raise ManifestRebuildError(f"Content path '{root}' is not a directory.")

        entries: Dict[str, str] = {}
        try:
            for file_path in self._iter_files():
                rel_path = file_path.relative_to(root).as_posix()
                entries[rel_path] = hash_file(file_path)
        except OSError as e:
            raise ManifestRebuildError(f"Failed to read content tree '{root}': {e}") from e
        return entries

    def _iter_files(self) -> Iterator[Path]:
        """Iterate over all tracked files below the content root."""
        for file_path in sorted(self.content_dir.rglob("*")):
            if not file_path.is_file():
                continue

            rel_path = file_path.relative_to(self.content_dir).as_posix()
            if self._is_excluded(rel_path):
                continue

            yield file_path

    def _is_excluded(self, rel_path: str) -> bool:
        """Check if a path matches any exclude pattern."""
        for pattern in self.exclude_patterns:
            if fnmatch.fnmatch(rel_path, pattern):
                return True
            # Also check just the filename
            if fnmatch.fnmatch(Path(rel_path).name, pattern):
                return True
        return False


__all__ = ["ManifestStore"]
