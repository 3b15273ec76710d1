"""Apply authorized changes to the content tree and the manifest store."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence

from .hashing import hash_bytes
from .manifest import ManifestStore
from .protocol import ApplyResult, ChangeKind, UpdateRequest, canonical_path

logger = logging.getLogger("treesync.sync.applier")

DEFAULT_MAX_WORKERS = 4


class UpdateApplier:
    """Writes or deletes one path at a time, then records it in the store.

    Failures are reported per path and never raised, so one bad update
    cannot abort its siblings in the same batch.
    """

    def __init__(self, content_dir: Path, store: ManifestStore):
        self.content_dir = content_dir
        self.store = store

    def apply(self, request: UpdateRequest) -> ApplyResult:
        logger.debug("Applying %s on %s", request.kind, request.path)

        kind = request.change_kind
        if kind is None:
            logger.error("Invalid update type '%s' for %s", request.kind, request.path)
            return ApplyResult.failure(request.path, f"invalid update type '{request.kind}'")

        target = self.resolve(request.path)
        if target is None:
            logger.warning("Rejected path outside content root: %s", request.path)
            return ApplyResult.failure(request.path, "path outside content root")

        try:
            if kind.writes_content:
                return self._write(request, target)
            return self._delete(request, target)
        except OSError as e:
            logger.error("Error applying %s to %s: %s", kind.value, request.path, e)
            return ApplyResult.failure(request.path, str(e))

    def apply_many(
        self,
        requests: Sequence[UpdateRequest],
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> List[ApplyResult]:
        """Apply requests concurrently; results keep the request order."""
        if not requests:
            return []
        if max_workers <= 1 or len(requests) == 1:
            return [self.apply(request) for request in requests]

        with ThreadPoolExecutor(
            max_workers=min(max_workers, len(requests)),
            thread_name_prefix="treesync-apply",
        ) as executor:
            return list(executor.map(self.apply, requests))

    def resolve(self, rel_path: str) -> Optional[Path]:
        """Map a relative slash-separated path into the content root.

        The resolved target must stay under the resolved root, so a
        symlinked directory cannot carry a write outside of it.
        """
        key = canonical_path(rel_path)
        if key is None:
            return None
        target = self.content_dir.joinpath(*key.split("/"))
        root = self.content_dir.resolve()
        resolved = target.resolve()
        if resolved == root or root not in resolved.parents:
            return None
        return target

    def _write(self, request: UpdateRequest, target: Path) -> ApplyResult:
        if request.content is None:
            logger.error("No content supplied for %s of %s", request.kind, request.path)
            return ApplyResult.failure(request.path, "missing content")

        fingerprint = hash_bytes(request.content)
        with self.store.mutation():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(request.content)
            self.store.set(self._manifest_key(target), fingerprint)

        logger.info("File %sd: %s (hash %s)", request.kind, request.path, fingerprint)
        return ApplyResult.success(request.path)

    def _delete(self, request: UpdateRequest, target: Path) -> ApplyResult:
        with self.store.mutation():
            try:
                target.unlink()
            except FileNotFoundError:
                logger.info("File already absent: %s", request.path)
            self.store.remove(self._manifest_key(target))

        logger.info("File deleted: %s", request.path)
        return ApplyResult.success(request.path)

    def _manifest_key(self, target: Path) -> str:
        return target.relative_to(self.content_dir).as_posix()


__all__ = ["UpdateApplier", "DEFAULT_MAX_WORKERS"]
