"""Request/apply orchestration on top of the synchronization engine."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from .applier import DEFAULT_MAX_WORKERS, UpdateApplier
from .errors import ManifestUnavailableError, SyncInProgressError
from .manifest import ManifestStore
from .protocol import (
    ApplyResult,
    ChangeKind,
    UpdateRequest,
    compute_permitted_changes,
    parse_manifest,
    parse_updates,
    summarize_changes,
)
from .sessions import Session, SessionManager

logger = logging.getLogger("treesync.sync.service")


@dataclass
class BatchOutcome:
    """Per-path results of one update-batch call."""

    session_found: bool
    results: List[ApplyResult] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    def to_list(self) -> List[Dict[str, Any]]:
        return [result.to_dict() for result in self.results]


class SyncService:
    """Ties the manifest store, session table and applier together."""

    def __init__(
        self,
        store: ManifestStore,
        sessions: SessionManager,
        applier: UpdateApplier,
        batch_size: int = 10,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.store = store
        self.sessions = sessions
        self.applier = applier
        self.batch_size = batch_size
        self.max_workers = max_workers
        self._admission = threading.Lock()

    def rebuild_manifest(self) -> int:
        return self.store.rebuild()

    def request_sync(self, manifest_payload: Any) -> List[Session]:
        """Diff a client manifest and carve the changes into sessions.

        Raises ManifestValidationError for a malformed manifest,
        SyncInProgressError while earlier sessions are outstanding and
        ManifestUnavailableError when the server manifest is not built.
        """
        client_manifest = parse_manifest(manifest_payload)

        with self._admission:
            if self.sessions.has_outstanding():
                logger.warning("Update session in progress, rejecting request.")
                raise SyncInProgressError("A synchronization is already in progress.")

            if not self.store.ready:
                raise ManifestUnavailableError("Server manifest has not been built.")

            changes = compute_permitted_changes(self.store.get(), client_manifest)
            logger.info("Permitted changes identified: %s", summarize_changes(changes))

            sessions = self.sessions.split_into_sessions(changes, self.batch_size)

        logger.info("Total update sessions created: %d", len(sessions))
        return sessions

    def apply_batch(self, session_id: str, updates_payload: Any) -> BatchOutcome:
        """Apply one session's updates, reporting an outcome per update.

        The session is consumed before anything is written, so it cannot be
        replayed even to retry paths that failed.
        """
        updates = parse_updates(updates_payload)
        logger.info(
            "Received update batch for session %s with %d updates.",
            session_id, len(updates),
        )

        session = self.sessions.consume(session_id)
        if session is None:
            return BatchOutcome(
                session_found=False,
                results=[
                    ApplyResult.failure(update.path, "unknown or expired session")
                    for update in updates
                ],
            )

        results: List[ApplyResult] = [None] * len(updates)  # type: ignore[list-item]
        to_apply: List[UpdateRequest] = []
        positions: List[int] = []
        seen: Set[str] = set()

        for index, update in enumerate(updates):
            reason = self._rejection_reason(session, update)
            if not reason and update.key in seen:
                # Only the first update for a path is applied
                reason = "duplicate update for path"
            if reason:
                logger.warning("Update not permitted for %s: %s", update.path, reason)
                results[index] = ApplyResult.failure(update.path, reason)
            else:
                seen.add(update.key)
                to_apply.append(update)
                positions.append(index)

        for index, result in zip(positions, self.applier.apply_many(to_apply, self.max_workers)):
            results[index] = result

        outcome = BatchOutcome(session_found=True, results=results)
        logger.info(
            "Completed applying updates for session %s (%d failed).",
            session_id, outcome.failures,
        )
        return outcome

    def status(self) -> Dict[str, Any]:
        return {
            "ready": self.store.ready,
            "content_dir": str(self.store.content_dir),
            "tracked_files": len(self.store),
            "open_sessions": len(self.sessions),
            "batch_size": self.batch_size,
            "session_timeout": self.sessions.timeout,
        }

    @staticmethod
    def _rejection_reason(session: Session, update: UpdateRequest) -> str:
        permitted = session.permits(update.path)
        if permitted is None:
            return "path not permitted by session"

        kind = update.change_kind
        if kind is None:
            # Left to the applier, which reports the invalid type
            return ""
        if (kind is ChangeKind.DELETE) != (permitted.kind is ChangeKind.DELETE):
            return f"'{kind.value}' does not match permitted '{permitted.kind.value}'"
        return ""


__all__ = ["SyncService", "BatchOutcome"]
