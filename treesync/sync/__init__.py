"""Content tree synchronization engine."""

from __future__ import annotations

from .applier import UpdateApplier
from .errors import (
    ManifestRebuildError,
    ManifestUnavailableError,
    ManifestValidationError,
    SyncError,
    SyncInProgressError,
)
from .hashing import hash_bytes, hash_file
from .manifest import ManifestStore
from .protocol import (
    ApplyOutcome,
    ApplyResult,
    ChangeKind,
    ManifestEntry,
    PermittedChange,
    UpdateRequest,
    canonical_path,
    compute_permitted_changes,
    parse_manifest,
    parse_updates,
)
from .service import BatchOutcome, SyncService
from .sessions import Session, SessionManager

__all__ = [
    # Hashing
    "hash_bytes",
    "hash_file",
    # Manifest
    "ManifestStore",
    # Protocol
    "ChangeKind",
    "ApplyOutcome",
    "ManifestEntry",
    "PermittedChange",
    "UpdateRequest",
    "ApplyResult",
    "canonical_path",
    "compute_permitted_changes",
    "parse_manifest",
    "parse_updates",
    # Sessions
    "Session",
    "SessionManager",
    # Applier
    "UpdateApplier",
    # Service
    "SyncService",
    "BatchOutcome",
    # Errors
    "SyncError",
    "ManifestValidationError",
    "SyncInProgressError",
    "ManifestUnavailableError",
    "ManifestRebuildError",
]
