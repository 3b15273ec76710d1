"""Error taxonomy for the synchronization engine."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for synchronization failures surfaced to callers."""


class ManifestValidationError(SyncError):
    """The submitted manifest or update payload is missing or malformed."""


class SyncInProgressError(SyncError):
    """Another synchronization flow still has outstanding sessions."""


class ManifestUnavailableError(SyncError):
    """The server manifest is not built, so no diff can be trusted."""


class ManifestRebuildError(SyncError):
    """Scanning the content tree failed; the service must not become ready."""


__all__ = [
    "SyncError",
    "ManifestValidationError",
    "SyncInProgressError",
    "ManifestUnavailableError",
    "ManifestRebuildError",
]
