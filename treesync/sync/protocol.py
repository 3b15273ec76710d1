"""Sync protocol data structures and the manifest diff."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import ManifestValidationError


class ChangeKind(str, Enum):
    """Operations the server may authorize for a single path."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def writes_content(self) -> bool:
        return self is not ChangeKind.DELETE


def canonical_path(raw: Any) -> Optional[str]:
    """Normalize a relative slash-separated path, or None if it is unusable.

    ``./a//b.md`` becomes ``a/b.md``; absolute paths, ``..`` segments,
    backslashes and empty paths are rejected.
    """
    if not isinstance(raw, str) or not raw or "\\" in raw or "\x00" in raw:
        return None
    pure = PurePosixPath(raw)
    if pure.is_absolute() or ".." in pure.parts:
        return None
    parts = [part for part in pure.parts if part not in ("", ".")]
    if not parts:
        return None
    return "/".join(parts)


class ApplyOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class ManifestEntry:
    """One file in a manifest."""

    path: str  # Relative, slash-separated
    fingerprint: str  # SHA-256 hex digest of content

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "hash": self.fingerprint}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ManifestEntry":
        raw_path = data.get("path")
        fingerprint = data.get("hash", data.get("fingerprint"))
        if not isinstance(raw_path, str) or not raw_path:
            raise ManifestValidationError("Manifest entry is missing a 'path'.")
        path = canonical_path(raw_path)
        if path is None:
            raise ManifestValidationError(f"Manifest entry '{raw_path}' is not a relative path.")
        if not isinstance(fingerprint, str):
            raise ManifestValidationError(f"Manifest entry '{path}' is missing a 'hash'.")
        return cls(path=path, fingerprint=fingerprint)


@dataclass(frozen=True)
class PermittedChange:
    """A single authorized operation; never carries content."""

    kind: ChangeKind
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "path": self.path}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PermittedChange":
        return cls(kind=ChangeKind(data["type"]), path=data["path"])


@dataclass
class UpdateRequest:
    """Caller-supplied change for one path within a session.

    ``kind`` keeps the raw value sent by the caller so that an unrecognised
    kind can be reported as a failure for that path alone.
    """

    kind: str
    path: str
    content: Optional[bytes] = None

    @property
    def key(self) -> Optional[str]:
        """Canonical form of ``path``, or None when it is not a usable path."""
        return canonical_path(self.path)

    @property
    def change_kind(self) -> Optional[ChangeKind]:
        try:
            return ChangeKind(self.kind)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UpdateRequest":
        path = data.get("path")
        if not isinstance(path, str):
            raise ManifestValidationError("Update is missing a 'path'.")

        raw_content = data.get("content")
        content: Optional[bytes] = None
        if isinstance(raw_content, str):
            if data.get("encoding") == "base64":
                try:
                    content = base64.b64decode(raw_content, validate=True)
                except binascii.Error as e:
                    raise ManifestValidationError(
                        f"Update '{path}' has invalid base64 content: {e}"
                    ) from e
            else:
                content = raw_content.encode("utf-8")
        elif raw_content is not None:
            raise ManifestValidationError(f"Update '{path}' has non-string content.")

        return cls(kind=str(data.get("type", "")), path=path, content=content)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one submitted update."""

    path: str
    outcome: ApplyOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ApplyOutcome.SUCCESS

    @classmethod
    def success(cls, path: str) -> "ApplyResult":
        return cls(path=path, outcome=ApplyOutcome.SUCCESS)

    @classmethod
    def failure(cls, path: str, detail: str = "") -> "ApplyResult":
        return cls(path=path, outcome=ApplyOutcome.FAILURE, detail=detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "status": self.outcome.value}


def parse_manifest(payload: Any) -> List[ManifestEntry]:
    """Validate a wire manifest (a list of ``{path, hash}`` objects)."""
    if not isinstance(payload, list):
        raise ManifestValidationError("Manifest must be a list of entries.")
    entries = []
    for item in payload:
        if not isinstance(item, Mapping):
            raise ManifestValidationError("Manifest entries must be objects.")
        entries.append(ManifestEntry.from_dict(item))
    return entries


def parse_updates(payload: Any) -> List[UpdateRequest]:
    """Validate a wire update list."""
    if not isinstance(payload, list):
        raise ManifestValidationError("Updates must be a list.")
    updates = []
    for item in payload:
        if not isinstance(item, Mapping):
            raise ManifestValidationError("Updates must be objects.")
        updates.append(UpdateRequest.from_dict(item))
    return updates


def compute_permitted_changes(
    server_manifest: Mapping[str, str],
    client_manifest: Iterable[ManifestEntry],
) -> List[PermittedChange]:
    """Compute the changes that bring the server tree in line with the client.

    Client paths are visited first, in client order, yielding creates and
    updates; server-only paths follow in server order as deletes. There is
    no rename detection: a moved file is a delete of the old path and a
    create of the new one.
    """
    client_map: Dict[str, str] = {}
    for entry in client_manifest:
        # Later duplicates win, keeping one change per path
        client_map.pop(entry.path, None)
        client_map[entry.path] = entry.fingerprint

    changes: List[PermittedChange] = []

    for path, client_hash in client_map.items():
        server_hash = server_manifest.get(path)
        if server_hash is None:
            changes.append(PermittedChange(ChangeKind.CREATE, path))
        elif server_hash != client_hash:
            changes.append(PermittedChange(ChangeKind.UPDATE, path))

    for path in server_manifest:
        if path not in client_map:
            changes.append(PermittedChange(ChangeKind.DELETE, path))

    return changes


def summarize_changes(changes: Sequence[PermittedChange]) -> str:
    counts = {kind: 0 for kind in ChangeKind}
    for change in changes:
        counts[change.kind] += 1
    parts = [f"{count} to {kind.value}" for kind, count in counts.items() if count]
    return ", ".join(parts) if parts else "no changes"


__all__ = [
    "canonical_path",
    "ChangeKind",
    "ApplyOutcome",
    "ManifestEntry",
    "PermittedChange",
    "UpdateRequest",
    "ApplyResult",
    "parse_manifest",
    "parse_updates",
    "compute_permitted_changes",
    "summarize_changes",
]
