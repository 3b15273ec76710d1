"""Content fingerprints used to compare files without comparing bytes."""

from __future__ import annotations

import hashlib
from pathlib import Path

CHUNK_SIZE = 8192


def hash_bytes(data: bytes) -> str:
    """Compute the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def hash_file(file_path: Path) -> str:
    """Compute the SHA-256 hex digest of a file, streaming its content."""
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


__all__ = ["hash_bytes", "hash_file", "CHUNK_SIZE"]
