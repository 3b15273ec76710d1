"""Shared fixtures for the synchronization tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict

import pytest

from treesync.sync import ManifestStore, SessionManager, SyncService, UpdateApplier, hash_bytes


@pytest.fixture
def content_dir(tmp_path: Path) -> Path:
    root = tmp_path / "content"
    root.mkdir()
    return root


@pytest.fixture
def store(content_dir: Path) -> ManifestStore:
    return ManifestStore(content_dir)


@pytest.fixture
def sessions():
    manager = SessionManager(timeout=60.0)
    yield manager
    manager.clear()


@pytest.fixture
def service(content_dir: Path, store: ManifestStore, sessions: SessionManager) -> SyncService:
    return SyncService(
        store=store,
        sessions=sessions,
        applier=UpdateApplier(content_dir, store),
        batch_size=3,
    )


@pytest.fixture
def make_tree(content_dir: Path) -> Callable[[Dict[str, str]], Dict[str, str]]:
    """Write files under the content root; returns path -> fingerprint."""

    def _write(files: Dict[str, str]) -> Dict[str, str]:
        manifest = {}
        for rel_path, content in files.items():
            target = content_dir / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            manifest[rel_path] = hash_bytes(content.encode("utf-8"))
        return manifest

    return _write
