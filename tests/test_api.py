"""Tests for the HTTP surface."""

from __future__ import annotations

from pathlib import Path

import pytest
from starlette.testclient import TestClient

from treesync.api import TreeSyncAPIServer
from treesync.configuration import APISettings
from treesync.rebuild import RebuildResult, RebuildSettings, RebuildTrigger
from treesync.sync import ManifestStore, SyncService, hash_bytes

PREFIX = "/api/v1"


@pytest.fixture
def server(service: SyncService) -> TreeSyncAPIServer:
    return TreeSyncAPIServer(service=service, settings=APISettings())


@pytest.fixture
def client(server: TreeSyncAPIServer) -> TestClient:
    return TestClient(server.create_app())


def test_health_reports_readiness(client: TestClient, store: ManifestStore):
    assert client.get("/health").json()["ready"] is False

    store.rebuild()
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["ready"] is True


def test_request_update_and_update_batch_roundtrip(client: TestClient, store: ManifestStore,
                                                   content_dir: Path, make_tree):
    server_manifest = make_tree({"a.md": "alpha", "b.md": "beta"})
    store.rebuild()
    manifest = [
        {"path": "a.md", "hash": server_manifest["a.md"]},
        {"path": "c.md", "hash": hash_bytes(b"gamma")},
    ]

    response = client.post(f"{PREFIX}/request-update", json={"manifest": manifest})

    assert response.status_code == 200
    (session,) = response.json()["updateSessions"]
    assert sorted(session["permittedChanges"], key=lambda c: c["path"]) == [
        {"type": "delete", "path": "b.md"},
        {"type": "create", "path": "c.md"},
    ]

    updates = [
        {"type": change["type"], "path": change["path"], "content": "gamma"}
        if change["type"] != "delete"
        else {"type": "delete", "path": change["path"]}
        for change in session["permittedChanges"]
    ]
    response = client.post(f"{PREFIX}/update-batch", json={"id": session["id"], "updates": updates})

    assert response.status_code == 200
    assert response.json() == [{"path": u["path"], "status": "success"} for u in updates]
    assert (content_dir / "c.md").read_text(encoding="utf-8") == "gamma"
    assert not (content_dir / "b.md").exists()

    replay = client.post(f"{PREFIX}/update-batch", json={"id": session["id"], "updates": updates})

    assert replay.status_code == 400
    assert [r["status"] for r in replay.json()] == ["failure", "failure"]


def test_request_update_without_changes(client: TestClient, store: ManifestStore):
    store.rebuild()

    response = client.post(f"{PREFIX}/request-update", json={"manifest": []})

    assert response.status_code == 200
    assert response.json() == {"updateSessions": []}


def test_request_update_conflict_while_sessions_open(client: TestClient, store: ManifestStore):
    store.rebuild()
    first = client.post(f"{PREFIX}/request-update", json={"manifest": [{"path": "a.md", "hash": "h"}]})
    second = client.post(f"{PREFIX}/request-update", json={"manifest": []})

    assert first.status_code == 200
    assert second.status_code == 409


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"manifest": "a.md"},
        {"manifest": [{"path": "a.md"}]},
        ["not", "an", "object"],
    ],
)
def test_request_update_rejects_bad_manifest(client: TestClient, store: ManifestStore, body):
    store.rebuild()

    response = client.post(f"{PREFIX}/request-update", json=body)

    assert response.status_code == 400


def test_request_update_invalid_json(client: TestClient, store: ManifestStore):
    store.rebuild()

    response = client.post(
        f"{PREFIX}/request-update",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_request_update_before_manifest_is_built(client: TestClient):
    response = client.post(f"{PREFIX}/request-update", json={"manifest": []})

    assert response.status_code == 503


def test_update_batch_requires_session_id(client: TestClient):
    response = client.post(f"{PREFIX}/update-batch", json={"updates": []})

    assert response.status_code == 400
    assert "error" in response.json()


def test_update_batch_unknown_session(client: TestClient):
    response = client.post(
        f"{PREFIX}/update-batch",
        json={"id": "session_missing", "updates": [{"type": "create", "path": "x.md", "content": "x"}]},
    )

    assert response.status_code == 400
    assert response.json() == [{"path": "x.md", "status": "failure"}]


def test_update_batch_malformed_updates(client: TestClient):
    response = client.post(f"{PREFIX}/update-batch", json={"id": "session_x", "updates": "nope"})

    assert response.status_code == 400
    assert "error" in response.json()


def test_status_endpoint(client: TestClient, store: ManifestStore, make_tree):
    make_tree({"a.md": "alpha"})
    store.rebuild()

    body = client.get(f"{PREFIX}/status").json()

    assert body["tracked_files"] == 1
    assert body["open_sessions"] == 0


def test_custom_prefix(service: SyncService, store: ManifestStore):
    store.rebuild()
    server = TreeSyncAPIServer(service=service, settings=APISettings(prefix="/quartz_updater"))
    client = TestClient(server.create_app())

    response = client.post("/quartz_updater/request-update", json={"manifest": []})

    assert response.status_code == 200


@pytest.mark.parametrize(
    "status,code",
    [("ok", 200), ("disabled", 503), ("error", 502)],
)
def test_rebuild_endpoint_maps_status(service: SyncService, monkeypatch, status, code):
    trigger = RebuildTrigger(RebuildSettings())
    monkeypatch.setattr(trigger, "trigger", lambda: RebuildResult(status=status, detail="x"))
    server = TreeSyncAPIServer(service=service, rebuild_trigger=trigger)
    client = TestClient(server.create_app())

    response = client.post(f"{PREFIX}/rebuild")

    assert response.status_code == code
    assert response.json()["status"] == status


def test_lifespan_clears_sessions_on_shutdown(server: TreeSyncAPIServer, store: ManifestStore):
    store.rebuild()
    server.service.request_sync([{"path": "a.md", "hash": "h"}])

    with TestClient(server.create_app()) as client:
        assert client.get("/health").status_code == 200
        assert server.state.value == "running"

    assert server.state.value == "stopped"
    assert not server.service.sessions.has_outstanding()
