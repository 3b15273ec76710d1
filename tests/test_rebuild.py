"""Tests for the site rebuild hook."""

from __future__ import annotations

import io
import json
from urllib.error import URLError

import pytest

from treesync import rebuild
from treesync.configuration import ConfigurationBundle


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def _settings(**kwargs) -> rebuild.RebuildSettings:
    values = {"hook_url": "http://manager:5000", "service_name": "quartz"}
    values.update(kwargs)
    return rebuild.RebuildSettings(**values)


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    replies = {}

    def fake_urlopen(req, timeout):
        recorded.append((req.get_method(), req.full_url))
        reply = replies[req.full_url]
        if isinstance(reply, Exception):
            raise reply
        return _FakeResponse(json.dumps(reply).encode("utf-8"))

    monkeypatch.setattr(rebuild, "urlopen", fake_urlopen)
    return recorded, replies


def test_disabled_without_configuration():
    result = rebuild.RebuildTrigger(rebuild.RebuildSettings()).trigger()

    assert result.status == "disabled"


def test_settings_from_bundle_strip_trailing_slash():
    bundle = ConfigurationBundle(
        status="ready",
        merged={"rebuild": {"hook_url": "http://manager:5000/", "service_name": "quartz", "timeout": 3}},
    )

    settings = rebuild.RebuildSettings.from_bundle(bundle)

    assert settings.hook_url == "http://manager:5000"
    assert settings.enabled
    assert settings.timeout == 3.0


def test_trigger_checks_running_services_then_posts(calls):
    recorded, replies = calls
    replies["http://manager:5000/services"] = {"running_services": ["quartz", "other"]}
    replies["http://manager:5000/rebuild?service=quartz"] = {"status": "rebuilding"}

    result = rebuild.RebuildTrigger(_settings()).trigger()

    assert result.status == "ok"
    assert result.response == {"status": "rebuilding"}
    assert recorded == [
        ("GET", "http://manager:5000/services"),
        ("POST", "http://manager:5000/rebuild?service=quartz"),
    ]


def test_trigger_refuses_when_service_not_running(calls):
    recorded, replies = calls
    replies["http://manager:5000/services"] = {"running_services": ["other"]}

    result = rebuild.RebuildTrigger(_settings()).trigger()

    assert result.status == "error"
    assert len(recorded) == 1


def test_trigger_reports_connection_errors(calls):
    _, replies = calls
    replies["http://manager:5000/services"] = URLError("refused")

    result = rebuild.RebuildTrigger(_settings()).trigger()

    assert result.status == "error"
    assert "refused" in result.detail
