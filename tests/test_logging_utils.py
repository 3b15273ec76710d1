"""Tests for logging utilities."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from treesync import logging_utils


def _reset_logger() -> logging.Logger:
    logger = logging.getLogger("treesync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    return logger


def test_setup_logging_creates_rotating_files(tmp_path: Path):
    logger = _reset_logger()
    log_path = logging_utils.setup_logging(tmp_path / "logs", level="INFO")

    assert log_path == tmp_path / "logs" / "treesync.log"
    assert log_path.exists()

    file_handlers = [
        handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)
    ]
    assert len(file_handlers) == 2
    assert file_handlers[0].baseFilename == str(log_path)
    _reset_logger()


def test_setup_logging_is_idempotent(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="INFO")
    handler_count = len(logger.handlers)

    logging_utils.setup_logging(tmp_path, level="INFO")
    assert len(logger.handlers) == handler_count
    _reset_logger()


def test_structured_log_is_json_lines(tmp_path: Path):
    _reset_logger()
    logging_utils.setup_logging(tmp_path, level="INFO")
    logging.getLogger("treesync.sync.sessions").info("Created update session %s", "session_1")
    for handler in logging.getLogger("treesync").handlers:
        handler.flush()

    lines = (tmp_path / logging_utils.STRUCTURED_LOG_FILENAME).read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])

    assert entry["logger"] == "treesync.sync.sessions"
    assert entry["message"] == "Created update session session_1"
    assert entry["level"] == "INFO"
    _reset_logger()


def test_setup_logging_falls_back_when_permission_denied(tmp_path: Path, monkeypatch):
    _reset_logger()
    log_dir = tmp_path / "denied" / "logs"
    original_mkdir = Path.mkdir

    def fake_mkdir(self, *args, **kwargs):
        if str(self).startswith(str(log_dir)):
            raise PermissionError
        return original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fake_mkdir)
    fallback_root = tmp_path / "fallback"
    monkeypatch.setattr(logging_utils, "FALLBACK_ROOT", fallback_root)

    log_path = logging_utils.setup_logging(log_dir, level="INFO", structured=False)

    assert log_path == fallback_root / "treesync.log"
    assert log_path.exists()
    _reset_logger()
