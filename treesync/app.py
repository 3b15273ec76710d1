# treesync/app.py
"""
Service entry point: load configuration, build the manifest, serve the API.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .api import TreeSyncAPIServer
from .configuration import (
    APISettings,
    ConfigurationBundle,
    SyncSettings,
    load_runtime_configuration,
)
from .logging_utils import setup_logging
from .rebuild import RebuildSettings, RebuildTrigger
from .sync import ManifestRebuildError, ManifestStore, SessionManager, SyncService, UpdateApplier

logger = logging.getLogger("treesync")

DIAGNOSTIC_STYLES = {"info": "dim", "warning": "yellow", "error": "bold red"}


def build_service(settings: SyncSettings) -> SyncService:
    """Wire the store, session table and applier for one content root."""
    store = ManifestStore(settings.content_dir, settings.exclude_patterns)
    return SyncService(
        store=store,
        sessions=SessionManager(timeout=settings.session_timeout),
        applier=UpdateApplier(settings.content_dir, store),
        batch_size=settings.batch_size,
        max_workers=settings.max_workers,
    )


def build_server(bundle: ConfigurationBundle) -> TreeSyncAPIServer:
    service = build_service(SyncSettings.from_bundle(bundle))
    return TreeSyncAPIServer(
        service=service,
        settings=APISettings.from_bundle(bundle),
        rebuild_trigger=RebuildTrigger(RebuildSettings.from_bundle(bundle)),
    )


def prepare(server: TreeSyncAPIServer) -> int:
    """Create the content root if needed and build the manifest.

    Raises ManifestRebuildError when the tree cannot be scanned.
    """
    content_dir = server.service.store.content_dir
    try:
        content_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ManifestRebuildError(f"Cannot create content directory '{content_dir}': {e}") from e
    return server.service.rebuild_manifest()


def print_summary(console: Console, bundle: ConfigurationBundle, server: TreeSyncAPIServer) -> None:
    service = server.service
    table = Table(title="treesync", show_header=False)
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Content Dir", str(service.store.content_dir))
    table.add_row("Tracked Files", str(len(service.store)))
    table.add_row("Batch Size", str(service.batch_size))
    table.add_row("Session Timeout", f"{service.sessions.timeout:g}s")
    table.add_row("Listening", f"http://{server.host}:{server.port}{server.settings.prefix}")
    table.add_row("Rebuild Hook", "enabled" if server.rebuild_trigger.settings.enabled else "disabled")
    console.print(table)

    for diag in bundle.diagnostics:
        console.print(
            f"[{diag.level}] {diag.message}",
            style=DIAGNOSTIC_STYLES.get(diag.level, ""),
            markup=False,
        )


def main() -> int:
    """Entry point for `python -m treesync`."""

    console = Console(stderr=True)
    bundle = load_runtime_configuration()

    logging_config = bundle.section("logging")
    log_path = setup_logging(
        Path(str(logging_config.get("directory", "logs"))).expanduser(),
        str(logging_config.get("level", "INFO")),
        structured=bool(logging_config.get("structured", True)),
    )
    bundle.log_path = log_path
    logger.info("Logging initialized at %s", log_path)

    if bundle.status != "ready":
        for diag in bundle.diagnostics:
            if diag.level == "error":
                logger.error("Configuration error: %s", diag.message)

    server = build_server(bundle)
    try:
        tracked = prepare(server)
    except ManifestRebuildError as e:
        logger.error("Manifest initialization failed: %s", e)
        console.print(f"Manifest initialization failed: {e}", style="bold red", markup=False)
        return 1

    logger.info("Manifest ready with %d files", tracked)
    print_summary(console, bundle, server)

    if not server.start(blocking=True):
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
