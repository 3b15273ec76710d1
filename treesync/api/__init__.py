"""treesync HTTP API server module."""

from __future__ import annotations

from .server import TreeSyncAPIServer, APIServerState

__all__ = ["TreeSyncAPIServer", "APIServerState"]
