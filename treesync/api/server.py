"""treesync API server implementation using Starlette."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from ..configuration import APISettings
from ..rebuild import RebuildSettings, RebuildTrigger
from ..sync import SyncService
from .routes import (
    health_handler,
    rebuild_handler,
    request_update_handler,
    status_handler,
    update_batch_handler,
)

logger = logging.getLogger("treesync.api.server")


class APIServerState(str, Enum):
    """API server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class TreeSyncAPIServer:
    """HTTP API exposing request-update and update-batch."""

    service: SyncService
    settings: APISettings = field(default_factory=APISettings)
    rebuild_trigger: RebuildTrigger = field(
        default_factory=lambda: RebuildTrigger(RebuildSettings())
    )

    # Server state
    _state: APIServerState = field(default=APIServerState.STOPPED, init=False)
    _server: Optional[Any] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)

    @property
    def state(self) -> APIServerState:
        """Current server state."""
        return self._state

    @property
    def host(self) -> str:
        return self.settings.host

    @property
    def port(self) -> int:
        return self.settings.port

    def create_app(self) -> Starlette:
        """Create the Starlette application."""
        middleware = []
        if self.settings.cors_origins:
            middleware.append(
                Middleware(
                    CORSMiddleware,
                    allow_origins=list(self.settings.cors_origins),
                    allow_methods=["GET", "POST"],
                    allow_headers=["*"],
                )
            )

        prefix = self.settings.prefix
        routes = [
            Route("/health", health_handler, methods=["GET"]),
            Route(f"{prefix}/status", status_handler, methods=["GET"]),
            Route(f"{prefix}/request-update", request_update_handler, methods=["POST"]),
            Route(f"{prefix}/update-batch", update_batch_handler, methods=["POST"]),
            Route(f"{prefix}/rebuild", rebuild_handler, methods=["POST"]),
        ]

        app = Starlette(
            routes=routes,
            middleware=middleware,
            lifespan=self._lifespan,
        )

        # Store reference to server in app state
        app.state.treesync_server = self

        return app

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        logger.info("API server starting on %s:%s", self.host, self.port)
        self._state = APIServerState.RUNNING
        try:
            yield
        finally:
            logger.info("API server shutting down")
            self.service.sessions.clear()
            self._state = APIServerState.STOPPED

    def start(self, blocking: bool = False) -> bool:
        """Start the API server.

        Args:
            blocking: If True, block until server stops. If False, run in background thread.

        Returns:
            True if server started successfully.
        """
        if self._state == APIServerState.RUNNING:
            logger.warning("API server is already running")
            return False

        self._state = APIServerState.STARTING
        config = uvicorn.Config(
            self.create_app(),
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        if blocking:
            try:
                asyncio.run(self._server.serve())
            except Exception as e:
                logger.exception("API server error: %s", e)
                self._state = APIServerState.ERROR
                return False
            return True

        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="treesync-api-server",
        )
        self._thread.start()

        for _ in range(20):  # Wait up to 2 seconds
            time.sleep(0.1)
            if self._state == APIServerState.RUNNING:
                break

        return self._state == APIServerState.RUNNING

    def _run_in_thread(self) -> None:
        """Run the server in a background thread."""
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            loop.run_until_complete(self._server.serve())
        except Exception as e:
            logger.exception("API server thread error: %s", e)
            self._state = APIServerState.ERROR
        finally:
            loop.close()
            if self._state != APIServerState.ERROR:
                self._state = APIServerState.STOPPED

    def stop(self) -> bool:
        """Stop the API server.

        Returns:
            True if server stopped successfully.
        """
        if self._state != APIServerState.RUNNING:
            logger.warning("API server is not running")
            return False

        self._state = APIServerState.STOPPING

        if self._server:
            self._server.should_exit = True

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._state = APIServerState.STOPPED
        self._server = None
        self._thread = None

        return True

    def status(self) -> Dict[str, Any]:
        """Get server status information."""
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "url": f"http://{self.host}:{self.port}" if self._state == APIServerState.RUNNING else None,
        }


__all__ = ["TreeSyncAPIServer", "APIServerState"]
