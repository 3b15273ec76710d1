"""API route handlers for the treesync server."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..sync import (
    ManifestUnavailableError,
    ManifestValidationError,
    SyncInProgressError,
)

logger = logging.getLogger("treesync.api.routes")


async def _read_json_object(request: Request) -> Tuple[Optional[Dict[str, Any]], Optional[JSONResponse]]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, JSONResponse({"error": "Invalid JSON"}, status_code=400)
    if not isinstance(body, dict):
        return None, JSONResponse({"error": "Request body must be an object"}, status_code=400)
    return body, None


async def health_handler(request: Request) -> JSONResponse:
    """Health check endpoint."""
    server = request.app.state.treesync_server

    return JSONResponse({
        "status": "ok",
        "ready": server.service.store.ready,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "treesync",
    })


async def status_handler(request: Request) -> JSONResponse:
    """Report manifest and session state."""
    server = request.app.state.treesync_server
    return JSONResponse(server.service.status())


async def request_update_handler(request: Request) -> JSONResponse:
    """Compare a client manifest with the server tree and open sessions."""
    server = request.app.state.treesync_server
    logger.info("Received request-update.")

    body, error = await _read_json_object(request)
    if error is not None:
        return error

    if body.get("manifest") is None:
        logger.error("Client manifest not provided.")
        return JSONResponse({"error": "Manifest required"}, status_code=400)

    try:
        sessions = await run_in_threadpool(server.service.request_sync, body["manifest"])
    except ManifestValidationError as e:
        logger.error("Rejected client manifest: %s", e)
        return JSONResponse({"error": str(e)}, status_code=400)
    except SyncInProgressError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    except ManifestUnavailableError as e:
        logger.error("Cannot diff against server manifest: %s", e)
        return JSONResponse({"error": str(e)}, status_code=503)
    except Exception as e:
        logger.exception("Error during update request")
        return JSONResponse({"error": str(e)}, status_code=500)

    return JSONResponse({"updateSessions": [session.to_dict() for session in sessions]})


async def update_batch_handler(request: Request) -> JSONResponse:
    """Apply the content for one session and report per-path results."""
    server = request.app.state.treesync_server

    body, error = await _read_json_object(request)
    if error is not None:
        return error

    session_id = body.get("id")
    if not isinstance(session_id, str) or not session_id:
        return JSONResponse({"error": "Session id required"}, status_code=400)

    try:
        outcome = await run_in_threadpool(
            server.service.apply_batch,
            session_id,
            body.get("updates"),
        )
    except ManifestValidationError as e:
        logger.error("Rejected update batch for session %s: %s", session_id, e)
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.exception("Error applying update batch for session %s", session_id)
        return JSONResponse({"error": str(e)}, status_code=500)

    status_code = 200 if outcome.session_found else 400
    return JSONResponse(outcome.to_list(), status_code=status_code)


async def rebuild_handler(request: Request) -> JSONResponse:
    """Ask the container manager to rebuild the site."""
    server = request.app.state.treesync_server
    logger.info("Received rebuild request.")

    result = await run_in_threadpool(server.rebuild_trigger.trigger)

    if result.status == "ok":
        return JSONResponse(result.to_dict())
    if result.status == "disabled":
        return JSONResponse(result.to_dict(), status_code=503)
    return JSONResponse(result.to_dict(), status_code=502)


__all__ = [
    "health_handler",
    "status_handler",
    "request_update_handler",
    "update_batch_handler",
    "rebuild_handler",
]
