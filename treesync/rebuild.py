"""Trigger a rebuild of the site that is served from the content tree."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .configuration import ConfigurationBundle

logger = logging.getLogger("treesync.rebuild")


@dataclass
class RebuildSettings:
    """Where the container manager lives and which service it should rebuild."""

    hook_url: str = ""
    service_name: str = ""
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.hook_url and self.service_name)

    @classmethod
    def from_bundle(cls, bundle: ConfigurationBundle) -> "RebuildSettings":
        raw = bundle.section("rebuild")
        return cls(
            hook_url=str(raw.get("hook_url", "")).rstrip("/"),
            service_name=str(raw.get("service_name", "")),
            timeout=float(raw.get("timeout", 10.0)),
        )


@dataclass
class RebuildResult:
    """Outcome of one rebuild request."""

    status: Literal["ok", "disabled", "error"]
    detail: str
    response: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "detail": self.detail,
            "response": self.response,
        }


class RebuildTrigger:
    """Asks an external container manager to rebuild the configured service."""

    def __init__(self, settings: RebuildSettings):
        self.settings = settings

    def trigger(self) -> RebuildResult:
        if not self.settings.enabled:
            detail = "Rebuild hook not configured (rebuild.hook_url / rebuild.service_name)."
            logger.warning(detail)
            return RebuildResult(status="disabled", detail=detail)

        name = self.settings.service_name
        try:
            services = self._call("GET", "/services")
            running = services.get("running_services")
            if not isinstance(running, list):
                detail = "Container manager did not report running services."
                logger.error(detail)
                return RebuildResult(status="error", detail=detail, response=services)
            if name not in running:
                detail = f"Service '{name}' is not running."
                logger.error(detail)
                return RebuildResult(status="error", detail=detail, response=services)

            response = self._call("POST", f"/rebuild?service={quote(name)}")
        except HTTPError as e:
            detail = f"HTTP error: {e.code} {e.reason}"
            logger.error("Rebuild request failed: %s", detail)
            return RebuildResult(status="error", detail=detail)
        except URLError as e:
            detail = f"Connection error: {e.reason}"
            logger.error("Rebuild request failed: %s", detail)
            return RebuildResult(status="error", detail=detail)
        except ValueError as e:
            detail = f"Invalid response from container manager: {e}"
            logger.error(detail)
            return RebuildResult(status="error", detail=detail)

        logger.info("Rebuild request for '%s' accepted: %s", name, response)
        return RebuildResult(status="ok", detail=f"Rebuild of '{name}' requested", response=response)

    def _call(self, method: str, path: str) -> Dict[str, Any]:
        req = Request(
            f"{self.settings.hook_url}{path}",
            data=b"" if method == "POST" else None,
            method=method,
        )
        with urlopen(req, timeout=self.settings.timeout) as resp:
            body = resp.read().decode("utf-8")
        data: Optional[Any] = json.loads(body) if body else {}
        if not isinstance(data, dict):
            return {"result": data}
        return data


__all__ = ["RebuildSettings", "RebuildResult", "RebuildTrigger"]
