"""Best-effort system resource telemetry from a per-node sidecar service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemResources:
    ram: Any = None
    disk: Any = None
    cpu: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"ram": self.ram, "disk": self.disk, "cpu": self.cpu}


class ResourceBridge:
    """Queries sidecar URLs. Any failure yields None and is only logged."""

    def __init__(self, client: httpx.AsyncClient, timeout_ms: int = 10_000) -> None:
        self._client = client
        self.timeout_ms = timeout_ms

    async def fetch(self, name: str, url: str | None) -> SystemResources | None:
        if not url:
            return None

        logger.debug("Fetching system resources for %s from %s", name, url)
        try:
            resp = await self._client.get(url, timeout=self.timeout_ms / 1000)
            body = resp.json()
        except httpx.HTTPError as e:
            logger.warning("System resources for %s unavailable: %s", name, e)
            return None
        except ValueError:
            logger.warning("System resources for %s: response is not JSON", name)
            return None
        except Exception as e:
            logger.warning("System resources for %s error: %s: %s", name, type(e).__name__, e)
            return None

        if resp.status_code >= 400:
            logger.warning("System resources for %s failed (HTTP %d)", name, resp.status_code)
            return None
        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            logger.warning(
                "System resources for %s: %s", name, error or "unsuccessful payload",
            )
            return None

        return SystemResources(ram=body.get("ram"), disk=body.get("disk"), cpu=body.get("cpu"))
