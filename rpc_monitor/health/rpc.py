"""JSON-RPC call client.

Every call resolves to a CheckOutcome. Transport errors, timeouts, HTTP error
statuses and malformed bodies are all reported as failed outcomes instead of
exceptions, so one bad endpoint can never take down a fan-out.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10_000


@dataclass(frozen=True)
class CheckOutcome:
    """Result of one diagnostic call: a decoded payload or an error message."""

    success: bool
    value: Any = None
    error: str = ""
    latency_ms: float = 0.0

    @classmethod
    def ok(cls, value: Any, latency_ms: float = 0.0) -> CheckOutcome:
        return cls(success=True, value=value, latency_ms=latency_ms)

    @classmethod
    def fail(cls, error: str, latency_ms: float = 0.0) -> CheckOutcome:
        return cls(success=False, error=error, latency_ms=latency_ms)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "latencyMs": self.latency_ms}
        to_dict = getattr(self.value, "to_dict", None)
        payload = to_dict() if callable(to_dict) else {"result": self.value}
        return {"success": True, **payload, "latencyMs": self.latency_ms}


def _rpc_error_message(body: Any) -> str:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        return f"RPC error {err.get('code')}: {err.get('message', 'unknown')}"
    return "Invalid response format"


class RpcClient:
    """Async JSON-RPC 2.0 client over a shared httpx.AsyncClient.

    Pass ``client`` to share a connection pool (or inject a mock transport);
    otherwise one is created lazily and closed by ``close()``.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self._owns_client = client is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"Content-Type": "application/json"})
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        url: str,
        method: str,
        params: Sequence[Any] | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> CheckOutcome:
        """Send one request. Never retries, never raises."""
        payload = {"jsonrpc": "2.0", "method": method, "params": list(params or []), "id": 1}
        logger.debug("RPC %s -> %s", method, url)

        t0 = time.perf_counter()
        try:
            resp = await self.http.post(url, json=payload, timeout=timeout_ms / 1000)
            latency = round((time.perf_counter() - t0) * 1000, 1)

            if resp.status_code >= 400:
                return CheckOutcome.fail(f"HTTP {resp.status_code}", latency)
            try:
                body = resp.json()
            except ValueError:
                return CheckOutcome.fail("Invalid JSON response", latency)

            if not isinstance(body, dict) or "result" not in body:
                return CheckOutcome.fail(_rpc_error_message(body), latency)
            return CheckOutcome.ok(body["result"], latency)

        except httpx.TimeoutException:
            return CheckOutcome.fail(f"Request timed out ({timeout_ms}ms)", float(timeout_ms))
        except httpx.HTTPError as e:
            latency = round((time.perf_counter() - t0) * 1000, 1)
            return CheckOutcome.fail(f"Connection error: {e}", latency)
        except Exception as e:
            latency = round((time.perf_counter() - t0) * 1000, 1)
            logger.debug("RPC %s on %s raised", method, url, exc_info=True)
            return CheckOutcome.fail(f"Error: {type(e).__name__}: {e}", latency)
