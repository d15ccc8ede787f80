"""External connectivity prober — bare RPC + WebSocket reachability.

Works on the external endpoint list only; it never touches the monitored
fleet. Both probes for an endpoint run concurrently, and all endpoints are
probed concurrently. Every failure is returned as a ProbeOutcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import websockets

from ..endpoints.registry import ExternalEndpointDescriptor
from .engine import BLOCK_NUMBER, parse_hex_int
from .rpc import RpcClient

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_MS = 5_000


@dataclass(frozen=True)
class ProbeOutcome:
    success: bool
    latency_ms: float = 0.0
    error: str = ""
    message: str = ""
    block_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success, "latencyMs": self.latency_ms}
        if self.success:
            d["message"] = self.message
            if self.block_number is not None:
                d["blockNumber"] = self.block_number
        else:
            d["error"] = self.error
        return d


@dataclass(frozen=True)
class ProbeResult:
    endpoint: ExternalEndpointDescriptor
    rpc: ProbeOutcome
    websocket: ProbeOutcome
    error: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def overall_success(self) -> bool:
        return self.rpc.success and self.websocket.success

    def to_dict(self) -> dict[str, Any]:
        d = {
            **self.endpoint.to_display_dict(),
            "rpc": self.rpc.to_dict(),
            "websocket": self.websocket.to_dict(),
            "overallSuccess": self.overall_success,
            "timestamp": self.timestamp,
        }
        d.pop("showInUI", None)
        if self.error:
            d["error"] = self.error
        return d


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


class ExternalProber:
    """Probes external endpoints for RPC and WebSocket reachability."""

    def __init__(self, rpc: RpcClient, timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS) -> None:
        self.rpc = rpc
        self.timeout_ms = timeout_ms

    async def probe_rpc(self, url: str) -> ProbeOutcome:
        outcome = await self.rpc.call(url, BLOCK_NUMBER, timeout_ms=self.timeout_ms)
        if not outcome.success:
            return ProbeOutcome(success=False, latency_ms=outcome.latency_ms, error=outcome.error)

        try:
            block = parse_hex_int(outcome.value)
        except (TypeError, ValueError):
            block = None
        return ProbeOutcome(
            success=True,
            latency_ms=outcome.latency_ms,
            message="RPC call successful",
            block_number=block,
        )

    async def probe_websocket(self, url: str) -> ProbeOutcome:
        """Succeed once the handshake completes; the connection is closed either way."""
        t0 = time.perf_counter()

        async def handshake() -> None:
            async with websockets.connect(url, close_timeout=1):
                pass

        try:
            await asyncio.wait_for(handshake(), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            return ProbeOutcome(
                success=False, latency_ms=float(self.timeout_ms),
                error="WebSocket connection timeout",
            )
        except Exception as e:
            return ProbeOutcome(
                success=False, latency_ms=_elapsed_ms(t0),
                error=str(e) or type(e).__name__,
            )
        return ProbeOutcome(
            success=True, latency_ms=_elapsed_ms(t0),
            message="WebSocket connection successful",
        )

    async def probe(self, endpoint: ExternalEndpointDescriptor) -> ProbeResult:
        logger.debug("Probing external endpoint %s", endpoint.name)
        rpc_result, ws_result = await asyncio.gather(
            self.probe_rpc(endpoint.rpc_url),
            self.probe_websocket(endpoint.ws_url),
            return_exceptions=True,
        )
        if isinstance(rpc_result, BaseException):
            rpc_result = ProbeOutcome(success=False, error=str(rpc_result) or "RPC test failed")
        if isinstance(ws_result, BaseException):
            ws_result = ProbeOutcome(success=False, error=str(ws_result) or "WebSocket test failed")

        result = ProbeResult(endpoint=endpoint, rpc=rpc_result, websocket=ws_result)
        logger.debug(
            "%s: rpc=%s ws=%s", endpoint.name,
            "ok" if result.rpc.success else result.rpc.error,
            "ok" if result.websocket.success else result.websocket.error,
        )
        return result

    async def probe_all(self, endpoints: Iterable[ExternalEndpointDescriptor]) -> list[ProbeResult]:
        """Probe every endpoint, visible or not. Order follows ``endpoints``."""
        endpoints = list(endpoints)
        results = await asyncio.gather(
            *(self.probe(ep) for ep in endpoints),
            return_exceptions=True,
        )

        out: list[ProbeResult] = []
        for ep, result in zip(endpoints, results):
            if isinstance(result, BaseException):
                logger.error("Probe for %s raised: %s", ep.name, result, exc_info=result)
                result = ProbeResult(
                    endpoint=ep,
                    rpc=ProbeOutcome(success=False, error="RPC test failed"),
                    websocket=ProbeOutcome(success=False, error="WebSocket test failed"),
                    error=str(result) or "Unknown error",
                )
            out.append(result)

        logger.info(
            "External probes: %d/%d fully reachable",
            sum(1 for r in out if r.overall_success), len(out),
        )
        return out
