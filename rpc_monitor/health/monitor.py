"""Health monitor — one evaluation cycle per query, no state kept between cycles.

Ties the registry, battery, resource bridge and prober together behind the
operations the API and CLI expose.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from ..config import Settings
from ..endpoints.registry import EndpointDescriptor, EndpointRegistry, ExternalEndpointDescriptor
from .aggregator import HEALTHY_THRESHOLD, PARTIAL_THRESHOLD, FleetSummary, score, summarize
from .engine import (
    BATTERY_TESTS,
    BLOCK_NUMBER,
    BlockDifference,
    DiagnosticBattery,
    EndpointResult,
    decode_block_height,
    decode_outcome,
)
from .probe import DEFAULT_PROBE_TIMEOUT_MS, ExternalProber, ProbeResult
from .resources import ResourceBridge
from .rpc import DEFAULT_TIMEOUT_MS, CheckOutcome, RpcClient

logger = logging.getLogger(__name__)

DEFAULT_SYNC_THRESHOLD = 5


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failed_result(endpoint: EndpointDescriptor, error: str) -> EndpointResult:
    tests = {name: CheckOutcome.fail(error) for name in BATTERY_TESTS}
    return EndpointResult(
        key=endpoint.key, name=endpoint.name, url=endpoint.public_url,
        tests=tests, health=score(tests.values()),
    )


# ── Errors ───────────────────────────────────────────────────────────────────


class MonitorError(Exception):
    """Query-level failure surfaced to clients as a structured error."""

    status_code = 500

    def __init__(self, error: str, message: str = "") -> None:
        self.error = error
        self.message = message
        super().__init__(f"{error}: {message}" if message else error)

    def to_dict(self) -> dict[str, Any]:
        d = {"error": self.error}
        if self.message:
            d["message"] = self.message
        return d


class EndpointNotFoundError(MonitorError):
    status_code = 404

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__("Endpoint not found", f"No endpoint registered with key {key!r}")


class ConfigurationError(MonitorError):
    """Required configuration (e.g. a reference endpoint) is missing."""


class ReferenceUnavailableError(MonitorError):
    """The reference endpoint did not return a usable block height."""


# ── Result containers ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FleetStatus:
    endpoints: dict[str, EndpointResult]
    summary: FleetSummary
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "endpoints": {key: r.to_dict() for key, r in self.endpoints.items()},
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class ExternalFleetStatus:
    """Probe results restricted to endpoints visible in the UI."""

    results: list[ProbeResult]
    timestamp: str = field(default_factory=_now)

    @property
    def working(self) -> int:
        return sum(1 for r in self.results if r.overall_success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.working

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "total": len(self.results),
            "working": self.working,
            "failed": self.failed,
            "endpoints": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class ReferenceRow:
    endpoint: ExternalEndpointDescriptor
    block_number: int | None
    block_difference: BlockDifference | None
    is_healthy: bool
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "rpc": self.endpoint.display_rpc_url or self.endpoint.rpc_url,
            "rpcName": self.endpoint.name,
            "blockNumber": self.block_number,
            "blockDifference": self.block_difference.to_dict() if self.block_difference else None,
            "isHealthy": self.is_healthy,
        }
        if self.error:
            d["error"] = self.error
        return d


@dataclass(frozen=True)
class ReferenceStatus:
    reference: EndpointDescriptor
    reference_block: int
    rows: list[ReferenceRow]
    threshold: int
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "referenceRpc": {
                "name": self.reference.name,
                "url": self.reference.public_url,
                "blockNumber": self.reference_block,
            },
            "threshold": self.threshold,
            "data": [row.to_dict() for row in self.rows],
        }


# ── Monitor ──────────────────────────────────────────────────────────────────


class HealthMonitor:
    """Runs evaluation cycles over a fixed registry.

    Owns the shared httpx.AsyncClient unless one is injected.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        client: httpx.AsyncClient | None = None,
        probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
        resource_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        reference_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        sync_threshold: int = DEFAULT_SYNC_THRESHOLD,
        healthy_threshold: float = HEALTHY_THRESHOLD,
        partial_threshold: float = PARTIAL_THRESHOLD,
    ) -> None:
        self.registry = registry
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers={"Content-Type": "application/json"})

        self.rpc = RpcClient(self._client)
        self.battery = DiagnosticBattery(self.rpc, ResourceBridge(self._client, resource_timeout_ms))
        self.prober = ExternalProber(self.rpc, probe_timeout_ms)

        self.reference_timeout_ms = reference_timeout_ms
        self.sync_threshold = sync_threshold
        self.healthy_threshold = healthy_threshold
        self.partial_threshold = partial_threshold

    @classmethod
    def from_settings(
        cls,
        registry: EndpointRegistry,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> HealthMonitor:
        return cls(
            registry,
            client=client,
            probe_timeout_ms=settings.probe_timeout_ms,
            resource_timeout_ms=settings.resource_timeout_ms,
            reference_timeout_ms=settings.default_timeout_ms,
            sync_threshold=settings.reference_sync_threshold,
            healthy_threshold=settings.healthy_threshold,
            partial_threshold=settings.partial_threshold,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HealthMonitor:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _require(self, key: str) -> EndpointDescriptor:
        endpoint = self.registry.get(key)
        if endpoint is None:
            raise EndpointNotFoundError(key)
        return endpoint

    # ── Fleet ────────────────────────────────────────────────────────────

    async def fleet_status(self) -> FleetStatus:
        """Snapshot all block heights, then run every battery against that snapshot."""
        endpoints = self.registry.endpoints
        snapshot = await self.battery.snapshot_all(endpoints)

        gathered = await asyncio.gather(
            *(self.battery.run_battery(ep, snapshot) for ep in endpoints),
            return_exceptions=True,
        )
        results: list[EndpointResult] = []
        for ep, result in zip(endpoints, gathered):
            if isinstance(result, BaseException):
                logger.error("Battery for %s raised: %s", ep.key, result, exc_info=result)
                result = _failed_result(ep, f"Error: {type(result).__name__}: {result}")
            results.append(result)

        by_key = {r.key: r for r in results}
        summary = summarize(
            (r.health for r in results),
            self.healthy_threshold,
            self.partial_threshold,
        )
        logger.info(
            "Fleet status: %d/%d healthy (%.1f%%)",
            summary.healthy, summary.total, summary.overall_health,
        )
        return FleetStatus(endpoints=by_key, summary=summary)

    async def test_endpoint(self, key: str, with_snapshot: bool = True) -> EndpointResult:
        """Test one endpoint.

        With ``with_snapshot`` the whole fleet's block heights are captured first
        so the result carries a block difference; without it no difference is
        computed.
        """
        endpoint = self._require(key)
        snapshot = None
        if with_snapshot:
            snapshot = await self.battery.snapshot_all(self.registry.endpoints)
        return await self.battery.run_battery(endpoint, snapshot)

    def list_endpoints(self) -> list[dict[str, Any]]:
        return [
            {
                "key": ep.key,
                "name": ep.name,
                "url": ep.public_url,
                "compareWith": ep.compare_with,
            }
            for ep in self.registry.endpoints
        ]

    def liveness(self) -> dict[str, Any]:
        return {"status": "ok", "timestamp": _now(), "endpoints": self.registry.keys()}

    def config_dump(self) -> dict[str, Any]:
        """Raw registry including credentialed URLs. Debug use only."""
        return {"timestamp": _now(), **self.registry.to_dict()}

    # ── External ─────────────────────────────────────────────────────────

    def list_external(self) -> list[dict[str, Any]]:
        return [e.to_display_dict() for e in self.registry.visible_external]

    async def external_fleet_status(self) -> ExternalFleetStatus:
        """Probe every external endpoint; report only the visible ones."""
        results = await self.prober.probe_all(self.registry.external)
        return ExternalFleetStatus(results=[r for r in results if r.endpoint.show_in_ui])

    async def _external_row(self, endpoint: ExternalEndpointDescriptor, reference_block: int) -> ReferenceRow:
        outcome = decode_outcome(
            await self.rpc.call(endpoint.rpc_url, BLOCK_NUMBER, timeout_ms=self.reference_timeout_ms),
            decode_block_height,
        )
        if not outcome.success:
            return ReferenceRow(
                endpoint=endpoint, block_number=None, block_difference=None,
                is_healthy=False, error=outcome.error,
            )
        difference = BlockDifference(reference_block=reference_block, current_block=outcome.value.block)
        return ReferenceRow(
            endpoint=endpoint,
            block_number=outcome.value.block,
            block_difference=difference,
            is_healthy=abs(difference.difference) <= self.sync_threshold,
        )

    async def external_reference_status(self) -> ReferenceStatus:
        """Compare every external endpoint's height with the reference endpoint.

        Raises ConfigurationError when no endpoint is flagged as reference and
        ReferenceUnavailableError when the reference has no block height.
        """
        reference = self.registry.reference()
        if reference is None:
            raise ConfigurationError(
                "No reference RPC found",
                "Please configure a reference RPC with RPC_1_IS_REFERENCE=true",
            )

        ref_outcome = await self.battery.get_block_number(reference)
        if not ref_outcome.success:
            raise ReferenceUnavailableError(
                "Reference RPC unavailable",
                f"Cannot get block number from reference RPC: {ref_outcome.error}",
            )
        reference_block = ref_outcome.value.block

        rows = await asyncio.gather(
            *(self._external_row(ep, reference_block) for ep in self.registry.external),
            return_exceptions=True,
        )
        out: list[ReferenceRow] = []
        for ep, row in zip(self.registry.external, rows):
            if isinstance(row, BaseException):
                logger.error("Reference comparison for %s raised: %s", ep.name, row, exc_info=row)
                row = ReferenceRow(
                    endpoint=ep, block_number=None, block_difference=None,
                    is_healthy=False, error=str(row) or type(row).__name__,
                )
            out.append(row)

        return ReferenceStatus(
            reference=reference,
            reference_block=reference_block,
            rows=out,
            threshold=self.sync_threshold,
        )
