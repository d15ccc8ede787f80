"""Diagnostic battery — runs the fixed RPC checks against one endpoint.

Checks: eth_blockNumber, eth_chainId, eth_gasPrice, eth_syncing, plus the
optional sidecar resource query. All calls for an endpoint are issued at once
and awaited together; a failed call never cancels its siblings.

Block differences are only computed from a BlockSnapshot, i.e. block heights
fetched for every endpoint in one concurrent batch, so that a reference and
the endpoint compared against it are read at (almost) the same instant.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ..endpoints.registry import EndpointDescriptor
from .aggregator import HealthScore, score
from .resources import ResourceBridge, SystemResources
from .rpc import CheckOutcome, RpcClient

logger = logging.getLogger(__name__)

BLOCK_NUMBER = "eth_blockNumber"
CHAIN_ID = "eth_chainId"
GAS_PRICE = "eth_gasPrice"
SYNCING = "eth_syncing"

# names of the scored checks, in report order
BATTERY_TESTS = ("blockNumber", "chainId", "gasPrice", "syncStatus")

WEI_PER_GWEI = Decimal(10**9)

# endpoint key -> block height outcome, captured in one batch
BlockSnapshot = dict[str, CheckOutcome]


# ── Payloads ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BlockHeight:
    block: int
    hex: str

    def to_dict(self) -> dict[str, Any]:
        return {"block": self.block, "hex": self.hex}


@dataclass(frozen=True)
class ChainId:
    chain_id: int
    hex: str
    expected: int | None = None

    @property
    def matches_expected(self) -> bool | None:
        if self.expected is None:
            return None
        return self.chain_id == self.expected

    def to_dict(self) -> dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "hex": self.hex,
            "expected": self.expected,
            "matchesExpected": self.matches_expected,
        }


@dataclass(frozen=True)
class GasPrice:
    gas_price: int
    gas_price_gwei: str
    hex: str

    def to_dict(self) -> dict[str, Any]:
        return {"gasPrice": self.gas_price, "gasPriceGwei": self.gas_price_gwei, "hex": self.hex}


@dataclass(frozen=True)
class SyncStatus:
    syncing: bool
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"syncing": self.syncing, "data": self.data}


@dataclass(frozen=True)
class BlockDifference:
    reference_block: int
    current_block: int

    @property
    def difference(self) -> int:
        return self.reference_block - self.current_block

    @property
    def is_behind(self) -> bool:
        return self.difference > 0

    @property
    def is_ahead(self) -> bool:
        return self.difference < 0

    @property
    def is_synced(self) -> bool:
        return self.difference == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "referenceBlock": self.reference_block,
            "currentBlock": self.current_block,
            "difference": self.difference,
            "isBehind": self.is_behind,
            "isAhead": self.is_ahead,
            "isSynced": self.is_synced,
        }


@dataclass(frozen=True)
class EndpointResult:
    """Everything learned about one endpoint in one cycle."""

    key: str
    name: str
    url: str
    tests: dict[str, CheckOutcome]
    health: HealthScore
    block_difference: BlockDifference | None = None
    system: SystemResources | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "timestamp": self.timestamp,
            "tests": {name: outcome.to_dict() for name, outcome in self.tests.items()},
            "blockDifference": self.block_difference.to_dict() if self.block_difference else None,
            "system": self.system.to_dict() if self.system else None,
            "health": self.health.to_dict(),
        }


# ── Decoding ─────────────────────────────────────────────────────────────────


def parse_hex_int(value: Any) -> int:
    if not isinstance(value, str):
        raise TypeError(f"expected hex string, got {type(value).__name__}")
    return int(value, 16)


def decode_block_height(raw: Any) -> BlockHeight:
    return BlockHeight(block=parse_hex_int(raw), hex=raw)


def decode_chain_id(raw: Any, expected: int | None = None) -> ChainId:
    return ChainId(chain_id=parse_hex_int(raw), hex=raw, expected=expected)


def format_gwei(wei: int) -> str:
    """Wei -> gwei with two decimals: 20_000_000_000 -> "20.00"."""
    gwei = (Decimal(wei) / WEI_PER_GWEI).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{gwei:.2f}"


def decode_gas_price(raw: Any) -> GasPrice:
    wei = parse_hex_int(raw)
    return GasPrice(gas_price=wei, gas_price_gwei=format_gwei(wei), hex=raw)


def decode_sync_status(raw: Any) -> SyncStatus:
    if raw is False:
        return SyncStatus(syncing=False, data=None)
    return SyncStatus(syncing=True, data=raw)


def decode_outcome(outcome: CheckOutcome, decoder: Callable[[Any], Any]) -> CheckOutcome:
    """Apply ``decoder`` to a successful raw outcome; undecodable results become failures."""
    if not outcome.success:
        return outcome
    try:
        return CheckOutcome.ok(decoder(outcome.value), outcome.latency_ms)
    except (TypeError, ValueError) as e:
        return CheckOutcome.fail(f"Could not decode result {outcome.value!r}: {e}", outcome.latency_ms)


def compute_block_difference(
    own: CheckOutcome | None, reference: CheckOutcome | None,
) -> BlockDifference | None:
    """Difference only when both block-height outcomes succeeded; otherwise None."""
    if own is None or reference is None or not (own.success and reference.success):
        return None
    return BlockDifference(reference_block=reference.value.block, current_block=own.value.block)


def _as_outcome(result: CheckOutcome | BaseException, label: str) -> CheckOutcome:
    if isinstance(result, BaseException):
        logger.error("%s raised unexpectedly: %s", label, result, exc_info=result)
        return CheckOutcome.fail(f"Error: {type(result).__name__}: {result}")
    return result


# ── Battery ──────────────────────────────────────────────────────────────────


class DiagnosticBattery:
    """Runs the diagnostic calls for endpoints using a shared RPC client."""

    def __init__(self, rpc: RpcClient, resources: ResourceBridge) -> None:
        self.rpc = rpc
        self.resources = resources

    async def get_block_number(self, endpoint: EndpointDescriptor) -> CheckOutcome:
        outcome = decode_outcome(
            await self.rpc.call(endpoint.url, BLOCK_NUMBER, timeout_ms=endpoint.timeout_ms),
            decode_block_height,
        )
        if outcome.success:
            logger.debug("%s block: %d (%s)", endpoint.name, outcome.value.block, outcome.value.hex)
        else:
            logger.info("%s block number failed: %s", endpoint.name, outcome.error)
        return outcome

    async def get_chain_id(self, endpoint: EndpointDescriptor) -> CheckOutcome:
        outcome = decode_outcome(
            await self.rpc.call(endpoint.url, CHAIN_ID, timeout_ms=endpoint.timeout_ms),
            lambda raw: decode_chain_id(raw, endpoint.expected_chain_id),
        )
        if outcome.success and outcome.value.matches_expected is False:
            logger.warning(
                "%s reports chain id %d, expected %d",
                endpoint.name, outcome.value.chain_id, endpoint.expected_chain_id,
            )
        return outcome

    async def get_gas_price(self, endpoint: EndpointDescriptor) -> CheckOutcome:
        return decode_outcome(
            await self.rpc.call(endpoint.url, GAS_PRICE, timeout_ms=endpoint.timeout_ms),
            decode_gas_price,
        )

    async def get_sync_status(self, endpoint: EndpointDescriptor) -> CheckOutcome:
        return decode_outcome(
            await self.rpc.call(endpoint.url, SYNCING, timeout_ms=endpoint.timeout_ms),
            decode_sync_status,
        )

    async def snapshot_all(self, endpoints: Iterable[EndpointDescriptor]) -> BlockSnapshot:
        """Fetch every endpoint's block height in one concurrent batch."""
        endpoints = list(endpoints)
        results = await asyncio.gather(
            *(self.get_block_number(ep) for ep in endpoints),
            return_exceptions=True,
        )
        snapshot = {
            ep.key: _as_outcome(result, f"Block snapshot for {ep.key}")
            for ep, result in zip(endpoints, results)
        }
        logger.info(
            "Block snapshot: %d/%d endpoints answered",
            sum(1 for o in snapshot.values() if o.success), len(snapshot),
        )
        return snapshot

    async def _block_for(
        self, endpoint: EndpointDescriptor, snapshot: BlockSnapshot | None,
    ) -> CheckOutcome:
        if snapshot is not None and endpoint.key in snapshot:
            return snapshot[endpoint.key]
        return await self.get_block_number(endpoint)

    async def run_battery(
        self,
        endpoint: EndpointDescriptor,
        snapshot: BlockSnapshot | None = None,
    ) -> EndpointResult:
        """Run all checks for ``endpoint`` concurrently and score the outcome.

        The block difference is only filled in when ``snapshot`` is given, the
        endpoint has a compare-with target, and both snapshot entries succeeded.
        """
        logger.debug("Testing endpoint %s (%s)", endpoint.name, endpoint.public_url)

        block, chain_id, gas_price, sync_status, system = await asyncio.gather(
            self._block_for(endpoint, snapshot),
            self.get_chain_id(endpoint),
            self.get_gas_price(endpoint),
            self.get_sync_status(endpoint),
            self.resources.fetch(endpoint.name, endpoint.system_url),
            return_exceptions=True,
        )

        tests = {
            "blockNumber": _as_outcome(block, f"{endpoint.key} blockNumber"),
            "chainId": _as_outcome(chain_id, f"{endpoint.key} chainId"),
            "gasPrice": _as_outcome(gas_price, f"{endpoint.key} gasPrice"),
            "syncStatus": _as_outcome(sync_status, f"{endpoint.key} syncStatus"),
        }
        if isinstance(system, BaseException):
            logger.warning("System resources for %s raised: %s", endpoint.name, system)
            system = None

        difference = None
        if snapshot is not None and endpoint.compare_with:
            difference = compute_block_difference(
                snapshot.get(endpoint.key), snapshot.get(endpoint.compare_with),
            )
            if difference is not None:
                logger.debug(
                    "%s block difference vs %s: %d",
                    endpoint.name, endpoint.compare_with, difference.difference,
                )

        result = EndpointResult(
            key=endpoint.key,
            name=endpoint.name,
            url=endpoint.public_url,
            tests=tests,
            health=score(tests.values()),
            block_difference=difference,
            system=system,
        )
        logger.info("%s test completed. Health: %.1f%%", endpoint.name, result.health.score)
        return result
