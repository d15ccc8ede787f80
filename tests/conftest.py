"""Shared test fixtures — a fake JSON-RPC network behind httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Generator
from typing import Any
from unittest.mock import patch
from urllib.parse import urlsplit

import httpx
import pytest

from rpc_monitor.endpoints.registry import (
    EndpointDescriptor,
    EndpointRegistry,
    ExternalEndpointDescriptor,
)
from rpc_monitor.health.monitor import HealthMonitor


class FakeRpcNetwork:
    """Answers JSON-RPC POSTs per host with canned results.

    Hosts in ``timeouts`` raise a read timeout, unknown hosts refuse the
    connection, ``RPC_ERROR`` as a method result yields a JSON-RPC error body.
    ``delays`` holds seconds to wait before answering a (host, method) pair.
    GET requests are served from ``resources`` (sidecar telemetry).
    """

    RPC_ERROR = object()

    def __init__(self) -> None:
        self.nodes: dict[str, dict[str, Any]] = {}
        self.timeouts: set[str] = set()
        self.resources: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []
        self.delays: dict[tuple[str, str], float] = {}

    def add_node(
        self,
        host: str,
        block: str = "0x64",
        chain_id: str = "0x3e6",
        gas_price: str = "0x4a817c800",
        syncing: Any = False,
    ) -> None:
        self.nodes[host] = {
            "eth_blockNumber": block,
            "eth_chainId": chain_id,
            "eth_gasPrice": gas_price,
            "eth_syncing": syncing,
        }

    async def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)

        if request.method == "GET":
            body = self.resources.get(host)
            if body is None:
                return httpx.Response(404, json={"detail": "not found"})
            return httpx.Response(200, json=body)

        payload = json.loads(request.content)
        method = payload["method"]
        self.calls.append((host, method))
        delay = self.delays.get((host, method))
        if delay:
            await asyncio.sleep(delay)

        node = self.nodes.get(host)
        if node is None:
            raise httpx.ConnectError("connection refused", request=request)
        if method not in node:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"]})

        result = node[method]
        if result is self.RPC_ERROR:
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": payload["id"],
                "error": {"code": -32601, "message": "Method not found"},
            })
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeWebSocket:
    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.closed = False

    async def __aenter__(self) -> FakeWebSocket:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.closed = True


class FakeWebSocketServer:
    """Replacement for ``websockets.connect`` keyed by URL host."""

    def __init__(self) -> None:
        self.refused: set[str] = set()
        self.hanging: set[str] = set()
        self.opened: list[FakeWebSocket] = []

    def connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        host = urlsplit(url).hostname
        if host in self.refused:
            ws = FakeWebSocket(error=ConnectionRefusedError(f"Connect call failed ({host})"))
        elif host in self.hanging:
            ws = FakeWebSocket(delay=10.0)
        else:
            ws = FakeWebSocket()
        self.opened.append(ws)
        return ws


@pytest.fixture
def network() -> FakeRpcNetwork:
    net = FakeRpcNetwork()
    net.add_node("ref.test", block="0x6e")
    net.add_node("node-a.test", block="0x64")
    net.add_node("node-b.test", block="0x6e")
    net.add_node("ext-1.test", block="0x6c")
    net.add_node("ext-2.test", block="0x50")
    return net


@pytest.fixture
def ws_server() -> Generator[FakeWebSocketServer, None, None]:
    server = FakeWebSocketServer()
    with patch("rpc_monitor.health.probe.websockets.connect", side_effect=server.connect):
        yield server


@pytest.fixture
def registry() -> EndpointRegistry:
    return EndpointRegistry(
        endpoints=[
            EndpointDescriptor(key="ref", name="Reference", url="http://ref.test:8545", is_reference=True),
            EndpointDescriptor(
                key="node_a", name="Node A", url="http://node-a.test:8545",
                compare_with="ref", system_url="http://node-a.test:9100/system",
            ),
            EndpointDescriptor(key="node_b", name="Node B", url="http://node-b.test:8545", compare_with="ref"),
        ],
        external=[
            ExternalEndpointDescriptor(
                name="External 1", rpc_url="http://ext-1.test/secret", ws_url="ws://ext-1.test/secret",
                display_rpc_url="http://ext-1.test", display_ws_url="ws://ext-1.test",
            ),
            ExternalEndpointDescriptor(
                name="External 2", rpc_url="http://ext-2.test", ws_url="ws://ext-2.test",
            ),
            ExternalEndpointDescriptor(
                name="Hidden", rpc_url="http://ext-hidden.test", ws_url="ws://ext-hidden.test",
                show_in_ui=False,
            ),
        ],
    )


@pytest.fixture
def monitor(registry: EndpointRegistry, network: FakeRpcNetwork) -> Generator[HealthMonitor, None, None]:
    client = network.client()
    yield HealthMonitor(registry, client=client, probe_timeout_ms=200)
    asyncio.run(client.aclose())
