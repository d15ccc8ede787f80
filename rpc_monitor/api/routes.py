"""API routes for the RPC fleet monitor.

Endpoints:
  GET  /api/status                — snapshot + battery for every endpoint, fleet summary
  GET  /api/test/{key}            — one endpoint, with block difference
  GET  /api/endpoints             — endpoint list (no credentials)
  GET  /api/external-rpcs         — visible external endpoints
  GET  /api/external-rpcs/status  — RPC + WebSocket probes of external endpoints
  GET  /api/external/status       — external heights relative to the reference endpoint
  GET  /api/{key}                 — one endpoint, no snapshot / block difference
  GET  /health                    — liveness, no network calls
  GET  /config                    — raw registry dump (debug)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rpc_monitor.config import settings
from rpc_monitor.health.monitor import HealthMonitor

logger = logging.getLogger(__name__)

monitor_router = APIRouter()
root_router = APIRouter()


def _monitor(request: Request) -> HealthMonitor:
    return request.app.state.monitor


def _internal_error(label: str, exc: Exception) -> JSONResponse:
    logger.exception("%s failed", label)
    return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})


# ── Fleet ────────────────────────────────────────────────────────────────────


@monitor_router.get("/status")
async def fleet_status(request: Request) -> Any:
    """Run a full evaluation cycle over every configured endpoint."""
    try:
        status = await _monitor(request).fleet_status()
    except Exception as e:
        return _internal_error("Fleet status", e)
    return status.to_dict()


@monitor_router.get("/test/{endpoint_key}")
async def test_endpoint(endpoint_key: str, request: Request) -> dict[str, Any]:
    """Single endpoint test backed by a fresh fleet-wide block snapshot."""
    result = await _monitor(request).test_endpoint(endpoint_key, with_snapshot=True)
    return result.to_dict()


@monitor_router.get("/endpoints")
def list_endpoints(request: Request) -> list[dict[str, Any]]:
    return _monitor(request).list_endpoints()


# ── External endpoints ───────────────────────────────────────────────────────


@monitor_router.get("/external-rpcs")
def list_external(request: Request) -> list[dict[str, Any]]:
    return _monitor(request).list_external()


@monitor_router.get("/external-rpcs/status")
async def external_status(request: Request) -> Any:
    """Probe RPC + WebSocket reachability of every external endpoint."""
    try:
        status = await _monitor(request).external_fleet_status()
    except Exception as e:
        return _internal_error("External RPC status", e)
    return status.to_dict()


@monitor_router.get("/external/status")
async def external_reference_status(request: Request) -> dict[str, Any]:
    """Block height of each external endpoint relative to the reference endpoint."""
    status = await _monitor(request).external_reference_status()
    return status.to_dict()


# Must stay last: catches any /api/{key} not matched above.
@monitor_router.get("/{endpoint_key}")
async def quick_test(endpoint_key: str, request: Request) -> dict[str, Any]:
    """Single endpoint test without a snapshot (no block difference)."""
    result = await _monitor(request).test_endpoint(endpoint_key, with_snapshot=False)
    return result.to_dict()


# ── Service ──────────────────────────────────────────────────────────────────


@root_router.get("/health")
def liveness(request: Request) -> dict[str, Any]:
    return _monitor(request).liveness()


@root_router.get("/config")
def config_dump(request: Request) -> dict[str, Any]:
    """Registry dump including credentialed URLs. Do not expose publicly."""
    return {"port": settings.api_port, **_monitor(request).config_dump()}
