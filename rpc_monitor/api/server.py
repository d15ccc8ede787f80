"""FastAPI server for the RPC fleet monitor."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rpc_monitor.api.routes import monitor_router, root_router
from rpc_monitor.config import settings
from rpc_monitor.endpoints.registry import EndpointRegistry
from rpc_monitor.health.monitor import HealthMonitor, MonitorError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Resolve the endpoint registry once and open the shared HTTP client."""
    registry = EndpointRegistry.from_env(
        max_primary_slots=settings.max_primary_slots,
        max_external_slots=settings.max_external_slots,
        default_timeout_ms=settings.default_timeout_ms,
        default_chain_id=settings.default_chain_id,
    )
    if not len(registry):
        logger.warning("No RPC endpoints configured; set RPC_1_NAME / RPC_1_URL")
    for ep in registry.endpoints:
        logger.info("  - %s: %s", ep.name, ep.public_url)

    monitor = HealthMonitor.from_settings(registry, settings)
    app.state.registry = registry
    app.state.monitor = monitor

    yield

    await monitor.close()


async def monitor_error_handler(request: Request, exc: MonitorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    app = FastAPI(
        title="RPC Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(MonitorError, monitor_error_handler)

    app.include_router(root_router)
    app.include_router(monitor_router, prefix="/api")

    return app


app = create_app()
