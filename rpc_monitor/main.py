"""Entry point for the RPC monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from rpc_monitor.config import settings
from rpc_monitor.endpoints.registry import EndpointRegistry
from rpc_monitor.health.monitor import ExternalFleetStatus, FleetStatus, HealthMonitor

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def _load_registry() -> EndpointRegistry:
    return EndpointRegistry.from_env(
        max_primary_slots=settings.max_primary_slots,
        max_external_slots=settings.max_external_slots,
        default_timeout_ms=settings.default_timeout_ms,
        default_chain_id=settings.default_chain_id,
    )


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel(
        f"Starting RPC Monitor on {settings.api_host}:{settings.api_port}",
        style="bold green",
    ))
    uvicorn.run(
        "rpc_monitor.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


def _fleet_table(status: FleetStatus) -> Table:
    table = Table(title="RPC endpoints")
    table.add_column("Key")
    table.add_column("Name")
    table.add_column("Block", justify="right")
    table.add_column("Diff", justify="right")
    table.add_column("Gas (gwei)", justify="right")
    table.add_column("Health", justify="right")

    for key, r in status.endpoints.items():
        block = r.tests["blockNumber"]
        gas = r.tests["gasPrice"]
        diff = r.block_difference
        score = r.health.score
        colour = "green" if score >= settings.healthy_threshold else (
            "yellow" if score >= settings.partial_threshold else "red"
        )
        table.add_row(
            key,
            r.name,
            str(block.value.block) if block.success else f"[red]{block.error}[/red]",
            str(diff.difference) if diff else "-",
            gas.value.gas_price_gwei if gas.success else "-",
            f"[{colour}]{score:.1f}%[/{colour}]",
        )
    return table


def _probe_table(status: ExternalFleetStatus) -> Table:
    table = Table(title="External endpoints")
    table.add_column("Name")
    table.add_column("RPC")
    table.add_column("WebSocket")
    for r in status.results:
        table.add_row(
            r.endpoint.name,
            "[green]ok[/green]" if r.rpc.success else f"[red]{r.rpc.error}[/red]",
            "[green]ok[/green]" if r.websocket.success else f"[red]{r.websocket.error}[/red]",
        )
    return table


async def _status() -> FleetStatus:
    async with HealthMonitor.from_settings(_load_registry(), settings) as monitor:
        return await monitor.fleet_status()


async def _probe() -> ExternalFleetStatus:
    async with HealthMonitor.from_settings(_load_registry(), settings) as monitor:
        return await monitor.external_fleet_status()


def run_status() -> None:
    """Run one evaluation cycle and print it."""
    with console.status("[bold green]Testing endpoints..."):
        status = asyncio.run(_status())

    console.print(_fleet_table(status))
    s = status.summary
    console.print(
        f"\n[dim]{s.healthy} healthy / {s.partially_healthy} partial / "
        f"{s.unhealthy} unhealthy, overall {s.overall_health:.1f}%[/dim]"
    )


def run_probe() -> None:
    """Probe external endpoints and print the result."""
    with console.status("[bold green]Probing external endpoints..."):
        status = asyncio.run(_probe())

    console.print(_probe_table(status))
    console.print(f"\n[dim]{status.working} working / {status.failed} failed[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="JSON-RPC fleet health monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")
    sub.add_parser("status", help="Test all endpoints once and print a summary")
    sub.add_parser("probe", help="Probe external endpoints once")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "status":
        run_status()
    elif args.command == "probe":
        run_probe()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
