"""Health subsystem — RPC client, diagnostic battery, prober, aggregation, monitor."""

from .aggregator import FleetSummary, HealthBucket, HealthScore, classify, score, summarize
from .engine import BlockDifference, BlockSnapshot, DiagnosticBattery, EndpointResult, compute_block_difference
from .monitor import (
    ConfigurationError,
    EndpointNotFoundError,
    HealthMonitor,
    MonitorError,
    ReferenceUnavailableError,
)
from .probe import ExternalProber, ProbeOutcome, ProbeResult
from .resources import ResourceBridge, SystemResources
from .rpc import CheckOutcome, RpcClient
