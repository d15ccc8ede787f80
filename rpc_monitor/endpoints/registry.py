"""Endpoint registry: resolves monitored and external RPC endpoints from env slots.

Primary endpoints are read from ``RPC_{n}_{FIELD}`` keys, external probe targets
from ``EXTERNAL_RPC_{n}_{FIELD}`` keys. A slot counts only when both NAME and URL
are set; anything else in an incomplete slot is ignored.

The registry is built once at startup and handed to every consumer. It is
never mutated afterwards.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

PRIMARY_PREFIX = "RPC"
EXTERNAL_PREFIX = "EXTERNAL_RPC"

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_CHAIN_ID = 998
DEFAULT_PRIMARY_SLOTS = 20
DEFAULT_EXTERNAL_SLOTS = 10


# ── Slot schema ──────────────────────────────────────────────────────────────


class SlotField(str, Enum):
    """Recognized per-slot options (the suffix of the env key)."""

    NAME = "NAME"
    URL = "URL"
    CHAIN_ID = "CHAIN_ID"
    TIMEOUT = "TIMEOUT"
    COMPARE_WITH = "COMPARE_WITH"
    SYSTEM_URL = "SYSTEM_URL"
    KEY = "KEY"
    IS_REFERENCE = "IS_REFERENCE"
    API_KEY = "API_KEY"
    DISPLAY_URL = "DISPLAY_URL"
    # external slots only
    WS_URL = "WS_URL"
    DESC = "DESC"
    SHOW_IN_UI = "SHOW_IN_UI"


PRIMARY_FIELDS = (
    SlotField.NAME,
    SlotField.URL,
    SlotField.CHAIN_ID,
    SlotField.TIMEOUT,
    SlotField.COMPARE_WITH,
    SlotField.SYSTEM_URL,
    SlotField.KEY,
    SlotField.IS_REFERENCE,
    SlotField.API_KEY,
    SlotField.DISPLAY_URL,
)

EXTERNAL_FIELDS = (
    SlotField.NAME,
    SlotField.URL,
    SlotField.WS_URL,
    SlotField.DESC,
    SlotField.API_KEY,
    SlotField.SHOW_IN_UI,
)


def slot_env_key(prefix: str, index: int, field: SlotField) -> str:
    """``slot_env_key("RPC", 3, SlotField.URL)`` -> ``"RPC_3_URL"``."""
    return f"{prefix}_{index}_{field.value}"


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EndpointDescriptor:
    """A monitored JSON-RPC node."""

    key: str
    name: str
    url: str
    display_url: str = ""
    expected_chain_id: int = DEFAULT_CHAIN_ID
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    compare_with: str | None = None
    is_reference: bool = False
    system_url: str | None = None

    @property
    def public_url(self) -> str:
        """URL safe to show to clients (never carries an injected API key)."""
        return self.display_url or self.url

    def to_dict(self) -> dict[str, Any]:
        """Raw form, credentials included. Debug/config output only."""
        return {
            "name": self.name,
            "url": self.url,
            "display_url": self.public_url,
            "expected_chain_id": self.expected_chain_id,
            "timeout": self.timeout_ms,
            "compare_with": self.compare_with,
            "system_monitor_url": self.system_url,
            "is_reference": self.is_reference,
        }


@dataclass(frozen=True)
class ExternalEndpointDescriptor:
    """A third-party endpoint checked only for RPC + WebSocket reachability."""

    name: str
    rpc_url: str
    ws_url: str
    description: str = ""
    show_in_ui: bool = True
    display_rpc_url: str = ""
    display_ws_url: str = ""

    def to_display_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "rpcUrl": self.display_rpc_url or self.rpc_url,
            "wsUrl": self.display_ws_url or self.ws_url,
            "description": self.description,
            "showInUI": self.show_in_ui,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.to_display_dict(),
            "rpcUrl": self.rpc_url,
            "wsUrl": self.ws_url,
            "displayRpcUrl": self.display_rpc_url or self.rpc_url,
            "displayWsUrl": self.display_ws_url or self.ws_url,
        }


# Used when no EXTERNAL_RPC_* slot is configured so the prober always has targets.
DEFAULT_EXTERNAL_ENDPOINTS: tuple[ExternalEndpointDescriptor, ...] = (
    ExternalEndpointDescriptor(
        name="Proxy RPC 1",
        rpc_url="http://18.142.83.122:9090",
        ws_url="ws://18.142.83.122:9091",
        description="Internal proxy RPC endpoint",
    ),
    ExternalEndpointDescriptor(
        name="HyperLiquid Testnet",
        rpc_url="https://rpc.hyperliquid-testnet.xyz/evm",
        ws_url="wss://rpc.hyperliquid-testnet.xyz/evm",
        description="Official HyperLiquid testnet RPC",
    ),
)


# ── URL helpers ──────────────────────────────────────────────────────────────


def derive_ws_url(rpc_url: str) -> str:
    """http:// -> ws://, https:// -> wss://; anything else unchanged."""
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    return rpc_url


def apply_api_key(url: str, api_key: str | None) -> str:
    """Append the API key as a trailing path segment, keeping any query string."""
    if not api_key:
        return url
    parts = urlsplit(url)
    path = f"{parts.path.rstrip('/')}/{api_key}"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


# ── Slot parsing ─────────────────────────────────────────────────────────────


def _slot_value(env: Mapping[str, str], prefix: str, index: int, field: SlotField) -> str | None:
    raw = env.get(slot_env_key(prefix, index, field))
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _parse_int(raw: str | None, default: int, env_key: str) -> int:
    """Positive integer (decimal or 0x-hex); anything else falls back to ``default``."""
    if raw is None:
        return default
    try:
        value = int(raw, 0) if raw.lower().startswith("0x") else int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        logger.warning("Ignoring invalid %s=%r, using %d", env_key, raw, default)
        return default
    return value


def resolve_endpoints(
    env: Mapping[str, str],
    max_slots: int = DEFAULT_PRIMARY_SLOTS,
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    default_chain_id: int = DEFAULT_CHAIN_ID,
) -> list[EndpointDescriptor]:
    """Scan ``RPC_1_*`` .. ``RPC_{max_slots}_*`` in slot order."""
    endpoints: list[EndpointDescriptor] = []
    seen: set[str] = set()

    for i in range(1, max_slots + 1):
        def get(field: SlotField) -> str | None:
            return _slot_value(env, PRIMARY_PREFIX, i, field)

        name = get(SlotField.NAME)
        url = get(SlotField.URL)
        if not (name and url):
            continue

        key = get(SlotField.KEY) or f"rpc_{i}"
        if key in seen:
            logger.warning("Duplicate endpoint key %r in slot %d, skipped", key, i)
            continue
        seen.add(key)

        is_reference = (get(SlotField.IS_REFERENCE) or "").lower() == "true"
        endpoints.append(EndpointDescriptor(
            key=key,
            name=name,
            url=apply_api_key(url, get(SlotField.API_KEY)),
            display_url=get(SlotField.DISPLAY_URL) or url,
            expected_chain_id=_parse_int(
                get(SlotField.CHAIN_ID), default_chain_id,
                slot_env_key(PRIMARY_PREFIX, i, SlotField.CHAIN_ID),
            ),
            timeout_ms=_parse_int(
                get(SlotField.TIMEOUT), default_timeout_ms,
                slot_env_key(PRIMARY_PREFIX, i, SlotField.TIMEOUT),
            ),
            compare_with=get(SlotField.COMPARE_WITH),
            is_reference=is_reference,
            system_url=get(SlotField.SYSTEM_URL),
        ))

    return endpoints


def resolve_external_endpoints(
    env: Mapping[str, str],
    max_slots: int = DEFAULT_EXTERNAL_SLOTS,
) -> list[ExternalEndpointDescriptor]:
    """Scan ``EXTERNAL_RPC_1_*`` .. slots; fall back to the built-in list when empty."""
    endpoints: list[ExternalEndpointDescriptor] = []

    for i in range(1, max_slots + 1):
        def get(field: SlotField) -> str | None:
            return _slot_value(env, EXTERNAL_PREFIX, i, field)

        name = get(SlotField.NAME)
        rpc_url = get(SlotField.URL)
        if not (name and rpc_url):
            continue

        ws_url = get(SlotField.WS_URL) or derive_ws_url(rpc_url)
        api_key = get(SlotField.API_KEY)
        endpoints.append(ExternalEndpointDescriptor(
            name=name,
            rpc_url=apply_api_key(rpc_url, api_key),
            ws_url=apply_api_key(ws_url, api_key),
            description=get(SlotField.DESC) or f"External RPC endpoint {i}",
            show_in_ui=(get(SlotField.SHOW_IN_UI) or "").lower() != "false",
            display_rpc_url=rpc_url,
            display_ws_url=ws_url,
        ))

    if not endpoints:
        logger.info("No external RPC slots configured, using %d defaults", len(DEFAULT_EXTERNAL_ENDPOINTS))
        return list(DEFAULT_EXTERNAL_ENDPOINTS)
    return endpoints


# ── Registry ─────────────────────────────────────────────────────────────────


class EndpointRegistry:
    """Read-only view over the resolved primary and external endpoints."""

    def __init__(
        self,
        endpoints: Iterable[EndpointDescriptor] = (),
        external: Iterable[ExternalEndpointDescriptor] = (),
    ) -> None:
        self._endpoints: dict[str, EndpointDescriptor] = {}
        for ep in endpoints:
            self._endpoints.setdefault(ep.key, ep)
        self._external: tuple[ExternalEndpointDescriptor, ...] = tuple(external)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        env_file: str | Path | None = ".env",
        max_primary_slots: int = DEFAULT_PRIMARY_SLOTS,
        max_external_slots: int = DEFAULT_EXTERNAL_SLOTS,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        default_chain_id: int = DEFAULT_CHAIN_ID,
    ) -> EndpointRegistry:
        """Build the registry from ``environ`` (defaults to .env overlaid by os.environ)."""
        if environ is None:
            env: dict[str, str] = {}
            if env_file and Path(env_file).exists():
                env.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
            env.update(os.environ)
            environ = env

        registry = cls(
            resolve_endpoints(environ, max_primary_slots, default_timeout_ms, default_chain_id),
            resolve_external_endpoints(environ, max_external_slots),
        )
        logger.info(
            "Endpoint registry loaded: %d endpoints, %d external",
            len(registry), len(registry.external),
        )
        return registry

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, key: object) -> bool:
        return key in self._endpoints

    def get(self, key: str) -> EndpointDescriptor | None:
        return self._endpoints.get(key)

    def keys(self) -> list[str]:
        return list(self._endpoints)

    @property
    def endpoints(self) -> tuple[EndpointDescriptor, ...]:
        return tuple(self._endpoints.values())

    @property
    def external(self) -> tuple[ExternalEndpointDescriptor, ...]:
        return self._external

    @property
    def visible_external(self) -> tuple[ExternalEndpointDescriptor, ...]:
        return tuple(e for e in self._external if e.show_in_ui)

    def reference(self) -> EndpointDescriptor | None:
        """The endpoint flagged IS_REFERENCE. First flagged slot wins."""
        flagged = [ep for ep in self._endpoints.values() if ep.is_reference]
        if len(flagged) > 1:
            logger.warning(
                "%d endpoints flagged as reference (%s), using %s",
                len(flagged), ", ".join(ep.key for ep in flagged), flagged[0].key,
            )
        return flagged[0] if flagged else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoints": {key: ep.to_dict() for key, ep in self._endpoints.items()},
            "external": [e.to_dict() for e in self._external],
        }
