from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file.

    Endpoint slots (RPC_{n}_* / EXTERNAL_RPC_{n}_*) are resolved separately by
    the endpoint registry; this only holds process-level knobs.
    """

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # API
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8080, validation_alias=AliasChoices("PORT", "API_PORT"))

    # Logging
    log_level: str = "INFO"

    # Endpoint slots scanned at startup
    max_primary_slots: int = 20
    max_external_slots: int = 10

    # Per-endpoint defaults (overridable per slot)
    default_timeout_ms: int = 10_000
    default_chain_id: int = 998

    # External probes + sidecar resource queries
    probe_timeout_ms: int = 5_000
    resource_timeout_ms: int = 10_000

    # External endpoints within this many blocks of the reference are healthy
    reference_sync_threshold: int = 5

    # Fleet buckets (score is 0-100)
    healthy_threshold: float = 80.0
    partial_threshold: float = 50.0


settings = Settings()
