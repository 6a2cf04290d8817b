"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .enums import Backend


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class LedgerConfig(BaseModel):
    backend: Backend = Backend.MEMORY
    redis_url: str = ""
    prefix: str = "billing:idempotency:"
    default_ttl_seconds: int = 86_400  # 24h
    batch_get_limit: int = 100


class BusConfig(BaseModel):
    backend: Backend = Backend.MEMORY
    redis_url: str = ""
    bus_name: str = "billing-events"
    max_entries_per_publish: int = 10
    max_stream_length: int = 10_000


class DeadLetterConfig(BaseModel):
    max_retries: int = 5
    quarantine_backend: Backend = Backend.MEMORY
    redis_url: str = ""
    quarantine_key: str = "billing:quarantine"


class SchedulerConfig(BaseModel):
    backend: Backend = Backend.MEMORY
    redis_url: str = ""
    prefix: str = "billing:schedule:"


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"
    metrics_port: int = 0  # 0 disables the exporter


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    stage: str = "dev"
    service_source: str = "service.stripe"

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    dead_letter: DeadLetterConfig = Field(default_factory=DeadLetterConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "BILLING_", "env_nested_delimiter": "__"}

    def validate_runtime(self) -> None:
        """Reject configurations that cannot be wired."""
        from .errors import ConfigError

        redis_backed = {
            "ledger": (self.ledger.backend, self.ledger.redis_url),
            "bus": (self.bus.backend, self.bus.redis_url),
            "dead_letter": (
                self.dead_letter.quarantine_backend,
                self.dead_letter.redis_url,
            ),
            "scheduler": (self.scheduler.backend, self.scheduler.redis_url),
        }
        for name, (backend, url) in redis_backed.items():
            if backend == Backend.REDIS and not url:
                raise ConfigError(
                    f"{name} uses the redis backend but has no redis_url"
                )

        if self.dead_letter.max_retries < 0:
            raise ConfigError("dead_letter.max_retries must be >= 0")
        if self.bus.max_entries_per_publish < 1:
            raise ConfigError("bus.max_entries_per_publish must be >= 1")


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value

    return Settings(**data)
