"""Configuration management for FormFlow dispatch."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """FormFlow configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the FORMFLOW_ prefix. For example:
        FORMFLOW_DURABLE_BACKEND=dbos
        FORMFLOW_DATABASE_URL=postgresql+asyncpg://localhost/formflow

    Notes:
        - The retry backoff defaults (30s base, 4x growth) produce the
          sequence 30s, 120s, 480s for attempts 1-3.
        - When no durable backend is available, delayed actions run in
          degraded mode (best-effort, single-shot timers).
    """

    model_config = SettingsConfigDict(env_prefix="FORMFLOW_", extra="ignore")

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Durable execution
    durable_backend: Literal["auto", "dbos", "inprocess"] = Field(
        default="auto",
        description=(
            "Action executor: 'dbos' (durable, SQLite/PostgreSQL), 'inprocess' "
            "(immediate calls plus degraded timers), or 'auto' (DBOS when installed "
            "and a database URL is set)"
        ),
    )
    database_url: str | None = Field(
        default=None,
        description="Database URL for storage (SQLAlchemy async URL)",
    )
    dbos_database_url: str | None = Field(
        default=None,
        description="System database URL for DBOS (SQLite if not set)",
    )
    queue_group: str = Field(
        default="formflow_queue",
        description="Default group for scheduled actions",
    )

    # Retry queue
    retry_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Maximum automatic retries per failed operation",
    )
    retry_base_delay_seconds: int = Field(
        default=30,
        ge=1,
        description="Backoff delay for the first retry",
    )
    retry_growth_factor: float = Field(
        default=4.0,
        description="Backoff multiplier between successive retries",
    )
    retry_max_delay_seconds: int = Field(
        default=3600,
        ge=1,
        description="Upper bound for any single backoff delay",
    )
    retry_initial_delay_seconds: int = Field(
        default=300,
        ge=0,
        description="Delay before the first replay of a newly enqueued record",
    )
    retry_batch_size: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Records claimed per worker invocation",
    )
    retry_stale_after_seconds: int = Field(
        default=900,
        ge=60,
        description="Processing records older than this are returned to pending",
    )
    worker_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Cadence of the periodic retry worker",
    )

    # Webhooks
    webhook_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="HTTP timeout for a single webhook POST",
    )
    webhook_source: str = Field(
        default="formflow",
        description="Value of the X-Source header and payload source field",
    )
    webhook_verify_tls: bool = Field(
        default=True,
        description="Verify TLS certificates of webhook endpoints",
    )

    # Result cache
    result_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime of cached API call results",
    )
    result_cache_size: int = Field(
        default=1000,
        ge=0,
        description="Maximum number of cached API call results",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    @model_validator(mode="after")
    def validate_backoff(self) -> "Settings":
        """Validate that backoff delays never shrink between attempts."""
        if self.retry_growth_factor < 1:
            raise ValueError(
                f"retry_growth_factor ({self.retry_growth_factor}) must be >= 1. "
                "Backoff delays must not decrease between attempts."
            )
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                f"retry_max_delay_seconds ({self.retry_max_delay_seconds}) must be >= "
                f"retry_base_delay_seconds ({self.retry_base_delay_seconds})"
            )
        if self.env == "production" and self.durable_backend == "inprocess":
            logger.warning(
                "In-process executor selected in production: delayed actions run in degraded mode"
            )
        return self


__all__ = ["Settings"]
