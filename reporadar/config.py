"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Queue backend
    queue_backend: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Job store: in-process memory or the background_jobs table",
    )
    database_url: Optional[str] = Field(
        default=None, description="PostgreSQL connection URL (postgres backend)"
    )
    db_pool_min_size: int = Field(default=2, description="Minimum connection pool size")
    db_pool_max_size: int = Field(default=10, description="Maximum connection pool size")

    # Worker
    worker_enabled: bool = Field(
        default=True, description="Run the worker pool inside the API process"
    )
    worker_concurrency: int = Field(
        default=5, ge=1, description="Jobs processed concurrently by one worker pool"
    )
    job_poll_interval_s: float = Field(
        default=1.0, gt=0, description="Idle sleep between claim attempts"
    )
    job_sweep_interval_s: float = Field(
        default=60.0, gt=0, description="Seconds between housekeeping sweeps"
    )

    # Retry / lifecycle
    job_max_attempts: int = Field(
        default=3, ge=1, description="Default attempts per job (first run included)"
    )
    job_backoff_base_s: float = Field(
        default=1.0, ge=0, description="Retry backoff base: base * 2**attempts"
    )
    job_backoff_max_s: float = Field(
        default=300.0, ge=0, description="Retry backoff cap in seconds"
    )
    job_stale_timeout_s: float = Field(
        default=300.0,
        gt=0,
        description="Processing jobs with no progress for this long are failed and retried",
    )
    job_cancel_grace_s: float = Field(
        default=30.0,
        ge=0,
        description="Seconds a processor has to acknowledge cancellation before it is forced",
    )
    job_retention_hours: float = Field(
        default=24.0, gt=0, description="Terminal jobs older than this are purged"
    )

    # Metrics
    metrics_history_size: int = Field(
        default=100, ge=1, description="Recent duration samples kept per job kind"
    )

    # Processors
    batch_item_delay_s: float = Field(
        default=1.0,
        ge=0,
        description="Pause between repositories in a batch analysis (rate limiting)",
    )
    export_max_records: int = Field(
        default=10_000, ge=1, description="Maximum records in one export"
    )

    # Notifications
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving job notifications (log only when unset)",
    )
    notification_webhook_timeout_s: float = Field(
        default=10.0, gt=0, description="Webhook request timeout in seconds"
    )
    notification_webhook_retries: int = Field(
        default=3, ge=1, description="Webhook delivery attempts"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking"
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)"
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry performance tracing sample rate (0.0-1.0)"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
