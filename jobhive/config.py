"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache
from urllib.parse import quote

from pydantic_settings import BaseSettings, SettingsConfigDict

from jobhive.constants import DEFAULT_CONTROL_PORT, DEFAULT_EXPIRY_TIME


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis
    redis_scheme: str = "redis"
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_db: int = 0
    redis_namespace: str = "jobhive"
    redis_password: str | None = None
    redis_rw_timeout: float = 60.0

    # Expiry
    job_expiry_seconds: int = DEFAULT_EXPIRY_TIME
    worker_expiry_seconds: int = DEFAULT_EXPIRY_TIME
    default_delay_seconds: int = 0

    # Worker Configuration
    worker_queues: str = "default"
    worker_poll_interval_seconds: float = 5.0
    worker_job_timeout_seconds: float = 60.0
    worker_memory_limit_mb: int = 128
    worker_cancel_grace_seconds: float = 5.0
    worker_stale_after_seconds: float = 60.0

    # Host Configuration
    host_idle_grace_seconds: float = 300.0

    # Store retries
    store_retry_attempts: int = 5
    store_retry_base_delay_seconds: float = 0.5

    # Control server
    control_host: str = "0.0.0.0"
    control_port: int = DEFAULT_CONTROL_PORT
    control_retry_bind: bool = False
    control_retry_interval_seconds: float = 10.0
    control_command_timeout_seconds: float = 30.0

    # Reaper Configuration
    reaper_interval_seconds: int = 10

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "jobhive"
    tracing_enabled: bool = False
    prometheus_port: int | None = None
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    @property
    def redis_url(self) -> str:
        """Build the Redis connection URL from the individual parts."""
        auth = f":{quote(self.redis_password, safe='')}@" if self.redis_password else ""
        return f"{self.redis_scheme}://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def queue_list(self) -> list[str]:
        """Watched queues in declared priority order."""
        return [q.strip() for q in self.worker_queues.split(",") if q.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
