from typing import Annotated, Optional

from pydantic import BeforeValidator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas.logging import LogLevel


class HealthSettings(BaseSettings):
    """
    Engine configuration loaded from ``PLATFORM_HEALTH_*`` environment
    variables or a ``.env`` file.

    Example:
        ```
        PLATFORM_HEALTH_CONTENT_STORE_URL=https://abc123.api.sanity.io
        PLATFORM_HEALTH_DATASET=production
        PLATFORM_HEALTH_REDIS_URL=redis://localhost:6379/0
        PLATFORM_HEALTH_FULL_CACHE_TTL=120
        ```

    """

    model_config = SettingsConfigDict(
        env_prefix="PLATFORM_HEALTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backends
    content_store_url: str = "http://localhost:3333"
    dataset: str = "production"
    api_version: str = "v2024-01-01"
    content_store_token: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"
    http_timeout: float = Field(default=5.0, gt=0)

    # Probes
    probe_timeout: float = Field(default=5.0, gt=0)
    connection_slow_ms: float = Field(default=1000.0, gt=0)
    cache_ping_slow_ms: float = Field(default=1000.0, gt=0)
    cache_hit_rate_healthy: float = Field(default=0.7, ge=0, le=1)
    cache_hit_rate_warning: float = Field(default=0.4, ge=0, le=1)
    asset_slow_ms: float = Field(default=3000.0, gt=0)
    subsystem_checks: bool = True

    # Aggregation
    quick_cache_ttl: float = Field(default=30.0, ge=0)
    full_cache_ttl: float = Field(default=60.0, ge=0)
    quick_timeout: float = Field(default=5.0, gt=0)
    full_timeout: float = Field(default=10.0, gt=0)
    max_concurrency: int = Field(default=8, ge=1)

    # Diagnostic tests
    performance_iterations: int = Field(default=5, ge=1)
    performance_threshold_ms: float = Field(default=2000.0, gt=0)
    test_timeout: float = Field(default=30.0, gt=0)
    custom_query_read_only: bool = True
    custom_query_max_length: int = Field(default=2000, ge=1)

    # Polling
    quick_poll_interval: float = Field(default=30.0, gt=0)
    full_poll_interval: float = Field(default=60.0, gt=0)

    # API
    admin_token_hash: Optional[str] = None

    # Logging / metrics
    log_level: Annotated[LogLevel, BeforeValidator(LogLevel)] = LogLevel.INFO
    log_path: Optional[str] = None
    otlp_endpoint: Optional[str] = None
    otlp_insecure: bool = False
    service_name: str = "platform-health"
