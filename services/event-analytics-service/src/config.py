"""
Beacon Event Analytics Service - Configuration.

Centralized configuration management for the ingestion and aggregation-query paths.
Supports environment-based configuration with validation.

Architecture Layer: Infrastructure
Principles: 12-Factor App, Configuration Externalization, Type Safety
"""
from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

from beacon_common.exceptions import ConfigurationError
from beacon_common.observability import LogLevel

logger = structlog.get_logger(__name__)


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ServiceConfiguration(BaseSettings):
    """Core service configuration."""
    name: str = Field(default="event-analytics-service")
    version: str = Field(default="1.0.0")
    env: Environment = Field(default=Environment.DEVELOPMENT)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8010, ge=1, le=65535)
    log_level: LogLevel = Field(default=LogLevel.INFO)
    debug: bool = Field(default=False)
    cors_origins: str = Field(default="*")

    model_config = SettingsConfigDict(
        env_prefix="EVENT_ANALYTICS_SERVICE_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class ClickHouseConfig(BaseSettings):
    """ClickHouse event store configuration."""
    enabled: bool = Field(default=False)
    host: str = Field(default="localhost")
    port: int = Field(default=8123, ge=1, le=65535)
    database: str = Field(default="beacon_analytics")
    username: str = Field(default="default")
    password: str = Field(default="")
    secure: bool = Field(default=False)
    verify: bool = Field(default=True)
    connect_timeout: float = Field(default=5.0, ge=1.0, le=60.0)
    compression: bool = Field(default=True)
    create_schema: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="CLICKHOUSE_",
        env_file=".env",
        extra="ignore",
    )


class DeadlineConfig(BaseSettings):
    """Per-operation deadlines for store calls."""
    ingest_seconds: float = Field(default=15.0, gt=0.0, le=300.0)
    query_seconds: float = Field(default=10.0, gt=0.0, le=300.0)

    model_config = SettingsConfigDict(
        env_prefix="DEADLINE_",
        env_file=".env",
        extra="ignore",
    )


class IngestionConfig(BaseSettings):
    """Ingestion path configuration."""
    trust_forwarded_for: bool = Field(default=False)
    trust_gateway_headers: bool = Field(default=False)
    max_batch_size: int = Field(default=1000, ge=1, le=100000)

    model_config = SettingsConfigDict(
        env_prefix="INGESTION_",
        env_file=".env",
        extra="ignore",
    )


class QueryConfig(BaseSettings):
    """Aggregation query defaults."""
    default_window_days: int = Field(default=7, ge=1, le=366)
    default_top_limit: int = Field(default=10, ge=1, le=1000)
    top_path_event_type: str = Field(default="page_view", min_length=1)

    model_config = SettingsConfigDict(
        env_prefix="QUERY_",
        env_file=".env",
        extra="ignore",
    )


class ObservabilityConfig(BaseSettings):
    """Observability configuration."""
    prometheus_enabled: bool = Field(default=True)
    prometheus_endpoint: str = Field(default="/metrics")
    log_format: Literal["json", "console"] = Field(default="json")

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_",
        env_file=".env",
        extra="ignore",
    )


class EventAnalyticsConfig(BaseSettings):
    """Aggregate event analytics service configuration."""
    service: ServiceConfiguration = Field(default_factory=ServiceConfiguration)
    clickhouse: ClickHouseConfig = Field(default_factory=ClickHouseConfig)
    deadlines: DeadlineConfig = Field(default_factory=DeadlineConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @staticmethod
    def load() -> EventAnalyticsConfig:
        """Load configuration from environment."""
        config = EventAnalyticsConfig()
        config.check_deadlines()
        logger.info(
            "event_analytics_config_loaded",
            service=config.service.name,
            env=config.service.env.value,
            clickhouse_enabled=config.clickhouse.enabled,
            ingest_deadline_s=config.deadlines.ingest_seconds,
            query_deadline_s=config.deadlines.query_seconds,
        )
        return config

    def check_deadlines(self) -> None:
        """Ingestion writes absorb batch-flush cost and never get less time than queries."""
        if self.deadlines.ingest_seconds < self.deadlines.query_seconds:
            raise ConfigurationError(
                f"ingest deadline {self.deadlines.ingest_seconds}s is shorter than "
                f"query deadline {self.deadlines.query_seconds}s",
                config_key="DEADLINE_INGEST_SECONDS",
            )

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.service.env == Environment.PRODUCTION


_config: EventAnalyticsConfig | None = None


def get_config() -> EventAnalyticsConfig:
    """Get singleton configuration instance."""
    global _config
    if _config is None:
        _config = EventAnalyticsConfig.load()
    return _config


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    global _config
    _config = None
