"""
Unit tests for event analytics configuration.
"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from pydantic import ValidationError

from beacon_common.exceptions import ConfigurationError
from beacon_common.observability import LogLevel
from config import (
    ClickHouseConfig,
    DeadlineConfig,
    Environment,
    EventAnalyticsConfig,
    IngestionConfig,
    QueryConfig,
    ServiceConfiguration,
    get_config,
    reset_config,
)


class TestServiceConfiguration:
    """Tests for ServiceConfiguration."""

    def test_default_values(self):
        """Test default service values."""
        config = ServiceConfiguration()

        assert config.name == "event-analytics-service"
        assert config.port == 8010
        assert config.env == Environment.DEVELOPMENT

    def test_cors_origins_wildcard(self):
        """Test wildcard CORS origins."""
        assert ServiceConfiguration(cors_origins="*").cors_origins_list == ["*"]

    def test_cors_origins_list(self):
        """Test comma separated CORS origins."""
        config = ServiceConfiguration(cors_origins="https://a.example, https://b.example,")

        assert config.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_env_prefix(self, monkeypatch):
        """Test environment override."""
        monkeypatch.setenv("EVENT_ANALYTICS_SERVICE_PORT", "9100")

        assert ServiceConfiguration().port == 9100

    def test_log_level(self, monkeypatch):
        """Test log level parses to the shared enum."""
        assert ServiceConfiguration().log_level is LogLevel.INFO

        monkeypatch.setenv("EVENT_ANALYTICS_SERVICE_LOG_LEVEL", "WARNING")
        assert ServiceConfiguration().log_level is LogLevel.WARNING

    def test_log_level_rejects_unknown(self):
        """Test unknown levels fail validation."""
        with pytest.raises(ValidationError):
            ServiceConfiguration(log_level="LOUD")


class TestClickHouseConfig:
    """Tests for ClickHouseConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = ClickHouseConfig()

        assert config.enabled is False
        assert config.host == "localhost"
        assert config.port == 8123
        assert config.database == "beacon_analytics"
        assert config.create_schema is True

    def test_env_prefix(self, monkeypatch):
        """Test CLICKHOUSE_ environment variables."""
        monkeypatch.setenv("CLICKHOUSE_ENABLED", "true")
        monkeypatch.setenv("CLICKHOUSE_HOST", "ch.internal")

        config = ClickHouseConfig()

        assert config.enabled is True
        assert config.host == "ch.internal"


class TestDeadlineConfig:
    """Tests for DeadlineConfig."""

    def test_defaults(self):
        """Ingestion gets 15 seconds, queries 10."""
        config = DeadlineConfig()

        assert config.ingest_seconds == 15.0
        assert config.query_seconds == 10.0

    def test_rejects_non_positive(self):
        """Test zero deadline is rejected."""
        with pytest.raises(ValidationError):
            DeadlineConfig(query_seconds=0)


class TestIngestionAndQueryConfig:
    """Tests for ingestion and query defaults."""

    def test_ingestion_defaults(self):
        """Forwarding headers are not trusted by default."""
        config = IngestionConfig()

        assert config.trust_forwarded_for is False
        assert config.trust_gateway_headers is False
        assert config.max_batch_size == 1000

    def test_query_defaults(self):
        """Test default window, top limit and top path event type."""
        config = QueryConfig()

        assert config.default_window_days == 7
        assert config.default_top_limit == 10
        assert config.top_path_event_type == "page_view"


class TestEventAnalyticsConfig:
    """Tests for the aggregate configuration."""

    def test_load(self):
        """Test loading aggregate configuration."""
        config = EventAnalyticsConfig.load()

        assert config.service.name == "event-analytics-service"
        assert config.deadlines.ingest_seconds == 15.0
        assert config.is_production() is False

    def test_load_rejects_short_ingest_deadline(self, monkeypatch):
        """Ingestion may not get less time than queries."""
        monkeypatch.setenv("DEADLINE_INGEST_SECONDS", "5")
        monkeypatch.setenv("DEADLINE_QUERY_SECONDS", "10")

        with pytest.raises(ConfigurationError) as exc_info:
            EventAnalyticsConfig.load()

        assert exc_info.value.details["config_key"] == "DEADLINE_INGEST_SECONDS"

    def test_equal_deadlines_accepted(self, monkeypatch):
        """Test equal deadlines pass the ordering check."""
        monkeypatch.setenv("DEADLINE_INGEST_SECONDS", "10")

        config = EventAnalyticsConfig.load()

        assert config.deadlines.ingest_seconds == config.deadlines.query_seconds

    def test_is_production(self, monkeypatch):
        """Test production detection."""
        monkeypatch.setenv("EVENT_ANALYTICS_SERVICE_ENV", "production")

        assert EventAnalyticsConfig().is_production() is True

    def test_singleton(self):
        """Test get_config caches until reset."""
        first = get_config()

        assert get_config() is first
        reset_config()
        assert get_config() is not first
