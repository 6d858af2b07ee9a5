"""
Pytest configuration and fixtures for event analytics service tests.
"""
import sys
from pathlib import Path

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import pytest
import pytest_asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

from config import ClickHouseConfig, EventAnalyticsConfig, reset_config
from normalizer import EventNormalizer
from queries import AggregationQueryBuilder
from repository import ClickHouseEventStore, InMemoryEventStore
from service import EventAnalyticsService


FIXED_NOW = datetime(2024, 3, 14, 15, 9, 26, 535897, tzinfo=timezone.utc)


class MutableClock:
    """Test clock that can be moved between batches."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def _reset_config():
    """Isolate the configuration singleton between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    """Controllable clock starting at FIXED_NOW."""
    return MutableClock()


@pytest.fixture
def normalizer(clock):
    """Normalizer stamped by the test clock."""
    return EventNormalizer(clock=clock)


@pytest.fixture
def query_builder(clock):
    """Query builder whose 'now' is the test clock."""
    return AggregationQueryBuilder(clock=clock)


@pytest_asyncio.fixture
async def event_store():
    """Connected in-memory event store."""
    store = InMemoryEventStore()
    await store.connect()
    yield store
    await store.disconnect()


@pytest.fixture
def service_config():
    """Default configuration without touching the environment singleton."""
    return EventAnalyticsConfig()


@pytest.fixture
def analytics_service(event_store, service_config, clock):
    """Service wired to the in-memory store and the test clock."""
    return EventAnalyticsService.from_config(event_store, service_config, clock=clock)


@pytest.fixture
def clickhouse_client():
    """Mock clickhouse_connect client."""
    client = MagicMock()
    client.command.return_value = 1
    return client


@pytest.fixture
def clickhouse_store(clickhouse_client):
    """ClickHouse store bound to the mock client."""
    return ClickHouseEventStore(ClickHouseConfig(enabled=True), client=clickhouse_client)
