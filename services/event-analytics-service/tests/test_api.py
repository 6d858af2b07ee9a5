"""
Unit tests for event analytics API endpoints.
"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from api import register_exception_handlers, router, set_dependencies
from beacon_common.exceptions import StorageError, StorageTimeoutError
from config import IngestionConfig

PREFIX = "/api/v1/analytics"
WINDOW = {"start": "2024-03-01T00:00:00Z", "end": "2024-03-31T00:00:00Z"}


@pytest.fixture
def ingestion_config():
    """Default ingestion settings."""
    return IngestionConfig()


@pytest.fixture
def app(analytics_service, ingestion_config, clock):
    """Create a FastAPI app with analytics routes."""
    clock.now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    app = FastAPI()
    app.include_router(router)
    register_exception_handlers(app)
    set_dependencies(analytics_service, ingestion_config)

    @app.middleware("http")
    async def fake_authentication(request: Request, call_next):
        actor_id = request.headers.get("X-Test-Actor")
        if actor_id:
            request.state.actor = {"actor_id": actor_id}
        return await call_next(request)

    yield app
    set_dependencies(None)


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app, raise_server_exceptions=False)


class TestTrackEndpoint:
    """Tests for POST /track."""

    def test_track_batch(self, client, event_store):
        """Test a batch is accepted and stored."""
        response = client.post(f"{PREFIX}/track", json=[
            {"eventType": "page_view", "pagePath": "/"},
            {"eventType": "click", "eventData": {"button": "buy"}},
        ])

        assert response.status_code == 200
        assert response.json() == {"accepted": 2, "rejected": 0}
        assert len(event_store.records) == 2

    def test_track_empty_batch(self, client, event_store):
        """An empty array is accepted."""
        response = client.post(f"{PREFIX}/track", json=[])

        assert response.status_code == 200
        assert response.json()["accepted"] == 0
        assert event_store.records == []

    def test_track_malformed_json(self, client, event_store):
        """Unparseable bodies are bad input."""
        response = client.post(
            f"{PREFIX}/track", content=b"[{not json", headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BAD_INPUT"
        assert event_store.records == []

    def test_track_object_instead_of_array(self, client):
        """Test a single object is rejected."""
        response = client.post(f"{PREFIX}/track", json={"eventType": "click"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BAD_INPUT"

    def test_track_missing_event_type(self, client, event_store):
        """One invalid event rejects the batch."""
        response = client.post(f"{PREFIX}/track", json=[{"eventType": "a"}, {"pagePath": "/x"}])

        assert response.status_code == 400
        assert event_store.records == []

    def test_track_uses_transport_address(self, client, event_store):
        """Client-supplied addresses and forwarded headers are not trusted by default."""
        client.post(
            f"{PREFIX}/track",
            json=[{"eventType": "click", "ipAddress": "1.1.1.1"}],
            headers={"X-Forwarded-For": "9.9.9.9"},
        )

        assert event_store.records[0].ip_address == "testclient"

    def test_track_trusted_forwarded_for(self, analytics_service, event_store):
        """The first forwarded hop is used when trusted."""
        app = FastAPI()
        app.include_router(router)
        register_exception_handlers(app)
        set_dependencies(analytics_service, IngestionConfig(trust_forwarded_for=True))
        try:
            TestClient(app).post(
                f"{PREFIX}/track",
                json=[{"eventType": "click"}],
                headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1"},
            )
        finally:
            set_dependencies(None)

        assert event_store.records[0].ip_address == "198.51.100.7"

    def test_track_stamps_actor(self, client, event_store):
        """The authenticated actor overrides the client userId."""
        client.post(
            f"{PREFIX}/track",
            json=[{"eventType": "click", "userId": "spoofed"}],
            headers={"X-Test-Actor": "user-99"},
        )

        assert event_store.records[0].user_id == "user-99"

    def test_track_gateway_headers_ignored_by_default(self, client, event_store):
        """Gateway identity headers need explicit trust."""
        client.post(
            f"{PREFIX}/track",
            json=[{"eventType": "click", "userId": "anon"}],
            headers={"X-Consumer-Custom-ID": "gateway-user"},
        )

        assert event_store.records[0].user_id == "anon"

    def test_track_storage_unavailable(self, client, event_store):
        """Store failures map to 503."""
        event_store._extend = AsyncMock(side_effect=StorageError("down", operation="insert"))

        response = client.post(f"{PREFIX}/track", json=[{"eventType": "click"}])

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "STORAGE_UNAVAILABLE"

    def test_track_storage_timeout(self, client, event_store):
        """Expired deadlines map to 504."""
        event_store._extend = AsyncMock(side_effect=StorageTimeoutError("ingest", 15.0))

        response = client.post(f"{PREFIX}/track", json=[{"eventType": "click"}])

        assert response.status_code == 504

    def test_server_errors_logged_with_internal_detail(self, client, event_store):
        """5xx responses log the internal message; the client sees only the envelope."""
        event_store._extend = AsyncMock(side_effect=StorageError("socket reset by ch-1", operation="insert"))

        with patch("api.logger") as log:
            response = client.post(f"{PREFIX}/track", json=[{"eventType": "click"}])

        assert "socket reset" not in response.text
        log.error.assert_called_once()
        _, fields = log.error.call_args
        assert fields["internal"]["message"] == "socket reset by ch-1"
        assert fields["internal"]["operation"] == "insert"

    def test_client_errors_not_logged_as_failures(self, client):
        """4xx responses do not emit request_failed."""
        with patch("api.logger") as log:
            response = client.post(f"{PREFIX}/track", content=b"")

        assert response.status_code == 400
        log.error.assert_not_called()


class TestStatsEndpoints:
    """Tests for the aggregate query endpoints."""

    @pytest.fixture(autouse=True)
    def seed(self, client):
        client.post(f"{PREFIX}/track", json=[
            {"eventType": "page_view", "pagePath": "/", "userId": "u1", "durationMs": 100},
            {"eventType": "page_view", "pagePath": "/", "userId": "u2", "durationMs": 300},
            {"eventType": "page_view", "pagePath": "/docs", "userId": "u1"},
            {"eventType": "purchase", "eventData": {"price": 12.5}, "userId": "u2"},
        ])

    def test_event_counts(self, client):
        """Test unfiltered counts omit eventType."""
        response = client.get(f"{PREFIX}/stats/event-counts", params={"interval": "Day", **WINDOW})

        assert response.status_code == 200
        assert response.json() == [{"time": "2024-03-10T00:00:00Z", "count": 4}]

    def test_event_counts_filtered(self, client):
        """Test filtered counts carry eventType."""
        response = client.get(
            f"{PREFIX}/stats/event-counts",
            params={"interval": "day", "eventType": "page_view", **WINDOW},
        )

        assert response.json() == [{"time": "2024-03-10T00:00:00Z", "eventType": "page_view", "count": 3}]

    def test_event_counts_missing_interval(self, client):
        """Test interval is required."""
        response = client.get(f"{PREFIX}/stats/event-counts")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INTERVAL"

    def test_event_counts_bad_timestamp(self, client):
        """Test malformed start."""
        response = client.get(
            f"{PREFIX}/stats/event-counts", params={"interval": "Day", "start": "last tuesday"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TIMESTAMP"

    def test_unique_users(self, client):
        """Test distinct actors per bucket."""
        response = client.get(f"{PREFIX}/stats/unique-users", params={"interval": "Week", **WINDOW})

        assert response.status_code == 200
        assert response.json() == [{"time": "2024-03-04T00:00:00Z", "count": 2}]

    def test_average_event_duration(self, client):
        """Test average duration response shape."""
        response = client.get(
            f"{PREFIX}/stats/average-event-duration",
            params={"eventType": "page_view", **WINDOW},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["averageDurationMs"] == pytest.approx(400 / 3)
        assert body["eventType"] == "page_view"
        assert body["startDate"] == "2024-03-01T00:00:00Z"
        assert body["endDate"] == "2024-03-31T00:00:00Z"

    def test_average_event_duration_empty(self, client):
        """Test empty window averages to 0."""
        response = client.get(
            f"{PREFIX}/stats/average-event-duration", params={"eventType": "nothing", **WINDOW},
        )

        assert response.json()["averageDurationMs"] == 0

    def test_average_custom_param(self, client):
        """Test custom parameter average."""
        response = client.get(
            f"{PREFIX}/stats/average-custom-param",
            params={"eventType": "purchase", "paramName": "price", **WINDOW},
        )

        assert response.status_code == 200
        assert response.json()["averageValue"] == 12.5
        assert response.json()["paramName"] == "price"

    def test_average_custom_param_missing_name(self, client):
        """Test paramName is required."""
        response = client.get(
            f"{PREFIX}/stats/average-custom-param", params={"eventType": "purchase"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_PARAMETER"

    def test_average_custom_param_unsafe_name(self, client):
        """Test injection attempts in paramName are rejected."""
        response = client.get(
            f"{PREFIX}/stats/average-custom-param",
            params={"eventType": "purchase", "paramName": "price') OR 1=1 --"},
        )

        assert response.status_code == 400

    def test_top_paths(self, client):
        """Test ranking of page views."""
        response = client.get(f"{PREFIX}/stats/top-paths", params=WINDOW)

        assert response.status_code == 200
        assert response.json() == [{"pagePath": "/", "count": 2}, {"pagePath": "/docs", "count": 1}]

    @pytest.mark.parametrize("limit", ["0", "-1", "ten"])
    def test_top_paths_invalid_limit(self, client, limit):
        """Test non-positive and non-numeric limits."""
        response = client.get(f"{PREFIX}/stats/top-paths", params={"limit": limit})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_LIMIT"

    def test_inverted_window(self, client):
        """Test start after end."""
        response = client.get(
            f"{PREFIX}/stats/top-paths",
            params={"start": WINDOW["end"], "end": WINDOW["start"]},
        )

        assert response.status_code == 400


class TestHealthAndDependencies:
    """Tests for health and uninitialized service."""

    def test_health(self, client):
        """Test store health is reported."""
        response = client.get(f"{PREFIX}/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["event_store"] == "connected"

    def test_uninitialized_service(self):
        """Routes return 503 before startup completes."""
        app = FastAPI()
        app.include_router(router)
        set_dependencies(None)

        response = TestClient(app).get(f"{PREFIX}/stats/top-paths")

        assert response.status_code == 503
