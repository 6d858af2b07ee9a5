"""
Beacon Event Analytics Service - FastAPI Application.

Accepts batches of client-side analytics events and serves time-bucketed
aggregate queries over the stored event log.

Architecture Layer: Infrastructure
Principles: 12-Factor App, Dependency Injection, Configuration Externalization
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
import structlog

from beacon_common.observability import configure_logging, set_correlation_id
from api import register_exception_handlers, router as analytics_router, set_dependencies
from config import EventAnalyticsConfig, get_config
from repository import EventStore, create_event_store
from service import EventAnalyticsService

logger = structlog.get_logger(__name__)

_event_store: EventStore | None = None
_analytics_service: EventAnalyticsService | None = None


def _setup_prometheus(app: FastAPI, config: EventAnalyticsConfig) -> None:
    """Configure Prometheus metrics instrumentation."""
    if not config.observability.prometheus_enabled:
        logger.info("prometheus_disabled")
        return

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
        inprogress_name="event_analytics_http_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app).expose(
        app,
        endpoint=config.observability.prometheus_endpoint,
        include_in_schema=False,
    )
    logger.info("prometheus_enabled", endpoint=config.observability.prometheus_endpoint)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    global _event_store, _analytics_service

    config = get_config()
    logger.info(
        "event_analytics_service_starting",
        service=config.service.name,
        env=config.service.env.value,
        clickhouse_enabled=config.clickhouse.enabled,
    )

    _event_store = create_event_store(config.clickhouse)
    await _event_store.connect()
    if config.clickhouse.create_schema:
        await _event_store.ensure_schema()

    _analytics_service = EventAnalyticsService.from_config(_event_store, config)
    set_dependencies(_analytics_service, config.ingestion)
    logger.info("event_analytics_service_ready")

    yield

    logger.info("event_analytics_service_shutdown")
    set_dependencies(None, config.ingestion)
    await _event_store.disconnect()
    _event_store = None
    _analytics_service = None


def create_app(config: EventAnalyticsConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or get_config()
    configure_logging(
        service_name=config.service.name,
        environment=config.service.env.value,
        log_level=config.service.log_level,
        log_format=config.observability.log_format,
    )

    app = FastAPI(
        title="Beacon Event Analytics Service",
        description="Event ingestion and time-bucketed aggregate queries",
        version=config.service.version,
        lifespan=lifespan,
        docs_url="/docs" if not config.is_production() else None,
        redoc_url="/redoc" if not config.is_production() else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.service.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _setup_prometheus(app, config)
    app.include_router(analytics_router)
    _register_middleware(app)
    register_exception_handlers(app)

    @app.get("/", tags=["health"])
    async def root():
        """Service information endpoint."""
        return {
            "service": config.service.name,
            "version": config.service.version,
            "status": "running",
            "environment": config.service.env.value,
        }

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness check endpoint."""
        return {"status": "healthy"}

    @app.get("/ready", tags=["health"])
    async def ready():
        """Readiness check endpoint."""
        if _analytics_service is None or _event_store is None:
            return {"status": "not_ready", "reason": "service_not_initialized"}
        if not await _event_store.health_check():
            return {"status": "not_ready", "reason": "event_store_unavailable"}
        return {"status": "ready"}

    return app


def _register_middleware(app: FastAPI) -> None:
    """Bind request and correlation ids to every log line of a request."""
    @app.middleware("http")
    async def request_tracking_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
        set_correlation_id(correlation_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"
        logger.info("request_completed", status_code=response.status_code,
                    process_time_ms=round(process_time_ms, 2))
        return response


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_config()
    uvicorn.run(
        "main:app",
        host=settings.service.host,
        port=settings.service.port,
        reload=settings.service.env.value == "development",
        log_level=settings.service.log_level.value.lower(),
    )
