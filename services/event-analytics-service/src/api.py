"""
Beacon Event Analytics Service - API Endpoints.

REST API for event ingestion and time-bucketed aggregate queries.

Architecture Layer: Infrastructure (API)
Principles: Clean API Design, Request Validation, Uniform Error Envelope
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from beacon_common.exceptions import BatchValidationError, BeaconError
from beacon_security.middleware import ActorIdentity, ActorIdentityResolver
from config import IngestionConfig
from models import BucketRow, DurationSummary, IngestResponse, ParamSummary, TopPathRow
from service import EventAnalyticsService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


_service: EventAnalyticsService | None = None
_ingestion_config: IngestionConfig = IngestionConfig()
_actor_resolver: ActorIdentityResolver = ActorIdentityResolver()


def get_service() -> EventAnalyticsService:
    """Dependency to get the analytics service."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event analytics service not initialized",
        )
    return _service


async def get_actor(request: Request) -> ActorIdentity | None:
    """Dependency resolving the authenticated actor, if any."""
    return await _actor_resolver(request)


def set_dependencies(
    service: EventAnalyticsService | None,
    ingestion_config: IngestionConfig | None = None,
) -> None:
    """Set global dependencies for API routes."""
    global _service, _ingestion_config, _actor_resolver
    _service = service
    _ingestion_config = ingestion_config or IngestionConfig()
    _actor_resolver = ActorIdentityResolver(
        trust_gateway_headers=_ingestion_config.trust_gateway_headers,
    )


def client_address(request: Request) -> str:
    """Transport-observed caller address; first X-Forwarded-For hop when trusted."""
    if _ingestion_config.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else ""


@router.post("/track", response_model=IngestResponse)
async def track_events(
    request: Request,
    actor: ActorIdentity | None = Depends(get_actor),
    service: EventAnalyticsService = Depends(get_service),
) -> IngestResponse:
    """Ingest a batch of events. An empty array is accepted and writes nothing."""
    body = await request.body()
    if not body.strip():
        raise BatchValidationError("request body is empty")
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise BatchValidationError("request body is not valid JSON", cause=e) from e

    result = await service.ingest(payload, client_address=client_address(request), actor=actor)
    if result.submitted:
        logger.info("events_tracked", accepted=result.written, rejected=result.skipped)
    return IngestResponse(accepted=result.written, rejected=result.skipped)


@router.get("/stats/event-counts", response_model=list[BucketRow], response_model_exclude_none=True)
async def get_event_counts(
    interval: str | None = Query(default=None, description="Minute|Hour|Day|Week|Month|Quarter|Year"),
    event_type: str | None = Query(default=None, alias="eventType"),
    start: str | None = Query(default=None, description="RFC3339; defaults to 7 days before end"),
    end: str | None = Query(default=None, description="RFC3339; defaults to now"),
    service: EventAnalyticsService = Depends(get_service),
) -> list[BucketRow]:
    """Event counts per time bucket, optionally for one event type."""
    return await service.event_counts(interval, event_type=event_type, start=start, end=end)


@router.get("/stats/unique-users", response_model=list[BucketRow], response_model_exclude_none=True)
async def get_unique_users(
    interval: str | None = Query(default=None),
    event_type: str | None = Query(default=None, alias="eventType"),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    service: EventAnalyticsService = Depends(get_service),
) -> list[BucketRow]:
    """Distinct actors per time bucket."""
    return await service.unique_actors(interval, event_type=event_type, start=start, end=end)


@router.get("/stats/average-event-duration", response_model=DurationSummary, response_model_exclude_none=True)
async def get_average_event_duration(
    event_type: str | None = Query(default=None, alias="eventType"),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    service: EventAnalyticsService = Depends(get_service),
) -> DurationSummary:
    """Average durationMs over the window; 0 when nothing matched."""
    return await service.average_duration(event_type=event_type, start=start, end=end)


@router.get("/stats/average-custom-param", response_model=ParamSummary)
async def get_average_custom_param(
    event_type: str | None = Query(default=None, alias="eventType"),
    param_name: str | None = Query(default=None, alias="paramName"),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    service: EventAnalyticsService = Depends(get_service),
) -> ParamSummary:
    """Average of a numeric eventData field for one event type."""
    return await service.average_param(event_type, param_name, start=start, end=end)


@router.get("/stats/top-paths", response_model=list[TopPathRow])
async def get_top_paths(
    limit: str | None = Query(default=None, description="Positive integer, default 10"),
    event_type: str | None = Query(default=None, alias="eventType"),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    service: EventAnalyticsService = Depends(get_service),
) -> list[TopPathRow]:
    """Most frequent page paths, descending by count."""
    return await service.top_paths(limit=limit, event_type=event_type, start=start, end=end)


@router.get("/health")
async def analytics_health() -> dict[str, Any]:
    """Analytics-specific health check."""
    status_info: dict[str, Any] = {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
    if _service is None:
        status_info["status"] = "degraded"
        status_info["event_store"] = "not_initialized"
        return status_info
    store_ok = await _service.store.health_check()
    status_info["event_store"] = "connected" if store_ok else "unavailable"
    if not store_ok:
        status_info["status"] = "degraded"
    return status_info


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP responses."""
    @app.exception_handler(BeaconError)
    async def beacon_error_handler(request: Request, exc: BeaconError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("request_failed", path=request.url.path, **exc.to_internal_dict())
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = []
        for error in exc.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append({"field": loc, "message": error["msg"], "type": error["type"]})
        logger.warning("validation_error", path=request.url.path, errors=errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": {"code": "BAD_INPUT", "message": "Request validation failed", "details": errors}},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
        )
