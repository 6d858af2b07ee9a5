"""
Beacon Event Analytics Service - Service Facade.

Wires the ingestion path (normalizer -> writer) and the query path
(builder -> executor -> mapper). Holds no per-request state.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

import structlog

from beacon_security.middleware import ActorIdentity
from config import EventAnalyticsConfig
from executor import AggregationExecutor
from models import (
    BucketRow,
    DurationSummary,
    MetricKind,
    ParamSummary,
    TopPathRow,
    WriteResult,
)
from normalizer import EventNormalizer
from queries import AggregationQueryBuilder, AggregationRequest
from repository import EventStore
from results import ResultMapper
from writer import EventWriter

logger = structlog.get_logger(__name__)

QueryResult = list[BucketRow] | list[TopPathRow] | DurationSummary | ParamSummary


class EventAnalyticsService:
    """Entry point for both ingestion and aggregation queries."""

    def __init__(
        self,
        store: EventStore,
        normalizer: EventNormalizer,
        builder: AggregationQueryBuilder,
        writer: EventWriter,
        executor: AggregationExecutor,
        mapper: ResultMapper | None = None,
    ) -> None:
        self._store = store
        self._normalizer = normalizer
        self._builder = builder
        self._writer = writer
        self._executor = executor
        self._mapper = mapper or ResultMapper()

    @classmethod
    def from_config(
        cls,
        store: EventStore,
        config: EventAnalyticsConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> EventAnalyticsService:
        return cls(
            store=store,
            normalizer=EventNormalizer(clock=clock, max_batch_size=config.ingestion.max_batch_size),
            builder=AggregationQueryBuilder(
                default_window=timedelta(days=config.query.default_window_days),
                default_top_limit=config.query.default_top_limit,
                top_path_event_type=config.query.top_path_event_type,
                clock=clock,
            ),
            writer=EventWriter(store, config.deadlines.ingest_seconds),
            executor=AggregationExecutor(store, config.deadlines.query_seconds),
        )

    @property
    def store(self) -> EventStore:
        return self._store

    async def ingest(
        self, payload: Any, client_address: str, actor: ActorIdentity | None = None
    ) -> WriteResult:
        """Normalize and persist one batch. Empty batches write nothing."""
        records = self._normalizer.normalize(payload, client_address=client_address, actor=actor)
        if not records:
            return WriteResult()
        return await self._writer.write(records)

    async def query(self, request: AggregationRequest) -> QueryResult:
        """Validate, plan, execute and map one aggregation."""
        plan = self._builder.build(request)
        if plan.metric.is_time_series:
            return self._mapper.to_series(plan, await self._executor.fetch_all(plan))
        if plan.metric is MetricKind.TOP_PATH:
            return self._mapper.to_top_paths(await self._executor.fetch_all(plan))
        value = await self._executor.fetch_scalar(plan)
        if plan.metric is MetricKind.AVERAGE_NUMERIC:
            return self._mapper.to_duration_summary(plan, value)
        return self._mapper.to_param_summary(plan, value)

    async def event_counts(
        self, interval: str | None, event_type: str | None = None,
        start: str | datetime | None = None, end: str | datetime | None = None,
    ) -> list[BucketRow]:
        return await self.query(AggregationRequest(
            metric=MetricKind.COUNT, interval=interval, event_type=event_type, start=start, end=end,
        ))

    async def unique_actors(
        self, interval: str | None, event_type: str | None = None,
        start: str | datetime | None = None, end: str | datetime | None = None,
    ) -> list[BucketRow]:
        return await self.query(AggregationRequest(
            metric=MetricKind.UNIQUE_ACTORS, interval=interval, event_type=event_type, start=start, end=end,
        ))

    async def average_duration(
        self, event_type: str | None = None,
        start: str | datetime | None = None, end: str | datetime | None = None,
    ) -> DurationSummary:
        return await self.query(AggregationRequest(
            metric=MetricKind.AVERAGE_NUMERIC, event_type=event_type, start=start, end=end,
        ))

    async def average_param(
        self, event_type: str | None, param_name: str | None,
        start: str | datetime | None = None, end: str | datetime | None = None,
    ) -> ParamSummary:
        return await self.query(AggregationRequest(
            metric=MetricKind.AVERAGE_PARAM, event_type=event_type, param_name=param_name,
            start=start, end=end,
        ))

    async def top_paths(
        self, limit: str | int | None = None, event_type: str | None = None,
        start: str | datetime | None = None, end: str | datetime | None = None,
    ) -> list[TopPathRow]:
        return await self.query(AggregationRequest(
            metric=MetricKind.TOP_PATH, limit=limit, event_type=event_type, start=start, end=end,
        ))
