"""
Beacon Event Analytics Service - Event Store Repository.
Implements Repository Pattern with async support over an append-only, time-ordered event table.
"""
from __future__ import annotations

import asyncio
import json
import math
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Awaitable, TypeVar

import clickhouse_connect
import structlog

from beacon_common.exceptions import PartialRecordError, StorageError, StorageTimeoutError
from config import ClickHouseConfig
from models import EventRecord, MetricKind, TableName
from queries import QueryPlan

logger = structlog.get_logger(__name__)

T = TypeVar("T")

EVENT_COLUMNS: tuple[str, ...] = (
    "event_id", "event_type", "user_id", "session_id", "timestamp", "page_path", "referrer",
    "user_agent", "ip_address", "duration_ms", "products", "location", "event_data",
)

EVENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS {TableName.EVENTS.value} (
    event_id UUID,
    event_type LowCardinality(String),
    user_id String,
    session_id String,
    timestamp DateTime64(3, 'UTC'),
    page_path String,
    referrer String,
    user_agent String,
    ip_address String,
    duration_ms Int64,
    products String,
    location String,
    event_data String
) ENGINE = MergeTree()
ORDER BY (timestamp, event_type)
"""

_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


def _encode_json(value: Any) -> str:
    if value is None:
        return ""
    return json.dumps(value, allow_nan=False, separators=(",", ":"), ensure_ascii=False)


def encode_event_row(record: EventRecord) -> list[Any]:
    """Convert one record to a row in EVENT_COLUMNS order.

    Raises PartialRecordError when the record cannot be represented in the table.
    """
    event_id = str(record.event_id)
    if record.timestamp.tzinfo is None:
        raise PartialRecordError(event_id, "timestamp has no timezone")
    if not _INT64_MIN <= record.duration_ms <= _INT64_MAX:
        raise PartialRecordError(event_id, "duration_ms out of range")
    try:
        products = _encode_json(record.products)
        event_data = _encode_json(record.event_data)
    except (TypeError, ValueError) as e:
        raise PartialRecordError(event_id, f"unencodable payload: {e}", cause=e) from e
    return [
        record.event_id, record.event_type, record.user_id, record.session_id, record.timestamp,
        record.page_path, record.referrer, record.user_agent, record.ip_address,
        record.duration_ms, products, record.location, event_data,
    ]


async def run_with_deadline(awaitable: Awaitable[T], operation: str, deadline_seconds: float) -> T:
    """Await a store operation, abandoning it once the deadline passes."""
    try:
        return await asyncio.wait_for(awaitable, timeout=deadline_seconds)
    except asyncio.TimeoutError as e:
        raise StorageTimeoutError(operation, deadline_seconds, cause=e) from e


class EventBatch(ABC):
    """A prepared batch append. Rows are appended one at a time and committed together."""

    def __init__(self) -> None:
        self._rows: list[list[Any]] = []

    def append(self, record: EventRecord) -> None:
        """Encode and buffer one record. Raises PartialRecordError for that record only."""
        self._rows.append(encode_event_row(record))

    def __len__(self) -> int:
        return len(self._rows)

    @abstractmethod
    async def commit(self) -> int:
        """Persist all buffered rows as one unit; returns rows written."""


class EventStore(ABC):
    """Abstract base class for the analytics event store."""

    @abstractmethod
    async def connect(self) -> None: ...
    @abstractmethod
    async def disconnect(self) -> None: ...
    @abstractmethod
    async def health_check(self) -> bool: ...
    @abstractmethod
    async def ensure_schema(self) -> None: ...
    @abstractmethod
    async def prepare_batch(self) -> EventBatch: ...
    @abstractmethod
    async def fetch_rows(self, plan: QueryPlan, max_execution_time: float | None = None) -> list[tuple]:
        """Run a plan and return its rows in plan.columns order."""


class _ClickHouseBatch(EventBatch):
    def __init__(self, client: Any, context: Any) -> None:
        super().__init__()
        self._client = client
        self._context = context

    async def commit(self) -> int:
        if not self._rows:
            return 0
        self._context.data = self._rows
        try:
            await asyncio.to_thread(self._client.insert, context=self._context)
        except Exception as e:
            logger.error("event_batch_commit_failed", rows=len(self._rows), error=str(e))
            raise StorageError(f"Failed to commit event batch: {e}", operation="insert", cause=e) from e
        return len(self._rows)


class ClickHouseEventStore(EventStore):
    """ClickHouse implementation of the event store."""

    def __init__(self, config: ClickHouseConfig, client: Any = None) -> None:
        self._config = config
        self._client: Any = client
        self._connected = client is not None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        async with self._lock:
            if self._connected:
                return
            try:
                self._client = await asyncio.to_thread(
                    clickhouse_connect.get_client,
                    host=self._config.host, port=self._config.port,
                    database=self._config.database, username=self._config.username,
                    password=self._config.password, secure=self._config.secure,
                    verify=self._config.verify, connect_timeout=self._config.connect_timeout,
                    compress=self._config.compression, query_limit=0,
                    autogenerate_session_id=False,
                )
                self._connected = True
                logger.info("clickhouse_connected", host=self._config.host, database=self._config.database)
            except Exception as e:
                logger.error("clickhouse_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to ClickHouse: {e}", operation="connect", cause=e) from e

    async def disconnect(self) -> None:
        async with self._lock:
            if self._client:
                await asyncio.to_thread(self._client.close)
                self._client = None
                self._connected = False
                logger.info("clickhouse_disconnected")

    async def health_check(self) -> bool:
        if not self._connected or not self._client:
            return False
        try:
            return await asyncio.to_thread(self._client.command, "SELECT 1") == 1
        except Exception as e:
            logger.warning("clickhouse_health_check_failed", error=str(e))
            return False

    def _require_connection(self) -> None:
        if not self._connected:
            raise StorageError("Not connected to ClickHouse", operation="connect")

    async def ensure_schema(self) -> None:
        self._require_connection()
        try:
            await asyncio.to_thread(self._client.command, EVENTS_DDL)
            logger.info("clickhouse_schema_ensured", table=TableName.EVENTS.value)
        except Exception as e:
            logger.error("clickhouse_schema_failed", error=str(e))
            raise StorageError(f"Failed to create event table: {e}", operation="ddl", cause=e) from e

    async def prepare_batch(self) -> EventBatch:
        self._require_connection()
        try:
            context = await asyncio.to_thread(
                self._client.create_insert_context,
                table=TableName.EVENTS.value, column_names=list(EVENT_COLUMNS),
            )
        except Exception as e:
            logger.error("event_batch_prepare_failed", error=str(e))
            raise StorageError(f"Failed to prepare batch insert: {e}", operation="prepare", cause=e) from e
        return _ClickHouseBatch(self._client, context)

    async def fetch_rows(self, plan: QueryPlan, max_execution_time: float | None = None) -> list[tuple]:
        self._require_connection()
        rendered = plan.render()
        settings = {"max_execution_time": max(1, math.ceil(max_execution_time))} if max_execution_time else None

        def _stream() -> list[tuple]:
            with self._client.query_rows_stream(
                rendered.sql, parameters=rendered.parameters, settings=settings,
            ) as stream:
                return [tuple(row) for row in stream]

        try:
            return await asyncio.to_thread(_stream)
        except Exception as e:
            logger.error("aggregation_query_failed", metric=plan.metric.value, error=str(e))
            raise StorageError(f"Failed to run {plan.metric.value} query: {e}", operation="query", cause=e) from e


class _InMemoryBatch(EventBatch):
    def __init__(self, store: InMemoryEventStore) -> None:
        super().__init__()
        self._store = store
        self._records: list[EventRecord] = []

    def append(self, record: EventRecord) -> None:
        super().append(record)
        self._records.append(record)

    async def commit(self) -> int:
        return await self._store._extend(self._records)


class InMemoryEventStore(EventStore):
    """In-memory implementation for testing and development.

    Interprets QueryPlans directly, mirroring ClickHouse semantics: avg over no rows
    yields NaN, avg over only NULLs yields NULL, and aggregates without GROUP BY
    always return a single row.
    """

    def __init__(self) -> None:
        self._records: list[EventRecord] = []
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def records(self) -> list[EventRecord]:
        return list(self._records)

    async def connect(self) -> None:
        self._connected = True
        logger.info("inmemory_event_store_connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("inmemory_event_store_disconnected")

    async def health_check(self) -> bool:
        return self._connected

    async def ensure_schema(self) -> None:
        return None

    async def prepare_batch(self) -> EventBatch:
        return _InMemoryBatch(self)

    async def _extend(self, records: list[EventRecord]) -> int:
        async with self._lock:
            self._records.extend(records)
            return len(records)

    async def fetch_rows(self, plan: QueryPlan, max_execution_time: float | None = None) -> list[tuple]:
        matching = [
            r for r in self._records
            if plan.start <= r.timestamp <= plan.end
            and (plan.event_type is None or r.event_type == plan.event_type)
        ]
        if plan.metric.is_time_series:
            return self._series(plan, matching)
        if plan.metric is MetricKind.AVERAGE_NUMERIC:
            values = [float(r.duration_ms) for r in matching]
            return [(sum(values) / len(values) if values else math.nan,)]
        if plan.metric is MetricKind.AVERAGE_PARAM:
            values = [v for v in (_extract_float(r.event_data, plan.param_name) for r in matching) if v is not None]
            return [(sum(values) / len(values) if values else None,)]
        counts = Counter(r.page_path for r in matching)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked[: plan.limit]

    def _series(self, plan: QueryPlan, records: list[EventRecord]) -> list[tuple]:
        groups: dict[tuple[datetime, str], list[EventRecord]] = defaultdict(list)
        for r in records:
            groups[(plan.interval.truncate(r.timestamp), r.event_type if plan.dimension else "")].append(r)
        rows: list[tuple] = []
        for (bucket, event_type), members in sorted(groups.items()):
            if plan.metric is MetricKind.COUNT:
                value = len(members)
            else:
                value = len({m.user_id for m in members if m.user_id})
            rows.append((bucket, value, event_type) if plan.dimension else (bucket, value))
        return rows


def _extract_float(event_data: Any, name: str | None) -> float | None:
    if not isinstance(event_data, dict) or name is None:
        return None
    value = event_data.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def create_event_store(config: ClickHouseConfig | None = None) -> EventStore:
    """Factory: ClickHouse when enabled in config, otherwise in-memory."""
    if config is not None and config.enabled:
        logger.info("event_store_created", type="clickhouse", host=config.host)
        return ClickHouseEventStore(config)
    logger.info("event_store_created", type="in_memory")
    return InMemoryEventStore()
