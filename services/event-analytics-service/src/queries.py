"""
Beacon Event Analytics Service - Aggregation Query Builder.

Turns caller input (metric kind, time range, interval, filters) into an immutable
QueryPlan. Plans render to parameterized ClickHouse SQL; every caller-supplied value
travels as a bound parameter and all SQL fragments come from closed tables keyed by enums.

Architecture Layer: Domain
Principles: Discriminated Plans over String Assembly, Fail Fast Validation
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from beacon_common.exceptions import (
    InvalidIntervalError,
    InvalidLimitError,
    InvalidTimestampError,
    MissingParameterError,
    ValidationError,
)
from models import Interval, MetricKind, TableName, to_store_precision

logger = structlog.get_logger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$")

_BUCKET_SQL: dict[Interval, str] = {
    Interval.MINUTE: "toStartOfMinute(timestamp, 'UTC')",
    Interval.HOUR: "toStartOfHour(timestamp, 'UTC')",
    Interval.DAY: "toStartOfDay(timestamp, 'UTC')",
    Interval.WEEK: "toStartOfWeek(timestamp, 1, 'UTC')",
    Interval.MONTH: "toStartOfMonth(timestamp, 'UTC')",
    Interval.QUARTER: "toStartOfQuarter(timestamp, 'UTC')",
    Interval.YEAR: "toStartOfYear(timestamp, 'UTC')",
}

_SERIES_AGGREGATE_SQL: dict[MetricKind, str] = {
    MetricKind.COUNT: "count()",
    MetricKind.UNIQUE_ACTORS: "uniqExactIf(user_id, user_id != '')",
}

_TIME_RANGE_SQL = (
    "timestamp >= toDateTime64(%(start)s, 3, 'UTC') "
    "AND timestamp <= toDateTime64(%(end)s, 3, 'UTC')"
)


def is_safe_identifier(name: str) -> bool:
    """Allow-list check for field names looked up inside event_data."""
    return bool(IDENTIFIER_PATTERN.fullmatch(name))


def format_store_datetime(dt: datetime) -> str:
    """Render a datetime as a UTC DateTime64(3) literal."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def parse_timestamp(field_name: str, value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 / ISO 8601 timestamp. Naive values are read as UTC."""
    if value is None or isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidTimestampError(field_name, value, cause=e) from e
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_limit(value: str | int | None, default: int) -> int:
    """Parse a positive integer limit. Zero, negatives and garbage are rejected."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise InvalidLimitError(value)
    if isinstance(value, int):
        limit = value
    else:
        try:
            limit = int(str(value).strip(), 10)
        except ValueError as e:
            raise InvalidLimitError(value, cause=e) from e
    if limit <= 0:
        raise InvalidLimitError(value)
    return limit


@dataclass(frozen=True)
class AggregationRequest:
    """Raw aggregation question as received from the caller."""
    metric: MetricKind | str
    interval: str | None = None
    event_type: str | None = None
    param_name: str | None = None
    start: str | datetime | None = None
    end: str | datetime | None = None
    limit: str | int | None = None


@dataclass(frozen=True)
class RenderedQuery:
    """SQL text plus its bound parameters and the result column order."""
    sql: str
    parameters: dict[str, Any]
    columns: tuple[str, ...]


@dataclass(frozen=True)
class QueryPlan:
    """Validated, request-scoped description of one aggregation."""
    metric: MetricKind
    start: datetime
    end: datetime
    interval: Interval | None = None
    event_type: str | None = None
    dimension: bool = False
    param_name: str | None = None
    limit: int | None = None
    table: TableName = field(default=TableName.EVENTS)

    @property
    def columns(self) -> tuple[str, ...]:
        if self.metric.is_time_series:
            return ("time_bucket", "value", "event_type") if self.dimension else ("time_bucket", "value")
        if self.metric is MetricKind.TOP_PATH:
            return ("page_path", "value")
        return ("value",)

    def render(self) -> RenderedQuery:
        """Render this plan to parameterized ClickHouse SQL."""
        params: dict[str, Any] = {
            "start": format_store_datetime(self.start),
            "end": format_store_datetime(self.end),
        }
        where = [_TIME_RANGE_SQL]
        if self.event_type is not None:
            where.append("event_type = %(event_type)s")
            params["event_type"] = self.event_type
        where_sql = " AND ".join(where)
        table = self.table.value

        if self.metric.is_time_series:
            select = [f"{_BUCKET_SQL[self.interval]} AS time_bucket",
                      f"{_SERIES_AGGREGATE_SQL[self.metric]} AS value"]
            group_by, order_by = ["time_bucket"], ["time_bucket ASC"]
            if self.dimension:
                select.append("event_type")
                group_by.append("event_type")
                order_by.append("event_type ASC")
            sql = (f"SELECT {', '.join(select)} FROM {table} WHERE {where_sql} "
                   f"GROUP BY {', '.join(group_by)} ORDER BY {', '.join(order_by)}")
        elif self.metric is MetricKind.AVERAGE_NUMERIC:
            sql = f"SELECT avg(duration_ms) AS value FROM {table} WHERE {where_sql}"
        elif self.metric is MetricKind.AVERAGE_PARAM:
            params["param_name"] = self.param_name
            sql = (f"SELECT avg(JSONExtract(event_data, %(param_name)s, 'Nullable(Float64)')) AS value "
                   f"FROM {table} WHERE {where_sql}")
        else:
            params["limit"] = int(self.limit)
            sql = (f"SELECT page_path, count() AS value FROM {table} WHERE {where_sql} "
                   "GROUP BY page_path ORDER BY value DESC, page_path ASC LIMIT %(limit)s")
        return RenderedQuery(sql=sql, parameters=params, columns=self.columns)

    def log_fields(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "interval": self.interval.value if self.interval else None,
            "event_type": self.event_type,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


class AggregationQueryBuilder:
    """Validates aggregation requests and produces QueryPlans."""

    def __init__(
        self,
        default_window: timedelta = timedelta(days=7),
        default_top_limit: int = 10,
        top_path_event_type: str = "page_view",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._default_window = default_window
        self._default_top_limit = default_top_limit
        self._top_path_event_type = top_path_event_type
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build(self, request: AggregationRequest) -> QueryPlan:
        metric = self._parse_metric(request.metric)
        event_type = (request.event_type or "").strip() or None

        interval = None
        if metric.is_time_series:
            interval = Interval.parse(request.interval)
            if interval is None:
                raise InvalidIntervalError(request.interval, [i.value for i in Interval])

        param_name = None
        if metric is MetricKind.AVERAGE_PARAM:
            if event_type is None:
                raise MissingParameterError("eventType")
            param_name = (request.param_name or "").strip()
            if not param_name:
                raise MissingParameterError("paramName")
            if not is_safe_identifier(param_name):
                raise ValidationError(
                    f"paramName {param_name!r} is not a valid field name", field="paramName",
                    constraint=IDENTIFIER_PATTERN.pattern,
                )

        limit = None
        if metric is MetricKind.TOP_PATH:
            limit = parse_limit(request.limit, self._default_top_limit)
            event_type = event_type or self._top_path_event_type

        start, end = self._resolve_range(request.start, request.end)
        plan = QueryPlan(
            metric=metric,
            start=start,
            end=end,
            interval=interval,
            event_type=event_type,
            dimension=metric.is_time_series and event_type is not None,
            param_name=param_name,
            limit=limit,
        )
        logger.debug("query_plan_built", **plan.log_fields())
        return plan

    def _parse_metric(self, metric: MetricKind | str) -> MetricKind:
        if isinstance(metric, MetricKind):
            return metric
        try:
            return MetricKind(metric)
        except ValueError as e:
            raise ValidationError(
                f"unknown metric: {metric!r}", field="metric",
                constraint="|".join(m.value for m in MetricKind), cause=e,
            ) from e

    def _resolve_range(
        self, start_value: str | datetime | None, end_value: str | datetime | None
    ) -> tuple[datetime, datetime]:
        start = parse_timestamp("start", start_value)
        end = parse_timestamp("end", end_value)
        if end is None:
            end = self._clock()
        if start is None:
            start = end - self._default_window
        if start > end:
            raise ValidationError("'start' must not be after 'end'", field="start", constraint="start<=end")
        # bounds at column resolution so every store compares the same instants
        return to_store_precision(start), to_store_precision(end)
