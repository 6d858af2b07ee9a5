"""
Beacon Event Analytics Service - Result Mapper.

Converts raw executor rows into typed response records. Non-finite and missing
numeric values become 0 so every response survives JSON serialization. Row order
from the executor is preserved.
"""
from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Iterable

import structlog

from executor import Row
from models import BucketRow, DurationSummary, ParamSummary, TopPathRow
from queries import QueryPlan

logger = structlog.get_logger(__name__)


def finite_or_zero(value: Any) -> float:
    """NaN, infinities and NULL map to 0.0."""
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        value = float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("non_numeric_metric_value", value_type=type(value).__name__)
        return 0.0
    return number if math.isfinite(number) else 0.0


def as_utc_datetime(value: datetime | date) -> datetime:
    """Buckets may come back as dates (month and coarser) or naive datetimes."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    return datetime.combine(value, time(), tzinfo=timezone.utc)


class ResultMapper:
    """Maps executor rows to response records."""

    def to_series(self, plan: QueryPlan, rows: Iterable[Row]) -> list[BucketRow]:
        return [
            BucketRow(
                time=as_utc_datetime(row["time_bucket"]),
                event_type=row["event_type"] if plan.dimension else None,
                count=int(finite_or_zero(row["value"])),
            )
            for row in rows
        ]

    def to_top_paths(self, rows: Iterable[Row]) -> list[TopPathRow]:
        return [
            TopPathRow(page_path=row["page_path"], count=int(finite_or_zero(row["value"])))
            for row in rows
        ]

    def to_duration_summary(self, plan: QueryPlan, value: Any) -> DurationSummary:
        return DurationSummary(
            event_type=plan.event_type,
            start_date=plan.start,
            end_date=plan.end,
            average_duration_ms=finite_or_zero(value),
        )

    def to_param_summary(self, plan: QueryPlan, value: Any) -> ParamSummary:
        return ParamSummary(
            event_type=plan.event_type,
            param_name=plan.param_name,
            start_date=plan.start,
            end_date=plan.end,
            average_value=finite_or_zero(value),
        )
