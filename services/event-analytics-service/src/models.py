"""
Beacon Event Analytics Service - Data Models.

Inbound submissions, stored event records, aggregation enums and response records.
Wire format is camelCase; Python attributes are snake_case.

Architecture Layer: Domain
Principles: Data Transfer Objects, Immutable Records, Type Safety
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def to_store_precision(dt: datetime) -> datetime:
    """UTC, trimmed to milliseconds, the resolution of the timestamp column."""
    dt = dt.astimezone(timezone.utc)
    return dt.replace(microsecond=dt.microsecond // 1000 * 1000)


class TableName(str, Enum):
    """Event store table names."""
    EVENTS = "analytics_events"


class Interval(str, Enum):
    """Bucket granularities accepted by time-series metrics."""
    MINUTE = "Minute"
    HOUR = "Hour"
    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"
    QUARTER = "Quarter"
    YEAR = "Year"

    @classmethod
    def parse(cls, value: str | None) -> Interval | None:
        """Case-insensitive lookup; None when the value is not a known interval."""
        if not value:
            return None
        wanted = value.strip().lower()
        for interval in cls:
            if interval.value.lower() == wanted:
                return interval
        return None

    def truncate(self, dt: datetime) -> datetime:
        """Start of the UTC interval containing dt. Weeks start on Monday."""
        dt = dt.astimezone(timezone.utc)
        if self is Interval.MINUTE:
            return dt.replace(second=0, microsecond=0)
        if self is Interval.HOUR:
            return dt.replace(minute=0, second=0, microsecond=0)
        day = dt.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is Interval.DAY:
            return day
        if self is Interval.WEEK:
            return day - timedelta(days=day.weekday())
        if self is Interval.MONTH:
            return day.replace(day=1)
        if self is Interval.QUARTER:
            return day.replace(month=(day.month - 1) // 3 * 3 + 1, day=1)
        return day.replace(month=1, day=1)


class MetricKind(str, Enum):
    """Aggregation functions the query path can answer."""
    COUNT = "count"
    UNIQUE_ACTORS = "uniqueActors"
    AVERAGE_NUMERIC = "averageNumeric"
    AVERAGE_PARAM = "averageParam"
    TOP_PATH = "topPath"

    @property
    def is_time_series(self) -> bool:
        return self in (MetricKind.COUNT, MetricKind.UNIQUE_ACTORS)

    @property
    def is_scalar(self) -> bool:
        return self in (MetricKind.AVERAGE_NUMERIC, MetricKind.AVERAGE_PARAM)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EventSubmission(_WireModel):
    """A single client-emitted event as received on the ingestion endpoint.

    Server-owned fields (id, timestamp, origin address) are accepted for
    compatibility but never trusted; unknown keys are ignored. Only eventType
    is checked here; whether a record fits the table is decided per record
    when it is appended.
    """
    event_type: str = Field(..., min_length=1)
    user_id: str = ""
    session_id: str = ""
    page_path: str = ""
    referrer: str = ""
    user_agent: str = ""
    ip_address: str = ""
    duration_ms: int = 0
    products: Any = None
    location: str = ""
    event_data: Any = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("event_type")
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        """Reject blank event types."""
        v = v.strip()
        if not v:
            raise ValueError("eventType must not be blank")
        return v


class EventRecord(_WireModel):
    """Normalized event, immutable once stored."""
    event_id: UUID
    event_type: str
    user_id: str = ""
    session_id: str = ""
    timestamp: datetime
    page_path: str = ""
    referrer: str = ""
    user_agent: str = ""
    ip_address: str = ""
    duration_ms: int = 0
    products: Any = None
    location: str = ""
    event_data: Any = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


@dataclass
class WriteResult:
    """Outcome of appending one batch."""
    submitted: int = 0
    written: int = 0
    skipped_ids: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.skipped_ids)


class BucketRow(_WireModel):
    """One time bucket of a time-series metric.

    ``event_type`` is present only when a categorical filter was supplied.
    """
    time: datetime
    event_type: str | None = None
    count: int = Field(ge=0)


class TopPathRow(_WireModel):
    """One entry of a top-N page path ranking."""
    page_path: str
    count: int = Field(ge=0)


class DurationSummary(_WireModel):
    """Average event duration over a window."""
    event_type: str | None = None
    start_date: datetime
    end_date: datetime
    average_duration_ms: float


class ParamSummary(_WireModel):
    """Average of a custom numeric event-data field over a window."""
    event_type: str
    param_name: str
    start_date: datetime
    end_date: datetime
    average_value: float


class IngestResponse(_WireModel):
    """Acknowledgment for an ingestion batch."""
    accepted: int
    rejected: int = 0
