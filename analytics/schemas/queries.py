"""Query request/response schemas for event listing and aggregations."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

DEFAULT_RANGE = timedelta(days=7)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TimeRange(BaseModel):
    """Half-open ``[start_time, end_time)``. Unset bounds default at execution time."""

    model_config = ConfigDict(frozen=True)

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def _normalize_tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(value)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    def resolve(
        self, now: Optional[datetime] = None, default_range: timedelta = DEFAULT_RANGE
    ) -> tuple[datetime, datetime]:
        """Concrete bounds: end defaults to now, start to ``default_range`` before end."""
        end = self.end_time or now or datetime.now(timezone.utc)
        start = self.start_time or (end - default_range)
        return start, end

    def time_range(self) -> TimeRange:
        return TimeRange(start_time=self.start_time, end_time=self.end_time)


class EventQueryRequest(TimeRange):
    """Filters plus cursor for one page of events."""

    owner_id: Optional[UUID] = None
    type: Optional[str] = Field(default=None, max_length=50)
    cursor: Optional[int] = Field(default=None, ge=0)
    page_size: int = DEFAULT_PAGE_SIZE
    include_total: bool = False

    @field_validator("page_size", mode="before")
    @classmethod
    def _default_page_size(cls, value: Any) -> Any:
        return DEFAULT_PAGE_SIZE if value is None else value

    @field_validator("page_size", mode="after")
    @classmethod
    def _clamp_page_size(cls, value: int) -> int:
        if value <= 0:
            return DEFAULT_PAGE_SIZE
        return min(value, MAX_PAGE_SIZE)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class EventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: UUID
    type: str
    source: str
    payload: dict = Field(default_factory=dict)
    occurred_at: datetime
    recorded_at: datetime

    @field_validator("occurred_at", "recorded_at", mode="after")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return _to_utc(value)


class EventQueryResponse(BaseModel):
    events: List[EventRead] = Field(default_factory=list)
    next_cursor: Optional[int] = None
    has_more: bool = False
    total_count: Optional[int] = None
    served_from_cache: bool = False
    query_duration_ms: float = 0.0


class TypeCount(BaseModel):
    type: str
    count: int


class HourlyCount(BaseModel):
    hour: datetime
    count: int

    @field_validator("hour", mode="after")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return _to_utc(value)


class TypeAggregation(BaseModel):
    """Counts per event type, most frequent first."""

    buckets: List[TypeCount] = Field(default_factory=list)
    served_from_cache: bool = False
    query_duration_ms: float = 0.0


class HourlyAggregation(BaseModel):
    """Counts per hour bucket, oldest first."""

    buckets: List[HourlyCount] = Field(default_factory=list)
    served_from_cache: bool = False
    query_duration_ms: float = 0.0
