"""
Query service: cache-aside reads for event listings and aggregations.

Flow for every query shape:
1. Derive a cache key from the query kind and every result-affecting parameter
2. Check the cache; on hit mark the response as cache-served and return
3. On miss run the store query, time it, cache it with the kind's TTL

Listings use a short TTL (data changes under them); aggregations a long
one (expensive, staleness tolerated). Store failures propagate as
QueryExecutionError; cache failures never do.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from analytics.core.cache import QueryCache
from analytics.schemas.common import QueryKind
from analytics.schemas.queries import (
    DEFAULT_RANGE,
    EventQueryRequest,
    EventQueryResponse,
    HourlyAggregation,
    HourlyCount,
    TimeRange,
    TypeAggregation,
    TypeCount,
)
from analytics.services.events import EventStore
from analytics.services.pagination import count_matching, fetch_page

log = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

EVENTS_NAMESPACE = "query:events"
EVENTS_COUNT_NAMESPACE = "query:events:count"
AGGREGATE_TYPE_NAMESPACE = "query:aggregate:type"
AGGREGATE_HOUR_NAMESPACE = "query:aggregate:hour"

# Fields that make up the cached body; per-call metadata is never cached.
_CACHED_PAGE_FIELDS = {"events", "next_cursor", "has_more"}
_CACHED_AGGREGATE_FIELDS = {"buckets"}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class QueryService:
    """Serves paged listings and aggregations through the query cache."""

    def __init__(
        self,
        store: EventStore,
        cache: QueryCache,
        listing_ttl: int = 300,
        aggregate_ttl: int = 3600,
        query_timeout: Optional[float] = 10.0,
        default_range: timedelta = DEFAULT_RANGE,
    ) -> None:
        self.store = store
        self.cache = cache
        self.listing_ttl = listing_ttl
        self.aggregate_ttl = aggregate_ttl
        self.query_timeout = query_timeout
        self.default_range = default_range

    # --- Keys ---

    def events_key(self, request: EventQueryRequest) -> str:
        return self.cache.derive_key(
            EVENTS_NAMESPACE,
            owner_id=request.owner_id,
            type=request.type,
            start_time=request.start_time,
            end_time=request.end_time,
            cursor=request.cursor,
            page_size=request.page_size,
        )

    def count_key(self, request: EventQueryRequest) -> str:
        return self.cache.derive_key(
            EVENTS_COUNT_NAMESPACE,
            owner_id=request.owner_id,
            type=request.type,
            start_time=request.start_time,
            end_time=request.end_time,
        )

    def aggregate_key(self, namespace: str, time_range: TimeRange) -> str:
        return self.cache.derive_key(
            namespace,
            start_time=time_range.start_time,
            end_time=time_range.end_time,
        )

    # --- Cache helpers ---

    async def _cached(self, key: str, model: Type[M]) -> Optional[M]:
        raw, found = await self.cache.get(key)
        if not found:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError as exc:
            log.warning("query.cache_entry_invalid", key=key, error=str(exc))
            return None

    def _timeout(self, enforce_timeout: bool) -> Optional[float]:
        return self.query_timeout if enforce_timeout else None

    # --- Operations ---

    async def query_events(
        self, request: EventQueryRequest, enforce_timeout: bool = True
    ) -> EventQueryResponse:
        """One page of events per the request's filters and cursor."""
        started = time.perf_counter()
        key = self.events_key(request)

        response = await self._cached(key, EventQueryResponse)
        if response is not None:
            response.served_from_cache = True
            log.debug("query.cache_hit", kind=QueryKind.EVENTS.value, key=key)
        else:
            page = await fetch_page(
                self.store,
                request,
                default_range=self.default_range,
                timeout=self._timeout(enforce_timeout),
            )
            response = EventQueryResponse(
                events=page.events,
                next_cursor=page.next_cursor,
                has_more=page.has_more,
            )
            await self.cache.set(
                key,
                response.model_dump_json(include=_CACHED_PAGE_FIELDS),
                self.listing_ttl,
            )
            log.info(
                "query.executed",
                kind=QueryKind.EVENTS.value,
                rows=len(page.events),
                has_more=page.has_more,
                duration_ms=_elapsed_ms(started),
            )

        if request.include_total:
            response.total_count = await self.total_count(request, enforce_timeout)
        response.query_duration_ms = _elapsed_ms(started)
        return response

    async def total_count(
        self, request: EventQueryRequest, enforce_timeout: bool = True
    ) -> int:
        """Matching-row count, cached separately from the pages it describes."""
        key = self.count_key(request)
        raw, found = await self.cache.get(key)
        if found:
            try:
                return int(raw)
            except (TypeError, ValueError):
                log.warning("query.cache_entry_invalid", key=key)

        total = await count_matching(
            self.store,
            request,
            default_range=self.default_range,
            timeout=self._timeout(enforce_timeout),
        )
        await self.cache.set(key, str(total), self.listing_ttl)
        return total

    async def aggregate_by_type(
        self, time_range: TimeRange, enforce_timeout: bool = True
    ) -> TypeAggregation:
        """Event counts per type, highest first."""
        started = time.perf_counter()
        key = self.aggregate_key(AGGREGATE_TYPE_NAMESPACE, time_range)

        aggregation = await self._cached(key, TypeAggregation)
        if aggregation is not None:
            aggregation.served_from_cache = True
            log.debug("query.cache_hit", kind=QueryKind.AGGREGATE_TYPE.value, key=key)
        else:
            start, end = time_range.resolve(default_range=self.default_range)
            rows = await self.store.aggregate_by_type(
                start, end, timeout=self._timeout(enforce_timeout)
            )
            aggregation = TypeAggregation(
                buckets=[TypeCount(type=event_type, count=count) for event_type, count in rows]
            )
            await self.cache.set(
                key,
                aggregation.model_dump_json(include=_CACHED_AGGREGATE_FIELDS),
                self.aggregate_ttl,
            )
            log.info(
                "query.executed",
                kind=QueryKind.AGGREGATE_TYPE.value,
                buckets=len(rows),
                duration_ms=_elapsed_ms(started),
            )

        aggregation.query_duration_ms = _elapsed_ms(started)
        return aggregation

    async def aggregate_by_hour(
        self, time_range: TimeRange, enforce_timeout: bool = True
    ) -> HourlyAggregation:
        """Event counts per hour, oldest first."""
        started = time.perf_counter()
        key = self.aggregate_key(AGGREGATE_HOUR_NAMESPACE, time_range)

        aggregation = await self._cached(key, HourlyAggregation)
        if aggregation is not None:
            aggregation.served_from_cache = True
            log.debug("query.cache_hit", kind=QueryKind.AGGREGATE_HOUR.value, key=key)
        else:
            start, end = time_range.resolve(default_range=self.default_range)
            rows = await self.store.aggregate_by_hour(
                start, end, timeout=self._timeout(enforce_timeout)
            )
            aggregation = HourlyAggregation(
                buckets=[HourlyCount(hour=hour, count=count) for hour, count in rows]
            )
            await self.cache.set(
                key,
                aggregation.model_dump_json(include=_CACHED_AGGREGATE_FIELDS),
                self.aggregate_ttl,
            )
            log.info(
                "query.executed",
                kind=QueryKind.AGGREGATE_HOUR.value,
                buckets=len(rows),
                duration_ms=_elapsed_ms(started),
            )

        aggregation.query_duration_ms = _elapsed_ms(started)
        return aggregation

    async def invalidate(self, kind: QueryKind, request: EventQueryRequest) -> None:
        """Drop the cached result for one query shape and parameter set."""
        if kind is QueryKind.EVENTS:
            await self.cache.invalidate(self.events_key(request))
            await self.cache.invalidate(self.count_key(request))
        elif kind is QueryKind.AGGREGATE_TYPE:
            await self.cache.invalidate(self.aggregate_key(AGGREGATE_TYPE_NAMESPACE, request))
        elif kind is QueryKind.AGGREGATE_HOUR:
            await self.cache.invalidate(self.aggregate_key(AGGREGATE_HOUR_NAMESPACE, request))
        else:
            raise ValueError(f"Unsupported query kind: {kind}")
