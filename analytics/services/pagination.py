"""
Cursor pagination over the events table.

A page is fetched as a single index range scan: ``id > cursor`` ordered by
id, limited to ``page_size + 1`` rows. The extra row only signals that
another page exists and is never returned. Cost depends on the page size,
not on how far into the sequence the cursor points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from analytics.models.event import Event
from analytics.schemas.queries import DEFAULT_RANGE, EventQueryRequest, EventRead
from analytics.services.events import EventStore


@dataclass
class EventPage:
    events: list[EventRead] = field(default_factory=list)
    next_cursor: Optional[int] = None
    has_more: bool = False


def build_page(rows: Sequence[Event], page_size: int) -> EventPage:
    """Trim the look-ahead row and derive ``has_more``/``next_cursor``."""
    has_more = len(rows) > page_size
    kept = list(rows[:page_size])
    events = [EventRead.model_validate(row) for row in kept]
    next_cursor = events[-1].id if has_more and events else None
    return EventPage(events=events, next_cursor=next_cursor, has_more=has_more)


async def fetch_page(
    store: EventStore,
    request: EventQueryRequest,
    now: Optional[datetime] = None,
    default_range: timedelta = DEFAULT_RANGE,
    timeout: Optional[float] = None,
) -> EventPage:
    """Fetch one page of events matching ``request``, ascending by id.

    A cursor that no longer matches any row is just a lower bound.
    """
    start, end = request.resolve(now=now, default_range=default_range)
    rows = await store.fetch_after(
        start,
        end,
        limit=request.page_size + 1,
        cursor=request.cursor,
        owner_id=request.owner_id,
        event_type=request.type,
        timeout=timeout,
    )
    return build_page(rows, request.page_size)


async def count_matching(
    store: EventStore,
    request: EventQueryRequest,
    now: Optional[datetime] = None,
    default_range: timedelta = DEFAULT_RANGE,
    timeout: Optional[float] = None,
) -> int:
    """Total rows matching the filters, ignoring cursor and page size."""
    start, end = request.resolve(now=now, default_range=default_range)
    return await store.count(
        start,
        end,
        owner_id=request.owner_id,
        event_type=request.type,
        timeout=timeout,
    )
