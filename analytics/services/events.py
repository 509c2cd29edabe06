"""
Event store: read-only access to the events table.

Every operation runs in its own session and honours an optional timeout;
a timeout aborts the statement and surfaces as QueryTimeoutError, any
other database error as QueryExecutionError.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog
import sqlalchemy as sa
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from analytics.core.exceptions import QueryExecutionError, QueryTimeoutError
from analytics.models.base import as_utc
from analytics.models.event import Event

log = structlog.get_logger()

T = TypeVar("T")


def _filters(
    start: datetime,
    end: datetime,
    owner_id: Optional[uuid.UUID] = None,
    event_type: Optional[str] = None,
) -> list[Any]:
    clauses: list[Any] = [Event.occurred_at >= start, Event.occurred_at < end]
    if owner_id is not None:
        clauses.append(Event.owner_id == owner_id)
    if event_type is not None:
        clauses.append(Event.type == event_type)
    return clauses


def _hour_bucket(dialect: str):
    # Literal formats keep SELECT and GROUP BY textually identical.
    if dialect == "sqlite":
        return func.strftime(sa.literal_column("'%Y-%m-%d %H:00:00'"), Event.occurred_at)
    return func.date_trunc(sa.literal_column("'hour'"), Event.occurred_at)


def _parse_bucket(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)


class EventStore:
    """Range scans, counts and aggregates over ``events``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _run(
        self,
        operation: str,
        query: Callable[[AsyncSession], Awaitable[T]],
        timeout: Optional[float],
    ) -> T:
        async def _execute() -> T:
            async with self._session_factory() as session:
                return await query(session)

        try:
            if timeout is None:
                return await _execute()
            return await asyncio.wait_for(_execute(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            log.error("store.query_timeout", operation=operation, timeout=timeout)
            raise QueryTimeoutError(f"{operation} exceeded {timeout}s") from exc
        except (SQLAlchemyError, OSError) as exc:
            log.error("store.query_failed", operation=operation, error=str(exc))
            raise QueryExecutionError(f"{operation} failed: {exc}") from exc

    # --- Range scan ---

    async def fetch_after(
        self,
        start: datetime,
        end: datetime,
        limit: int,
        cursor: Optional[int] = None,
        owner_id: Optional[uuid.UUID] = None,
        event_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Sequence[Event]:
        """Up to ``limit`` events with ``id > cursor``, ascending by id."""
        stmt = select(Event).where(*_filters(start, end, owner_id, event_type))
        if cursor is not None:
            stmt = stmt.where(Event.id > cursor)
        stmt = stmt.order_by(Event.id.asc()).limit(limit)

        async def _query(session: AsyncSession) -> Sequence[Event]:
            result = await session.execute(stmt)
            return result.scalars().all()

        return await self._run("fetch_after", _query, timeout)

    async def count(
        self,
        start: datetime,
        end: datetime,
        owner_id: Optional[uuid.UUID] = None,
        event_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Total matching events. Cost grows with the number of matches."""
        stmt = (
            select(func.count())
            .select_from(Event)
            .where(*_filters(start, end, owner_id, event_type))
        )

        async def _query(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            return int(result.scalar_one())

        return await self._run("count", _query, timeout)

    # --- Aggregates ---

    async def aggregate_by_type(
        self,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None,
    ) -> list[tuple[str, int]]:
        """(type, count) pairs, highest count first; ties broken by type."""
        event_count = func.count(Event.id).label("event_count")
        stmt = (
            select(Event.type, event_count)
            .where(*_filters(start, end))
            .group_by(Event.type)
            .order_by(event_count.desc(), Event.type.asc())
        )

        async def _query(session: AsyncSession) -> list[tuple[str, int]]:
            result = await session.execute(stmt)
            return [(row[0], int(row[1])) for row in result.all()]

        return await self._run("aggregate_by_type", _query, timeout)

    async def aggregate_by_hour(
        self,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None,
    ) -> list[tuple[datetime, int]]:
        """(hour, count) pairs truncated to the hour, oldest first."""

        async def _query(session: AsyncSession) -> list[tuple[datetime, int]]:
            bucket = _hour_bucket(session.get_bind().dialect.name).label("hour")
            stmt = (
                select(bucket, func.count(Event.id))
                .where(*_filters(start, end))
                .group_by(bucket)
                .order_by(bucket.asc())
            )
            result = await session.execute(stmt)
            return [(_parse_bucket(row[0]), int(row[1])) for row in result.all()]

        return await self._run("aggregate_by_hour", _query, timeout)
