"""
Shared fixtures: a temporary-file SQLite database, seeded events and the
query/job services wired against it with an in-memory cache.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone

# Must be set before analytics.core.config is first imported.
os.environ.setdefault("ANALYTICS_CACHE_BACKEND", "memory")
os.environ.setdefault("ANALYTICS_SCHEDULER_ENABLED", "false")
os.environ.setdefault("ANALYTICS_LOG_FORMAT", "text")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from analytics.core.breaker import CircuitBreaker
from analytics.core.cache import CacheBackend, MemoryCacheBackend, QueryCache
from analytics.core.config import Settings
from analytics.core.database import init_db
from analytics.core.exceptions import CacheBackendError
from analytics.models.event import Event
from analytics.services.container import build_services
from analytics.services.events import EventStore
from analytics.services.jobs import AsyncJobService, JobStore
from analytics.services.queries import QueryService

BASE_TIME = datetime(2026, 1, 5, 0, 0, tzinfo=timezone.utc)
OWNER_A = uuid.UUID("00000000-0000-0000-0000-00000000000a")
OWNER_B = uuid.UUID("00000000-0000-0000-0000-00000000000b")


def event_row(
    occurred_at: datetime,
    type: str = "page_view",
    owner_id: uuid.UUID = OWNER_A,
    source: str = "web",
) -> dict:
    return {
        "owner_id": owner_id,
        "type": type,
        "source": source,
        "payload": {"path": "/"},
        "occurred_at": occurred_at,
        "recorded_at": occurred_at,
    }


async def insert_events(session_factory, rows: list[dict]) -> list[int]:
    """Insert rows in order and return their ids, ascending."""
    async with session_factory() as session:
        await session.execute(Event.__table__.insert(), rows)
        await session.commit()
        result = await session.execute(Event.__table__.select().order_by(Event.id))
        return [row.id for row in result]


class FailingBackend(CacheBackend):
    """Backend that fails every call, counting attempts."""

    def __init__(self) -> None:
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise CacheBackendError("connection refused")

    async def set(self, key, value, ttl_seconds):
        self.calls += 1
        raise CacheBackendError("connection refused")

    async def delete(self, key):
        self.calls += 1
        raise CacheBackendError("connection refused")

    async def ping(self):
        raise CacheBackendError("connection refused")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seeded(session_factory):
    """Ten events over two hours: 5 page_view, 3 click, 2 signup."""
    rows = [
        event_row(BASE_TIME + timedelta(minutes=5), "page_view"),
        event_row(BASE_TIME + timedelta(minutes=10), "click"),
        event_row(BASE_TIME + timedelta(minutes=20), "page_view", owner_id=OWNER_B),
        event_row(BASE_TIME + timedelta(minutes=30), "signup"),
        event_row(BASE_TIME + timedelta(minutes=45), "page_view"),
        event_row(BASE_TIME + timedelta(minutes=65), "click", owner_id=OWNER_B),
        event_row(BASE_TIME + timedelta(minutes=70), "page_view"),
        event_row(BASE_TIME + timedelta(minutes=80), "signup", owner_id=OWNER_B),
        event_row(BASE_TIME + timedelta(minutes=95), "click"),
        event_row(BASE_TIME + timedelta(minutes=110), "page_view"),
    ]
    return await insert_events(session_factory, rows)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def store(session_factory):
    return EventStore(session_factory)


@pytest.fixture
def backend():
    return MemoryCacheBackend()


@pytest.fixture
def cache(backend):
    return QueryCache(backend, breaker=CircuitBreaker("cache", failure_threshold=3))


@pytest.fixture
def queries(store, cache):
    return QueryService(store, cache, listing_ttl=300, aggregate_ttl=3600, query_timeout=5.0)


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def jobs(job_store, queries):
    return AsyncJobService(job_store, queries)


@pytest.fixture
def settings():
    return Settings(
        cache_backend="memory",
        scheduler_enabled=False,
        job_poll_interval_seconds=0.05,
        log_format="text",
    )


@pytest.fixture
def services(settings, session_factory):
    return build_services(settings, session_factory, cache_backend=MemoryCacheBackend())
