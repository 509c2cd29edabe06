"""
Service container: builds the store, cache, query and job components from settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics.core.breaker import CircuitBreaker
from analytics.core.cache import CacheBackend, MemoryCacheBackend, QueryCache, RedisCacheBackend
from analytics.core.config import Settings
from analytics.core.redis import get_redis
from analytics.services.events import EventStore
from analytics.services.jobs import AsyncJobService, JobStore
from analytics.services.queries import QueryService
from analytics.tasks.job_runner import JobScheduler, build_runner


@dataclass
class AnalyticsServices:
    session_factory: async_sessionmaker[AsyncSession]
    cache: QueryCache
    queries: QueryService
    jobs: AsyncJobService
    scheduler: JobScheduler


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache_backend: Optional[CacheBackend] = None,
) -> AnalyticsServices:
    """Assemble the query core. ``cache_backend`` defaults per ``settings.cache_backend``."""
    if cache_backend is None:
        if settings.cache_backend == "memory":
            cache_backend = MemoryCacheBackend()
        else:
            cache_backend = RedisCacheBackend(get_redis(settings))

    cache = QueryCache(
        cache_backend,
        breaker=CircuitBreaker(
            "cache",
            failure_threshold=settings.breaker_failure_threshold,
            reset_timeout=settings.breaker_reset_timeout_seconds,
        ),
        prefix=settings.cache_key_prefix,
    )
    queries = QueryService(
        EventStore(session_factory),
        cache,
        listing_ttl=settings.cache_ttl_listing_seconds,
        aggregate_ttl=settings.cache_ttl_aggregate_seconds,
        query_timeout=settings.query_timeout_seconds,
        default_range=timedelta(days=settings.default_range_days),
    )
    jobs = AsyncJobService(JobStore(session_factory), queries)
    scheduler = build_runner(
        jobs,
        workers=settings.job_worker_count,
        queue_size=settings.job_queue_size,
        interval=settings.job_poll_interval_seconds,
        batch_size=settings.job_batch_size,
    )
    return AnalyticsServices(
        session_factory=session_factory,
        cache=cache,
        queries=queries,
        jobs=jobs,
        scheduler=scheduler,
    )
