"""
Redis client for the query cache.

One client (and connection pool) per process. Socket timeouts are short so
a stalled cache surfaces as a miss instead of holding up the query.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from analytics.core.config import Settings, get_settings

_client: Optional[redis.Redis] = None


def get_redis(settings: Optional[Settings] = None) -> redis.Redis:
    """Return the process-wide cache client, creating it on first use."""
    global _client
    if _client is None:
        settings = settings or get_settings()
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.cache_socket_timeout_seconds,
            socket_connect_timeout=settings.cache_socket_timeout_seconds,
            retry_on_timeout=False,
        )
    return _client


async def close_redis() -> None:
    """Close the client and its pool. A later get_redis() starts a new one."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
