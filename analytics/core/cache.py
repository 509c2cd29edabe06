"""
Cache-aside coordinator for query results.

The cache is an accelerant, never a source of truth:
- a backend error on get is a miss
- a backend error on set/invalidate is logged and dropped
- after repeated failures the breaker opens and the backend is skipped
  entirely until the cool-down elapses

Values are opaque strings; callers own serialization and TTL policy.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from analytics.core.breaker import CircuitBreaker
from analytics.core.exceptions import CacheBackendError

log = structlog.get_logger()

KEY_SEPARATOR = ":"
NULL_MARKER = "<null>"


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class CacheBackend(ABC):
    """String-keyed store of opaque values with per-entry TTL.

    Implementations raise CacheBackendError on any failure rather than
    returning an empty result.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    async def ping(self) -> bool:
        return True


class RedisCacheBackend(CacheBackend):
    """Redis implementation. The client should carry short socket timeouts."""

    def __init__(self, client: Redis):
        self._client = client

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheBackendError(f"GET {key} failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheBackendError(f"SET {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheBackendError(f"DEL {key} failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheBackendError(f"PING failed: {exc}") from exc


class MemoryCacheBackend(CacheBackend):
    """In-process backend for single-node runs.

    Expired entries are dropped when read, and swept from the whole store
    on the first write after each ``sweep_interval``.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        self._entries[key] = (value, now + ttl_seconds)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self._sweep_interval

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def _format_component(value: Any) -> str:
    if value is None:
        return NULL_MARKER
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.isoformat()
    elif isinstance(value, bool):
        value = "true" if value else "false"
    # Percent-encoding keeps separators, "=" and the null marker out of values.
    return quote(str(value), safe="")


def derive_key(namespace: str, **params: Any) -> str:
    """Build a deterministic cache key from a namespace and ordered parameters.

    Each component is tagged with its parameter name; absent values are
    written as an explicit null marker rather than omitted, so
    ``owner_id=None, type="x"`` and ``owner_id="x", type=None`` never collide.

        >>> derive_key("query:events", owner_id=None, page_size=100)
        'query:events:owner_id=<null>:page_size=100'
    """
    parts = [namespace]
    for name, value in params.items():
        parts.append(f"{name}={_format_component(value)}")
    return KEY_SEPARATOR.join(parts)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class QueryCache:
    """Cache-aside get/set/invalidate in front of a CacheBackend, guarded by a breaker."""

    def __init__(
        self,
        backend: CacheBackend,
        breaker: CircuitBreaker | None = None,
        prefix: str = "",
    ) -> None:
        self.backend = backend
        self.breaker = breaker or CircuitBreaker("cache")
        self.prefix = prefix

    def derive_key(self, namespace: str, **params: Any) -> str:
        key = derive_key(namespace, **params)
        return f"{self.prefix}{KEY_SEPARATOR}{key}" if self.prefix else key

    async def _attempt(
        self, op: str, key: str, call: Callable[[], Awaitable[Any]]
    ) -> tuple[bool, Any]:
        """Run one backend call under the breaker. Returns ``(succeeded, result)``."""
        if not self.breaker.allow():
            log.debug("cache.skipped", op=op, key=key, breaker=self.breaker.state.value)
            return False, None
        try:
            result = await call()
        except CacheBackendError as exc:
            self.breaker.record_failure()
            log.warning(f"cache.{op}_failed", key=key, error=str(exc))
            return False, None
        except BaseException:
            # No verdict on the backend; a half-open breaker may trial again.
            self.breaker.release()
            raise
        self.breaker.record_success()
        return True, result

    async def get(self, key: str) -> tuple[str | None, bool]:
        """Return ``(value, found)``. Never raises for backend trouble."""
        ok, value = await self._attempt("get", key, lambda: self.backend.get(key))
        if not ok or value is None:
            log.debug("cache.miss", key=key)
            return None, False
        log.debug("cache.hit", key=key)
        return value, True

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key``. Failures are logged, never raised."""
        if ttl_seconds is None or ttl_seconds <= 0:
            raise ValueError("cache entries require a positive TTL")
        ok, _ = await self._attempt("set", key, lambda: self.backend.set(key, value, ttl_seconds))
        if ok:
            log.debug("cache.stored", key=key, ttl=ttl_seconds)

    async def invalidate(self, key: str) -> None:
        """Drop ``key``. Failures are logged, never raised."""
        ok, _ = await self._attempt("invalidate", key, lambda: self.backend.delete(key))
        if ok:
            log.debug("cache.invalidated", key=key)
