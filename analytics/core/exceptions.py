"""
Error taxonomy for the query core.

- Cache backend errors never leave the cache coordinator.
- Store execution errors (including timeouts) surface as query failures.
- Validation errors are raised before any state is persisted.
- Not-found errors are reported distinctly from execution failures.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for all errors raised by the analytics core."""

    code = "ANALYTICS_ERROR"
    status = 500


class CacheBackendError(AnalyticsError):
    """The cache backend failed (connection, timeout, protocol)."""

    code = "CACHE_UNAVAILABLE"
    status = 503


class QueryExecutionError(AnalyticsError):
    """The backing store could not satisfy a query."""

    code = "QUERY_FAILED"
    status = 500


class QueryTimeoutError(QueryExecutionError):
    """The backing store did not answer within the configured timeout."""

    code = "QUERY_TIMEOUT"
    status = 504


class QueryValidationError(AnalyticsError):
    """A query request is malformed."""

    code = "INVALID_QUERY"
    status = 422


class JobValidationError(QueryValidationError):
    """A job submission names an unsupported query kind or bad parameters."""

    code = "INVALID_JOB"


class JobNotFoundError(AnalyticsError):
    """No job exists with the requested id."""

    code = "JOB_NOT_FOUND"
    status = 404
