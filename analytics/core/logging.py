"""Structured logging setup."""

from __future__ import annotations

import logging
import uuid

import structlog


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format.

    Stdlib loggers (uvicorn, sqlalchemy) are routed at the same level so a
    single setting governs the whole process.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    numeric_level = logging.getLevelNamesMapping()[level.upper()]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )
    logging.basicConfig(format="%(message)s", level=numeric_level)


def job_context(job_id: uuid.UUID, **extra):
    """Bind job identity to every log line emitted while the job runs."""
    return structlog.contextvars.bound_contextvars(job_id=str(job_id), **extra)
