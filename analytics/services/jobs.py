"""
Async job service: durable, pollable units of work for heavy queries.

1. Client submits a query kind + request -> job persisted PENDING, id returned
2. Scheduler hands the oldest PENDING jobs to the worker pool
3. A worker claims the job (PENDING -> RUNNING, started_at) before running it
4. Result or error is persisted with completed_at (COMPLETED | FAILED)
5. Client polls the job by id

Every status change is a guarded UPDATE that only matches the expected
prior state, so two workers can never both claim one job and a terminal
job is never rewritten.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Optional, Sequence

import structlog
import sqlalchemy as sa
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from analytics.core.exceptions import JobNotFoundError, JobValidationError
from analytics.core.logging import job_context
from analytics.models.async_job import AsyncJob
from analytics.models.base import as_utc, utcnow
from analytics.schemas.common import JOB_TRANSITIONS, TERMINAL_JOB_STATUSES, JobStatus, QueryKind
from analytics.schemas.jobs import JobStatusRead
from analytics.schemas.queries import EventQueryRequest
from analytics.services.queries import QueryService

log = structlog.get_logger()

MAX_ERROR_LENGTH = 500
CANCELLED_ERROR = "CancelledError: job cancelled at shutdown"


def describe_error(exc: BaseException) -> str:
    """Non-empty, bounded error text for a failed job."""
    message = str(exc).strip()
    text = f"{type(exc).__name__}: {message}" if message else type(exc).__name__
    return text[:MAX_ERROR_LENGTH]


def execution_time_ms(job: AsyncJob) -> int:
    if JobStatus(job.status) not in TERMINAL_JOB_STATUSES:
        return 0
    started, completed = as_utc(job.started_at), as_utc(job.completed_at)
    if started is None or completed is None:
        return 0
    return int((completed - started).total_seconds() * 1000)


def to_status_read(job: AsyncJob) -> JobStatusRead:
    status = JobStatus(job.status)
    result: Optional[Any] = None
    if status is JobStatus.COMPLETED and job.result is not None:
        result = json.loads(job.result)
    return JobStatusRead(
        job_id=job.job_id,
        query_kind=QueryKind(job.query_kind),
        status=status,
        result=result,
        error=job.error if status is JobStatus.FAILED else None,
        created_at=as_utc(job.created_at),
        started_at=as_utc(job.started_at),
        completed_at=as_utc(job.completed_at),
        execution_time_ms=execution_time_ms(job),
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class JobStore:
    """Durable create/read/transition for ``async_jobs``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, query_kind: QueryKind, query_params: str) -> AsyncJob:
        job = AsyncJob(
            query_kind=query_kind.value,
            query_params=query_params,
            status=JobStatus.PENDING.value,
        )
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)
        return job

    async def get(self, job_id: uuid.UUID) -> Optional[AsyncJob]:
        async with self._session_factory() as session:
            return await session.get(AsyncJob, job_id)

    async def oldest(self, status: JobStatus, limit: int) -> Sequence[AsyncJob]:
        """Top-``limit`` jobs in ``status``, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AsyncJob)
                .where(AsyncJob.status == status.value)
                .order_by(AsyncJob.created_at.asc())
                .limit(limit)
            )
            return result.scalars().all()

    async def transition(
        self,
        job_id: uuid.UUID,
        from_status: JobStatus,
        to_status: JobStatus,
        **values: Any,
    ) -> bool:
        """Move ``job_id`` from ``from_status`` to ``to_status``.

        Returns False (and changes nothing) if the job is not currently in
        ``from_status``.
        """
        if to_status not in JOB_TRANSITIONS[from_status]:
            raise ValueError(f"Illegal job transition {from_status.value} -> {to_status.value}")
        async with self._session_factory() as session:
            result = await session.execute(
                sa.update(AsyncJob)
                .where(AsyncJob.job_id == job_id, AsyncJob.status == from_status.value)
                .values(status=to_status.value, **values)
            )
            await session.commit()
            return result.rowcount == 1

    async def claim(self, job_id: uuid.UUID) -> bool:
        return await self.transition(
            job_id, JobStatus.PENDING, JobStatus.RUNNING, started_at=utcnow()
        )

    async def complete(self, job_id: uuid.UUID, result: str) -> bool:
        return await self.transition(
            job_id, JobStatus.RUNNING, JobStatus.COMPLETED, result=result, completed_at=utcnow()
        )

    async def fail(self, job_id: uuid.UUID, error: str) -> bool:
        return await self.transition(
            job_id, JobStatus.RUNNING, JobStatus.FAILED, error=error, completed_at=utcnow()
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AsyncJobService:
    """Submit, poll and execute async query jobs."""

    def __init__(self, store: JobStore, queries: QueryService):
        self.store = store
        self.queries = queries

    async def submit(self, query_kind: QueryKind | str, request: EventQueryRequest | dict) -> uuid.UUID:
        """Validate and persist a PENDING job. Never waits on execution."""
        try:
            kind = QueryKind(query_kind)
        except ValueError as exc:
            raise JobValidationError(f"Unsupported query kind: {query_kind}") from exc
        try:
            if not isinstance(request, EventQueryRequest):
                request = EventQueryRequest.model_validate(request)
        except ValidationError as exc:
            raise JobValidationError(f"Invalid query request: {exc}") from exc

        job = await self.store.create(kind, request.model_dump_json())
        log.info("job.submitted", job_id=str(job.job_id), query_kind=kind.value)
        return job.job_id

    async def get_status(self, job_id: uuid.UUID) -> JobStatusRead:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return to_status_read(job)

    async def _run_query(self, kind: QueryKind, request: EventQueryRequest) -> BaseModel:
        # Async jobs are exempt from the synchronous query timeout.
        if kind is QueryKind.EVENTS:
            return await self.queries.query_events(request, enforce_timeout=False)
        if kind is QueryKind.AGGREGATE_TYPE:
            return await self.queries.aggregate_by_type(request.time_range(), enforce_timeout=False)
        if kind is QueryKind.AGGREGATE_HOUR:
            return await self.queries.aggregate_by_hour(request.time_range(), enforce_timeout=False)
        raise JobValidationError(f"Unsupported query kind: {kind}")

    async def execute(self, job_id: uuid.UUID) -> Optional[JobStatus]:
        """Claim and run one job. Returns its final status, or None if not claimed."""
        if not await self.store.claim(job_id):
            log.debug("job.claim_lost", job_id=str(job_id))
            return None

        with job_context(job_id):
            try:
                job = await self.store.get(job_id)
                log.info("job.started", query_kind=job.query_kind)
                request = EventQueryRequest.model_validate_json(job.query_params)
                result = await self._run_query(QueryKind(job.query_kind), request)
                payload = result.model_dump_json()
            except asyncio.CancelledError:
                # Cancelled mid-run (shutdown): fail the claimed job, then propagate.
                log.warning("job.cancelled")
                await asyncio.shield(self.store.fail(job_id, CANCELLED_ERROR))
                raise
            except Exception as exc:
                error = describe_error(exc)
                log.error("job.failed", error=error, exc_info=True)
                await self.store.fail(job_id, error)
                return JobStatus.FAILED

            await self.store.complete(job_id, payload)
            log.info("job.completed")
            return JobStatus.COMPLETED
