"""
Tests for the async job engine.

Tests cover:
- Submission validation and PENDING persistence
- Atomic claim and forward-only status transitions
- Execution to COMPLETED/FAILED with result or bounded error text
- Scheduler dispatch without duplicates, and the full polling loop
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from analytics.core.exceptions import JobNotFoundError, JobValidationError, QueryExecutionError
from analytics.schemas.common import JobStatus, QueryKind
from analytics.schemas.queries import EventQueryRequest, EventQueryResponse, TimeRange
from analytics.services.jobs import CANCELLED_ERROR, MAX_ERROR_LENGTH, AsyncJobService, describe_error
from analytics.tasks.job_runner import JobScheduler, WorkerPool, build_runner

from .conftest import BASE_TIME

WINDOW = dict(start_time=BASE_TIME, end_time=BASE_TIME + timedelta(days=1))


# ---------------------------------------------------------------------------
# Submission & polling
# ---------------------------------------------------------------------------


class TestSubmission:
    @pytest.mark.asyncio
    async def test_submit_persists_pending(self, jobs):
        job_id = await jobs.submit(QueryKind.AGGREGATE_TYPE, EventQueryRequest(**WINDOW))
        status = await jobs.get_status(job_id)
        assert status.job_id == job_id
        assert status.status is JobStatus.PENDING
        assert status.query_kind is QueryKind.AGGREGATE_TYPE
        assert status.result is None
        assert status.error is None
        assert status.started_at is None

    @pytest.mark.asyncio
    async def test_submit_accepts_plain_values(self, jobs):
        job_id = await jobs.submit("EVENTS", {"page_size": 10, "type": "click"})
        assert (await jobs.get_status(job_id)).query_kind is QueryKind.EVENTS

    @pytest.mark.asyncio
    async def test_submissions_get_distinct_ids(self, jobs):
        ids = {await jobs.submit(QueryKind.EVENTS, EventQueryRequest()) for _ in range(5)}
        assert len(ids) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind, request_params",
        [
            ("BOGUS", {}),
            ("EVENTS", {"page_size": "many"}),
            ("EVENTS", {"start_time": "2026-01-02T00:00:00Z", "end_time": "2026-01-01T00:00:00Z"}),
            ("AGGREGATE_HOUR", {"cursor": -1}),
        ],
    )
    async def test_invalid_submission_creates_nothing(self, jobs, job_store, kind, request_params):
        with pytest.raises(JobValidationError):
            await jobs.submit(kind, request_params)
        assert await job_store.oldest(JobStatus.PENDING, 10) == []

    @pytest.mark.asyncio
    async def test_unknown_job_is_not_found(self, jobs):
        with pytest.raises(JobNotFoundError):
            await jobs.get_status(uuid.uuid4())


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.asyncio
    async def test_claim_succeeds_once(self, jobs, job_store):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        assert await job_store.claim(job_id) is True
        assert await job_store.claim(job_id) is False
        job = await job_store.get(job_id)
        assert job.status == JobStatus.RUNNING.value
        assert job.started_at is not None
        assert (await jobs.get_status(job_id)).execution_time_ms == 0

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, jobs, job_store):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        results = await asyncio.gather(*(job_store.claim(job_id) for _ in range(4)))
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_terminal_jobs_are_never_rewritten(self, jobs, job_store):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        await job_store.claim(job_id)
        assert await job_store.complete(job_id, "{}") is True
        assert await job_store.fail(job_id, "late failure") is False
        assert (await job_store.get(job_id)).status == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_complete_requires_running(self, jobs, job_store):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        assert await job_store.complete(job_id, "{}") is False

    @pytest.mark.asyncio
    async def test_backward_transition_is_rejected(self, job_store):
        with pytest.raises(ValueError):
            await job_store.transition(uuid.uuid4(), JobStatus.COMPLETED, JobStatus.PENDING)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecution:
    @pytest.mark.asyncio
    async def test_completed_result_matches_direct_query(self, jobs, queries, seeded):
        job_id = await jobs.submit(QueryKind.AGGREGATE_TYPE, EventQueryRequest(**WINDOW))
        assert await jobs.execute(job_id) is JobStatus.COMPLETED

        status = await jobs.get_status(job_id)
        direct = await queries.aggregate_by_type(TimeRange(**WINDOW))
        assert status.status is JobStatus.COMPLETED
        assert status.error is None
        assert status.result["buckets"] == direct.model_dump(mode="json")["buckets"]
        assert status.started_at <= status.completed_at
        assert status.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_events_job_returns_a_page(self, jobs, seeded):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest(page_size=4, **WINDOW))
        await jobs.execute(job_id)
        result = (await jobs.get_status(job_id)).result
        assert len(result["events"]) == 4
        assert result["has_more"] is True
        assert result["next_cursor"] == result["events"][-1]["id"]

    @pytest.mark.asyncio
    async def test_hourly_job(self, jobs, seeded):
        job_id = await jobs.submit(QueryKind.AGGREGATE_HOUR, EventQueryRequest(**WINDOW))
        await jobs.execute(job_id)
        result = (await jobs.get_status(job_id)).result
        assert [bucket["count"] for bucket in result["buckets"]] == [5, 5]

    @pytest.mark.asyncio
    async def test_query_failure_marks_job_failed(self, job_store):
        queries = AsyncMock()
        queries.aggregate_by_hour.side_effect = QueryExecutionError("aggregate_by_hour failed: disk I/O error")
        jobs = AsyncJobService(job_store, queries)

        job_id = await jobs.submit(QueryKind.AGGREGATE_HOUR, EventQueryRequest())
        assert await jobs.execute(job_id) is JobStatus.FAILED

        status = await jobs.get_status(job_id)
        assert status.status is JobStatus.FAILED
        assert "disk I/O error" in status.error
        assert status.result is None
        assert status.completed_at is not None

    @pytest.mark.asyncio
    async def test_jobs_run_without_the_synchronous_timeout(self, job_store):
        queries = AsyncMock()
        queries.query_events.return_value = EventQueryResponse()
        jobs = AsyncJobService(job_store, queries)

        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        await jobs.execute(job_id)
        assert queries.query_events.await_args.kwargs["enforce_timeout"] is False

    @pytest.mark.asyncio
    async def test_failed_read_after_claim_marks_job_failed(self, jobs, job_store):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        with patch.object(job_store, "get", AsyncMock(side_effect=RuntimeError("connection reset"))):
            assert await jobs.execute(job_id) is JobStatus.FAILED

        status = await jobs.get_status(job_id)
        assert status.status is JobStatus.FAILED
        assert "connection reset" in status.error

    @pytest.mark.asyncio
    async def test_unclaimed_job_is_not_run(self, jobs, job_store):
        job_id = await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        await job_store.claim(job_id)
        assert await jobs.execute(job_id) is None

    def test_error_text_is_bounded_and_non_empty(self):
        assert describe_error(RuntimeError()) == "RuntimeError"
        assert len(describe_error(RuntimeError("x" * 2000))) == MAX_ERROR_LENGTH


# ---------------------------------------------------------------------------
# Scheduler & worker pool
# ---------------------------------------------------------------------------


class TestScheduler:
    @pytest.mark.asyncio
    async def test_tick_dispatches_oldest_pending(self, jobs, job_store):
        ids = [await jobs.submit(QueryKind.EVENTS, EventQueryRequest()) for _ in range(3)]
        pool = WorkerPool(AsyncMock(), size=1)
        scheduler = JobScheduler(job_store, pool, batch_size=2)

        assert await scheduler.tick() == 2
        assert pool.inflight == 2
        assert set(pool._inflight) == set(ids[:2])

    @pytest.mark.asyncio
    async def test_queued_jobs_are_not_dispatched_twice(self, jobs, job_store):
        for _ in range(3):
            await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        pool = WorkerPool(AsyncMock(), size=1)
        scheduler = JobScheduler(job_store, pool, batch_size=10)

        assert await scheduler.tick() == 3
        assert await scheduler.tick() == 0
        assert pool.inflight == 3

    @pytest.mark.asyncio
    async def test_full_queue_defers_jobs(self, jobs, job_store):
        for _ in range(3):
            await jobs.submit(QueryKind.EVENTS, EventQueryRequest())
        pool = WorkerPool(AsyncMock(), size=1, queue_size=2)
        scheduler = JobScheduler(job_store, pool, batch_size=10)
        assert await scheduler.tick() == 2

    @pytest.mark.asyncio
    async def test_pool_runs_each_offered_job(self):
        handler = AsyncMock()
        pool = WorkerPool(handler, size=2)
        pool.start()
        job_ids = [uuid.uuid4() for _ in range(5)]
        for job_id in job_ids:
            assert pool.offer(job_id)
        await pool.join()
        await pool.stop()
        assert sorted(call.args[0] for call in handler.await_args_list) == sorted(job_ids)
        assert pool.inflight == 0

    @pytest.mark.asyncio
    async def test_handler_crash_does_not_kill_worker(self):
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])
        pool = WorkerPool(handler, size=1)
        pool.start()
        pool.offer(uuid.uuid4())
        pool.offer(uuid.uuid4())
        await pool.join()
        await pool.stop()
        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_submitted_jobs_complete_in_background(self, jobs, seeded):
        scheduler = build_runner(jobs, workers=2, interval=0.05)
        scheduler.start()
        try:
            ids = [
                await jobs.submit(QueryKind.AGGREGATE_TYPE, EventQueryRequest(**WINDOW)),
                await jobs.submit(QueryKind.EVENTS, EventQueryRequest(page_size=3, **WINDOW)),
            ]
            for _ in range(100):
                statuses = [(await jobs.get_status(job_id)).status for job_id in ids]
                if all(status is JobStatus.COMPLETED for status in statuses):
                    break
                await asyncio.sleep(0.05)
        finally:
            await scheduler.stop()

        assert statuses == [JobStatus.COMPLETED, JobStatus.COMPLETED]
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_fails_jobs_cancelled_mid_run(self, job_store):
        async def slow_aggregate(*args, **kwargs):
            await asyncio.sleep(10)

        queries = AsyncMock()
        queries.aggregate_by_type.side_effect = slow_aggregate
        jobs = AsyncJobService(job_store, queries)
        scheduler = build_runner(jobs, workers=1, interval=0.02)

        job_id = await jobs.submit(QueryKind.AGGREGATE_TYPE, EventQueryRequest(**WINDOW))
        scheduler.start()
        try:
            for _ in range(100):
                if (await jobs.get_status(job_id)).status is JobStatus.RUNNING:
                    break
                await asyncio.sleep(0.02)
        finally:
            await scheduler.stop()

        status = await jobs.get_status(job_id)
        assert status.status is JobStatus.FAILED
        assert status.error == CANCELLED_ERROR
        assert status.completed_at is not None
