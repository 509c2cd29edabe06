"""
Background execution of async query jobs.

- WorkerPool: a fixed number of worker tasks draining a bounded queue of
  job ids. Its size caps how many heavy queries hit the store at once.
- JobScheduler: every interval, fetches the oldest PENDING jobs and offers
  them to the pool. Ids already queued or running are not offered again.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Awaitable, Callable, Optional

import structlog

from analytics.schemas.common import JobStatus
from analytics.services.jobs import AsyncJobService, JobStore

log = structlog.get_logger()

JobHandler = Callable[[uuid.UUID], Awaitable[object]]


class WorkerPool:
    """Bounded pool of asyncio workers executing one job id at a time each."""

    def __init__(self, handler: JobHandler, size: int = 4, queue_size: int = 20):
        if size < 1:
            raise ValueError("worker pool size must be >= 1")
        self.size = size
        self._handler = handler
        self._queue: asyncio.Queue[uuid.UUID] = asyncio.Queue(maxsize=queue_size)
        self._inflight: set[uuid.UUID] = set()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(n), name=f"job-worker-{n}")
            for n in range(self.size)
        ]
        log.info("workers.started", size=self.size)

    def offer(self, job_id: uuid.UUID) -> bool:
        """Queue ``job_id`` unless it is already queued/running or the queue is full."""
        if job_id in self._inflight:
            return False
        try:
            self._queue.put_nowait(job_id)
        except asyncio.QueueFull:
            return False
        self._inflight.add(job_id)
        return True

    async def _work(self, n: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._handler(job_id)
            except Exception:
                # The handler records job failures itself; this only guards the worker.
                log.exception("workers.handler_crashed", worker=n, job_id=str(job_id))
            finally:
                self._inflight.discard(job_id)
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        # Dropped ids are still PENDING in the store and get picked up again.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._inflight.clear()
        log.info("workers.stopped")


class JobScheduler:
    """Periodic dispatcher of PENDING jobs into a WorkerPool."""

    def __init__(
        self,
        store: JobStore,
        pool: WorkerPool,
        interval: float = 1.0,
        batch_size: int = 10,
    ):
        self.store = store
        self.pool = pool
        self.interval = interval
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Dispatch up to ``batch_size`` of the oldest PENDING jobs. Returns how many."""
        pending = await self.store.oldest(JobStatus.PENDING, self.batch_size)
        dispatched = 0
        for job in pending:
            if self.pool.offer(job.job_id):
                dispatched += 1
        if dispatched:
            log.debug("scheduler.dispatched", count=dispatched, pending=len(pending))
        return dispatched

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                log.exception("scheduler.tick_failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self.pool.start()
        self._task = asyncio.create_task(self._loop(), name="job-scheduler")
        log.info("scheduler.started", interval=self.interval, batch_size=self.batch_size)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.pool.stop()
        log.info("scheduler.stopped")


def build_runner(
    jobs: AsyncJobService,
    workers: int = 4,
    queue_size: int = 20,
    interval: float = 1.0,
    batch_size: int = 10,
) -> JobScheduler:
    pool = WorkerPool(jobs.execute, size=workers, queue_size=queue_size)
    return JobScheduler(jobs.store, pool, interval=interval, batch_size=batch_size)
