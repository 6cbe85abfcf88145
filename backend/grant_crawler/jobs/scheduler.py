"""
Scheduler / Queue - admits pending jobs under a concurrency cap.

One loop task owns the queue. Every `poll_interval` seconds, or `wake_delay`
seconds after `wake()`, it admits at most one job: highest priority first,
ties by creation time and then submission order. The wake delay lets a
burst of submissions land in the heap before any of them is admitted.
Admitted jobs run as their own asyncio tasks; the loop never awaits a
pipeline.

The heap, the queued set and the active map are only touched from the
event loop and never across an await between check and update.
"""

import asyncio
import contextlib
import heapq
import itertools
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog

from grant_crawler.core.config import settings
from grant_crawler.core.models import JobStatus
from grant_crawler.jobs.state_machine import JobStateMachine
from grant_crawler.services.job_store import JobStore

logger = structlog.get_logger()

RESTART_ERROR_MESSAGE = "Interrupted by service restart"

JobRunner = Callable[[str], Awaitable[Any]]


class JobScheduler:
    def __init__(
        self,
        job_store: JobStore,
        state_machine: JobStateMachine,
        run_job: JobRunner,
        *,
        max_concurrent: int | None = None,
        poll_interval: float | None = None,
        wake_delay: float | None = None,
    ):
        self.job_store = job_store
        self.state_machine = state_machine
        self.run_job = run_job
        self.max_concurrent = max_concurrent or settings.max_concurrent_jobs
        self.poll_interval = settings.scheduler_poll_interval if poll_interval is None else poll_interval
        self.wake_delay = settings.scheduler_wake_delay if wake_delay is None else wake_delay

        self._heap: list[tuple[int, float, int, str]] = []
        self._queued: set[str] = set()
        self._active: dict[str, asyncio.Task | None] = {}
        self._seq = itertools.count()
        self._wake_event = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self.peak_active = 0

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, job_id: str, priority: int = 0, created_at: datetime | None = None) -> None:
        if job_id in self._queued or job_id in self._active:
            return
        created = created_at.timestamp() if created_at else 0.0
        heapq.heappush(self._heap, (-priority, created, next(self._seq), job_id))
        self._queued.add(job_id)

    def remove(self, job_id: str) -> bool:
        """Drop a job from the queue. Its heap entry is skipped when popped."""
        if job_id in self._queued:
            self._queued.discard(job_id)
            return True
        return False

    def _pop_next(self) -> str | None:
        while self._heap:
            *_, job_id = heapq.heappop(self._heap)
            if job_id in self._queued:
                self._queued.discard(job_id)
                return job_id
        return None

    @property
    def pending_count(self) -> int:
        return len(self._queued)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_queued(self, job_id: str) -> bool:
        return job_id in self._queued

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    def wake(self) -> None:
        self._wake_event.set()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def tick(self) -> str | None:
        """Admit at most one job. Returns the admitted job id."""
        if len(self._active) >= self.max_concurrent:
            return None

        job_id = self._pop_next()
        if job_id is None:
            return None
        # Reserve the slot before the first await
        self._active[job_id] = None

        try:
            job = await self.job_store.get(job_id)
        except Exception:
            self._active.pop(job_id, None)
            raise

        if job is None or job.status != JobStatus.PENDING.value:
            self._active.pop(job_id, None)
            logger.info(
                "Skipping job no longer pending",
                job_id=job_id,
                status=job.status if job else None,
            )
            return None

        self._active[job_id] = asyncio.create_task(self._execute(job_id), name=f"job-{job_id}")
        self.peak_active = max(self.peak_active, len(self._active))
        logger.info(
            "Job admitted",
            job_id=job_id,
            priority=job.priority,
            active=len(self._active),
            queued=len(self._queued),
        )
        return job_id

    async def _execute(self, job_id: str) -> None:
        log = logger.bind(job_id=job_id)
        try:
            await self.run_job(job_id)
        except asyncio.CancelledError:
            log.warning("Job task cancelled")
            raise
        except Exception as e:
            log.exception("Job pipeline crashed", error=str(e))
        finally:
            self._active.pop(job_id, None)
            self.wake()

    async def _run_loop(self) -> None:
        logger.info(
            "Scheduler started",
            max_concurrent=self.max_concurrent,
            poll_interval=self.poll_interval,
        )
        while True:
            try:
                admitted = await self.tick()
            except Exception as e:
                logger.exception("Scheduler tick failed", error=str(e))
                admitted = None

            # Keep admitting while slots and jobs remain, otherwise sleep
            if admitted and self._queued and len(self._active) < self.max_concurrent:
                continue

            self._wake_event.clear()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake_event.wait(), timeout=self.poll_interval)

            if self._wake_event.is_set() and self.wake_delay > 0:
                # Jobs submitted together are then admitted by priority
                await asyncio.sleep(self.wake_delay)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def recover(self) -> None:
        """Fail jobs orphaned by a previous process and requeue pending ones."""
        for job in await self.job_store.list_by_status(JobStatus.RUNNING):
            logger.warning("Failing job interrupted by restart", job_id=job.id)
            await self.state_machine.fail(job.id, RESTART_ERROR_MESSAGE)

        pending = await self.job_store.list_by_status(JobStatus.PENDING)
        for job in pending:
            self.enqueue(job.id, job.priority, job.created_at)
        if pending:
            logger.info("Requeued pending jobs", count=len(pending))

    async def start(self) -> None:
        if self._loop_task is not None:
            return
        await self.recover()
        self._loop_task = asyncio.create_task(self._run_loop(), name="job-scheduler")

    async def join(self) -> None:
        """Wait for every job currently executing."""
        while True:
            tasks = [task for task in self._active.values() if task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self, cancel_running: bool = False) -> None:
        """Stop admitting. Waits for running pipelines unless cancel_running."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        tasks = [task for task in self._active.values() if task is not None]
        if cancel_running:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped", in_flight=len(tasks), cancelled=cancel_running)
