"""
Job State Machine.

    pending ──► running ──► completed | failed | cancelled
       │           │
       │           └──► paused (reserved, no caller yet)
       └──► cancelled

Every transition is one conditional row update, committed before any
event is emitted or webhook fired. A transition that is not legal from the
job's current status is logged and returns None.
"""

from datetime import UTC, datetime
from typing import Any

import structlog

from grant_crawler.core.models import CrawlJob, JobStats, JobStatus
from grant_crawler.db.models import CrawlJobModel
from grant_crawler.services.event_bus import EventBus, EventType
from grant_crawler.services.job_store import JobStore
from grant_crawler.services.webhook import WebhookDispatcher

logger = structlog.get_logger()


LEGAL_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
        JobStatus.PAUSED,
    }),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def legal_sources(target: JobStatus) -> list[JobStatus]:
    """Statuses from which target may be entered."""
    return [source for source, targets in LEGAL_TRANSITIONS.items() if target in targets]


def is_legal(source: JobStatus, target: JobStatus) -> bool:
    return target in LEGAL_TRANSITIONS[JobStatus(source)]


def job_snapshot(job: CrawlJobModel) -> dict[str, Any]:
    """JSON-ready view of a job for events and webhooks."""
    return CrawlJob.model_validate(job).model_dump(mode="json")


class JobStateMachine:
    def __init__(
        self,
        job_store: JobStore,
        event_bus: EventBus,
        webhooks: WebhookDispatcher | None = None,
    ):
        self.job_store = job_store
        self.event_bus = event_bus
        self.webhooks = webhooks or WebhookDispatcher()

    async def transition(
        self,
        job_id: str,
        to_status: JobStatus,
        *,
        error_message: str | None = None,
        stats: JobStats | None = None,
        result: dict[str, Any] | None = None,
    ) -> CrawlJobModel | None:
        """Persist a transition, then notify. Returns the updated job or None."""
        to_status = JobStatus(to_status)
        now = datetime.now(UTC)

        fields: dict[str, Any] = {"stats": stats}
        if to_status == JobStatus.RUNNING:
            fields["started_at"] = now
        if to_status.is_terminal:
            fields["completed_at"] = now
        if to_status == JobStatus.FAILED:
            fields["error_message"] = error_message or "Job failed"
        if to_status == JobStatus.COMPLETED:
            fields["progress"] = 100
            fields["result"] = result

        job = await self.job_store.transition(job_id, legal_sources(to_status), to_status, **fields)
        if job is None:
            current = await self.job_store.get(job_id)
            logger.warning(
                "Illegal job transition ignored",
                job_id=job_id,
                from_status=current.status if current else None,
                to_status=to_status.value,
            )
            return None

        logger.info("Job transitioned", job_id=job_id, status=to_status.value)
        await self._notify(job, to_status, result)
        return job

    async def _notify(self, job: CrawlJobModel, status: JobStatus, result: dict[str, Any] | None) -> None:
        if status == JobStatus.COMPLETED:
            snapshot = job_snapshot(job)
            if job.webhook_url:
                await self.webhooks.dispatch(job.webhook_url, {"job": snapshot, "result": result})
            self.event_bus.emit(job.id, EventType.COMPLETED, job=snapshot, result=result)
        elif status == JobStatus.FAILED:
            self.event_bus.emit(job.id, EventType.FAILED, error=job.error_message)
        elif status == JobStatus.CANCELLED:
            self.event_bus.emit(job.id, EventType.CANCELLED)

    async def start(self, job_id: str) -> CrawlJobModel | None:
        return await self.transition(job_id, JobStatus.RUNNING)

    async def complete(
        self,
        job_id: str,
        stats: JobStats,
        result: dict[str, Any] | None = None,
    ) -> CrawlJobModel | None:
        return await self.transition(job_id, JobStatus.COMPLETED, stats=stats, result=result)

    async def fail(
        self,
        job_id: str,
        error_message: str,
        stats: JobStats | None = None,
    ) -> CrawlJobModel | None:
        return await self.transition(job_id, JobStatus.FAILED, error_message=error_message, stats=stats)

    async def cancel(self, job_id: str) -> CrawlJobModel | None:
        return await self.transition(job_id, JobStatus.CANCELLED)

    async def record_progress(
        self,
        job_id: str,
        progress: int,
        stats: JobStats | None = None,
    ) -> int | None:
        """Persist progress for a running job, then emit it."""
        stored = await self.job_store.update_progress(job_id, progress, stats)
        if stored is None:
            logger.debug("Progress ignored for non-running job", job_id=job_id)
            return None
        self.event_bus.emit(job_id, EventType.PROGRESS, progress=stored)
        return stored
