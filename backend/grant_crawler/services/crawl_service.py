"""
Crawl Service - the public face of the job pipeline.

Wires stores, scheduler, state machine, executor, event bus and webhook
dispatcher together and exposes the job operations used by the API and
the headless worker.
"""

import asyncio
import contextlib
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import ResourceNotFoundError, ValidationError
from grant_crawler.core.models import (
    BatchJobItem,
    ContentType,
    CrawlJob,
    ExtractedRecord,
    JobStatistics,
    JobStats,
    JobStatus,
    JobType,
    ScrapedContent,
)
from grant_crawler.core.validation import validate_config, validate_job_type, validate_source_url
from grant_crawler.db.models import CrawlJobModel
from grant_crawler.jobs.analysis import AnalysisStage
from grant_crawler.jobs.executor import PipelineExecutor
from grant_crawler.jobs.scheduler import JobScheduler
from grant_crawler.jobs.state_machine import JobStateMachine
from grant_crawler.services.ai import AIExtractorInterface, get_ai_extractor
from grant_crawler.services.content_store import ContentStore
from grant_crawler.services.event_bus import TERMINAL_EVENTS, EventBus, EventCallback, EventType
from grant_crawler.services.firecrawl_client import FetchProvider, FirecrawlClient
from grant_crawler.services.job_store import JobStore
from grant_crawler.services.record_store import RecordStore
from grant_crawler.services.webhook import WebhookDispatcher

logger = structlog.get_logger()

ONE_OFF_EXTRACTION_PRIORITY = 10


class CrawlService:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        *,
        fetcher: FetchProvider | None = None,
        extractor: AIExtractorInterface | None = None,
        webhooks: WebhookDispatcher | None = None,
        event_bus: EventBus | None = None,
        max_concurrent: int | None = None,
        poll_interval: float | None = None,
        wake_delay: float | None = None,
        ai_retry_delay: float | None = None,
    ):
        self.job_store = JobStore(session_maker)
        self.content_store = ContentStore(session_maker)
        self.record_store = RecordStore(session_maker)
        self.event_bus = event_bus or EventBus()
        self.fetcher = fetcher or FirecrawlClient()
        self.state_machine = JobStateMachine(self.job_store, self.event_bus, webhooks)
        self.analysis = AnalysisStage(
            extractor if extractor is not None else get_ai_extractor(),
            self.content_store,
            self.record_store,
            retry_delay=ai_retry_delay,
        )
        self.executor = PipelineExecutor(
            self.state_machine,
            self.fetcher,
            self.content_store,
            self.record_store,
            self.analysis,
            self.event_bus,
        )
        self.scheduler = JobScheduler(
            self.job_store,
            self.state_machine,
            self.executor.run,
            max_concurrent=max_concurrent,
            poll_interval=poll_interval,
            wake_delay=wake_delay,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.scheduler.start()

    async def shutdown(self, cancel_running: bool = False) -> None:
        await self.scheduler.shutdown(cancel_running=cancel_running)
        if isinstance(self.fetcher, FirecrawlClient):
            await self.fetcher.aclose()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def create_job(
        self,
        source_url: str,
        job_type: JobType | str,
        config: dict[str, Any] | None = None,
        *,
        owner_id: str | None = None,
        organization_id: str | None = None,
        webhook_url: str | None = None,
        priority: int = 0,
    ) -> CrawlJob:
        """Validate, persist as pending and queue a job."""
        source_url = validate_source_url(source_url)
        job_type = validate_job_type(job_type)
        configuration = validate_config(config)
        if webhook_url:
            webhook_url = validate_source_url(webhook_url, "webhook_url")

        job = await self.job_store.create(
            source_url,
            job_type,
            configuration,
            priority=int(priority or 0),
            webhook_url=webhook_url,
            owner_id=owner_id,
            organization_id=organization_id,
        )
        self._enqueue(job)
        logger.info("Job created", job_id=job.id, job_type=job_type.value, source_url=source_url)
        return CrawlJob.model_validate(job)

    async def create_batch_jobs(
        self,
        items: Iterable[BatchJobItem | dict[str, Any]],
        *,
        owner_id: str | None = None,
        organization_id: str | None = None,
    ) -> list[CrawlJob]:
        """Create several jobs. Every item is validated before any is stored."""
        validated = []
        for index, item in enumerate(items):
            if isinstance(item, dict):
                item = BatchJobItem.model_validate(item)
            try:
                validated.append((
                    validate_source_url(item.source_url),
                    validate_job_type(item.job_type),
                    validate_config(item.configuration),
                    item.priority,
                ))
            except ValidationError as e:
                e.details["index"] = index
                raise

        jobs = []
        for source_url, job_type, configuration, priority in validated:
            job = await self.job_store.create(
                source_url,
                job_type,
                configuration,
                priority=priority,
                owner_id=owner_id,
                organization_id=organization_id,
            )
            self._enqueue(job, wake=False)
            jobs.append(CrawlJob.model_validate(job))

        self.scheduler.wake()
        logger.info("Batch jobs created", count=len(jobs))
        return jobs

    def _enqueue(self, job: CrawlJobModel, wake: bool = True) -> None:
        self.scheduler.enqueue(job.id, job.priority, job.created_at)
        if wake:
            self.scheduler.wake()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _require_job(self, job_id: str) -> CrawlJobModel:
        job = await self.job_store.get(job_id)
        if job is None:
            raise ResourceNotFoundError(f"Job {job_id} not found", details={"job_id": job_id})
        return job

    async def get_job(self, job_id: str) -> CrawlJob:
        return CrawlJob.model_validate(await self._require_job(job_id))

    async def list_jobs(
        self,
        *,
        owner_id: str | None = None,
        organization_id: str | None = None,
        status: JobStatus | None = None,
        job_type: JobType | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[CrawlJob], int]:
        jobs, total = await self.job_store.list_jobs(
            owner_id=owner_id,
            organization_id=organization_id,
            status=status,
            job_type=job_type,
            limit=limit,
            offset=offset,
        )
        return [CrawlJob.model_validate(job) for job in jobs], total

    async def get_job_content(
        self,
        job_id: str,
        *,
        content_type: ContentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ScrapedContent], int]:
        await self._require_job(job_id)
        rows, total = await self.content_store.list_for_job(
            job_id, content_type=content_type, limit=limit, offset=offset
        )
        return [ScrapedContent.model_validate(row) for row in rows], total

    async def get_extracted_records(
        self,
        *,
        job_id: str | None = None,
        min_confidence: float | None = None,
        deadline_after: date | None = None,
        deadline_before: date | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ExtractedRecord], int]:
        return await self.record_store.query(
            job_id=job_id,
            min_confidence=min_confidence,
            deadline_after=deadline_after,
            deadline_before=deadline_before,
            limit=limit,
            offset=offset,
        )

    async def get_statistics(
        self,
        *,
        owner_id: str | None = None,
        organization_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> JobStatistics:
        return await self.job_store.statistics(
            owner_id=owner_id,
            organization_id=organization_id,
            start_date=start_date,
            end_date=end_date,
        )

    # ------------------------------------------------------------------
    # Lifecycle control
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: str) -> CrawlJob:
        """
        Cancel a pending or running job.

        A pending job leaves the queue and never runs. A running job is
        flagged and stops at its next unit boundary.
        """
        job = await self._require_job(job_id)
        status = JobStatus(job.status)
        if status.is_terminal:
            raise ValidationError(
                f"Job {job_id} is already {status.value}",
                details={"job_id": job_id, "status": status.value},
            )

        self.scheduler.remove(job_id)
        if status == JobStatus.RUNNING or self.scheduler.is_active(job_id):
            self.executor.request_cancel(job_id)

        cancelled = await self.state_machine.cancel(job_id)
        if cancelled is None:
            # Lost a race with the pipeline reaching a terminal state
            return await self.get_job(job_id)
        return CrawlJob.model_validate(cancelled)

    async def retry_job(self, job_id: str) -> CrawlJob:
        """Create a fresh job with the same source, type and configuration."""
        original = await self._require_job(job_id)
        if not JobStatus(original.status).is_terminal:
            raise ValidationError(
                f"Job {job_id} is still {original.status}",
                details={"job_id": job_id, "status": original.status},
            )

        return await self.create_job(
            original.source_url,
            original.job_type,
            dict(original.configuration or {}),
            owner_id=original.owner_id,
            organization_id=original.organization_id,
            webhook_url=original.webhook_url,
            priority=original.priority,
        )

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus | str,
        error_message: str | None = None,
    ) -> CrawlJob | None:
        """Apply a transition; None when it is not legal from the current status."""
        await self._require_job(job_id)
        job = await self.state_machine.transition(job_id, JobStatus(status), error_message=error_message)
        return CrawlJob.model_validate(job) if job else None

    async def update_job_progress(
        self,
        job_id: str,
        progress: int,
        stats: JobStats | dict[str, Any] | None = None,
    ) -> int | None:
        if isinstance(stats, dict):
            stats = JobStats.model_validate(stats)
        return await self.state_machine.record_progress(job_id, progress, stats)

    def subscribe_to_job_updates(self, job_id: str, callback: EventCallback):
        """Register callback for job_id events; returns unsubscribe()."""
        return self.event_bus.subscribe(job_id, callback)

    # ------------------------------------------------------------------
    # One-off extraction
    # ------------------------------------------------------------------

    async def extract(
        self,
        url: str,
        *,
        extraction_prompt: str | None = None,
        screenshot: bool = False,
        owner_id: str | None = None,
        organization_id: str | None = None,
        timeout: float | None = None,
    ) -> CrawlJob:
        """
        Submit a high-priority ai_extract job and wait for it to finish.

        Returns the job as it stands when it reaches a terminal state or
        when the wait times out, whichever comes first.
        """
        job = await self.create_job(
            url,
            JobType.AI_EXTRACT,
            {
                "extraction_prompt": extraction_prompt,
                "capture_screenshots": screenshot,
                "ai_extraction": True,
            },
            owner_id=owner_id,
            organization_id=organization_id,
            priority=ONE_OFF_EXTRACTION_PRIORITY,
        )

        finished = asyncio.Event()

        def on_event(event: dict[str, Any]) -> None:
            if EventType(event["type"]) in TERMINAL_EVENTS:
                finished.set()

        unsubscribe = self.subscribe_to_job_updates(job.id, on_event)
        try:
            # The job may have finished before we subscribed
            current = await self.get_job(job.id)
            if not current.status.is_terminal:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        finished.wait(),
                        timeout=settings.extract_wait_timeout if timeout is None else timeout,
                    )
        finally:
            unsubscribe()

        return await self.get_job(job.id)
