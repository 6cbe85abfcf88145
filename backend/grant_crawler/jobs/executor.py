"""
Pipeline Executor - runs one admitted job end to end.

Moves the job to running, hands it to the strategy for its type, and
records the terminal transition. Cancellation is cooperative: cancel_job
flags the job here and strategies check the flag between units, so the
unit in flight always finishes first.
"""

import asyncio
import time

import structlog

from grant_crawler.core.exceptions import GrantCrawlerException
from grant_crawler.core.models import CrawlConfig, JobType
from grant_crawler.jobs.analysis import AnalysisStage
from grant_crawler.jobs.ingestion import ContentIngestion
from grant_crawler.jobs.state_machine import JobStateMachine
from grant_crawler.jobs.strategies import JobContext, get_strategy
from grant_crawler.services.content_store import ContentStore
from grant_crawler.services.event_bus import EventBus
from grant_crawler.services.firecrawl_client import FetchProvider
from grant_crawler.services.record_store import RecordStore

logger = structlog.get_logger()


class PipelineExecutor:
    def __init__(
        self,
        state_machine: JobStateMachine,
        fetcher: FetchProvider,
        content_store: ContentStore,
        record_store: RecordStore,
        analysis: AnalysisStage,
        event_bus: EventBus,
    ):
        self.state_machine = state_machine
        self.fetcher = fetcher
        self.content_store = content_store
        self.record_store = record_store
        self.analysis = analysis
        self.event_bus = event_bus
        self.ingestion = ContentIngestion(content_store, analysis)
        self._cancel_requested: set[str] = set()

    def request_cancel(self, job_id: str) -> None:
        self._cancel_requested.add(job_id)

    def is_cancel_requested(self, job_id: str) -> bool:
        return job_id in self._cancel_requested

    async def run(self, job_id: str) -> None:
        """Execute job_id if it can still be started."""
        job = await self.state_machine.start(job_id)
        if job is None:
            self._cancel_requested.discard(job_id)
            logger.info("Job could not be started, skipping", job_id=job_id)
            return

        job_type = JobType(job.job_type)
        ctx = JobContext(
            job_id=job.id,
            source_url=job.source_url,
            job_type=job_type,
            config=CrawlConfig.model_validate(job.configuration or {}),
            fetcher=self.fetcher,
            ingestion=self.ingestion,
            analysis=self.analysis,
            content_store=self.content_store,
            record_store=self.record_store,
            state_machine=self.state_machine,
            event_bus=self.event_bus,
            cancel_check=lambda: self.is_cancel_requested(job_id),
        )
        ctx.log.info("Pipeline started", source_url=job.source_url)
        started = time.monotonic()

        try:
            result = await get_strategy(job_type).execute(ctx)
        except asyncio.CancelledError:
            # Left running; the next startup fails it as interrupted
            ctx.log.warning("Pipeline task cancelled")
            raise
        except Exception as e:
            ctx.stats.processing_time_ms = int((time.monotonic() - started) * 1000)
            message = e.message if isinstance(e, GrantCrawlerException) else f"{type(e).__name__}: {e}"
            ctx.log.error("Pipeline failed", error=message, stats=ctx.stats.model_dump())
            await self.state_machine.fail(job_id, message, stats=ctx.stats)
            return
        finally:
            self._cancel_requested.discard(job_id)

        ctx.stats.processing_time_ms = int((time.monotonic() - started) * 1000)
        completed = await self.state_machine.complete(job_id, ctx.stats, result)
        if completed is None:
            ctx.log.info("Pipeline finished after job left running", stats=ctx.stats.model_dump())
        else:
            ctx.log.info("Pipeline completed", stats=ctx.stats.model_dump())
