"""
Shared pieces for pipeline strategies.

A strategy receives a JobContext for one running job and returns the
result dict stored on the job when it completes. Raising fails the job.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import AnalysisError, FetchError, PersistenceError
from grant_crawler.core.models import CrawlConfig, JobStats, JobType
from grant_crawler.services.firecrawl_client import (
    DEFAULT_FORMATS,
    CrawlOptions,
    FetchedPage,
    FetchProvider,
)
from grant_crawler.services.retry_utils import with_retries

if TYPE_CHECKING:
    from grant_crawler.jobs.analysis import AnalysisStage
    from grant_crawler.jobs.ingestion import ContentIngestion
    from grant_crawler.jobs.state_machine import JobStateMachine
    from grant_crawler.services.content_store import ContentStore
    from grant_crawler.services.event_bus import EventBus
    from grant_crawler.services.record_store import RecordStore

# Share of progress spread across units; the rest is completion bookkeeping
UNIT_PROGRESS_SHARE = 90


@dataclass
class JobContext:
    """Everything a strategy needs while one job is running."""

    job_id: str
    source_url: str
    job_type: JobType
    config: CrawlConfig
    fetcher: FetchProvider
    ingestion: "ContentIngestion"
    analysis: "AnalysisStage"
    content_store: "ContentStore"
    record_store: "RecordStore"
    state_machine: "JobStateMachine"
    event_bus: "EventBus"
    cancel_check: Callable[[], bool] = lambda: False
    stats: JobStats = field(default_factory=JobStats)
    log: Any = None

    def __post_init__(self):
        if self.log is None:
            self.log = structlog.get_logger().bind(job_id=self.job_id, job_type=self.job_type.value)

    def is_cancelled(self) -> bool:
        return self.cancel_check()

    async def report_progress(self, progress: int) -> None:
        await self.state_machine.record_progress(self.job_id, progress, self.stats)

    async def pause_between_units(self) -> None:
        if self.config.rate_limit_ms > 0:
            await asyncio.sleep(self.config.rate_limit_ms / 1000)

    def formats(self) -> list[str]:
        formats = list(DEFAULT_FORMATS)
        if self.config.capture_screenshots:
            formats.append("screenshot")
        return formats

    def crawl_options(self, include_patterns: list[str] | None = None) -> CrawlOptions:
        return CrawlOptions(
            max_depth=min(self.config.max_depth, settings.crawl_max_depth_cap),
            limit=settings.crawl_page_limit,
            include_patterns=include_patterns or self.config.include_patterns,
            exclude_patterns=self.config.exclude_patterns,
            follow_external_links=self.config.follow_external_links,
            formats=self.formats(),
        )

    async def scrape(
        self,
        url: str,
        formats: list[str] | None = None,
        *,
        count_failure: bool = True,
    ) -> FetchedPage:
        """
        Scrape one URL with retry; FetchError once attempts are exhausted.

        Exhaustion counts as one job error unless count_failure is off,
        which per-unit callers use since process_units counts for them.
        """

        async def scrape_once() -> FetchedPage:
            result = await self.fetcher.scrape(url, formats=formats or self.formats())
            if not result.success or not result.pages:
                raise FetchError(f"Scrape failed: {result.error or 'no data returned'}")
            return result.pages[0]

        try:
            return await with_retries(scrape_once)
        except FetchError:
            if count_failure:
                self.stats.errors_encountered += 1
            raise

    async def crawl(self, options: CrawlOptions) -> list[FetchedPage]:
        """Crawl from the job's source URL with retry."""

        async def crawl_once() -> list[FetchedPage]:
            result = await self.fetcher.crawl(self.source_url, options)
            if not result.success:
                raise FetchError(f"Crawl failed: {result.error or 'Unknown error'}")
            return result.pages

        try:
            pages = await with_retries(crawl_once)
        except FetchError:
            self.stats.errors_encountered += 1
            raise
        self.log.info("Crawl returned pages", page_count=len(pages))
        return pages


@dataclass
class UnitReport:
    """Outcome of processing a list of pages or documents."""

    total: int = 0
    processed: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return round(len(self.processed) / self.total * 100, 2)


async def process_units(
    ctx: JobContext,
    urls: list[str],
    handle: Callable[[int, str], Awaitable[Any]],
    *,
    unit_name: str = "page",
) -> UnitReport:
    """
    Run handle(index, url) over every unit in order.

    A unit failure is recorded and the loop moves on. Storage failures are
    not unit failures and abort the job. If every unit fails the whole job
    fails with FetchError.
    """
    report = UnitReport(total=len(urls))

    for index, url in enumerate(urls):
        if ctx.is_cancelled():
            ctx.log.info("Cancellation observed, stopping", processed=len(report.processed))
            report.cancelled = True
            break

        try:
            await handle(index, url)
            report.processed.append(url)
        except PersistenceError:
            raise
        except AnalysisError as e:
            # The analysis stage has already counted this error
            report.failed.append({"url": url, "error": e.message})
        except Exception as e:
            ctx.stats.errors_encountered += 1
            message = e.message if isinstance(e, FetchError) else str(e)
            report.failed.append({"url": url, "error": message})
            ctx.log.warning(f"Failed to process {unit_name}", url=url, error=message)

        await ctx.report_progress((index + 1) * UNIT_PROGRESS_SHARE // len(urls))

        if index < len(urls) - 1:
            await ctx.pause_between_units()

    if urls and not report.processed and not report.cancelled:
        raise FetchError(
            f"All {len(urls)} {unit_name}s failed",
            details={"failed": report.failed},
        )
    return report


class BaseStrategy(ABC):
    """Base class for all job-type strategies."""

    job_type: JobType

    @abstractmethod
    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        """Drive the job; return its result summary."""
        pass
