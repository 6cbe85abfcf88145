"""
full_crawl: crawl the source under the job's depth and pattern limits and
ingest every returned page in order.
"""

from typing import Any

from grant_crawler.core.models import ContentType, JobType
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext, process_units
from grant_crawler.services.url_utils import is_document_url


class FullCrawlStrategy(BaseStrategy):
    job_type = JobType.FULL_CRAWL

    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        pages = await ctx.crawl(ctx.crawl_options())

        async def ingest_page(index: int, url: str) -> None:
            page = pages[index]
            content_type = ContentType.PAGE
            if ctx.config.process_documents and is_document_url(page.url):
                content_type = ContentType.DOCUMENT
            await ctx.ingestion.ingest(ctx, page, content_type=content_type)

        report = await process_units(ctx, [page.url for page in pages], ingest_page)

        return {
            "pages_processed": len(report.processed),
            "total_pages": report.total,
            "processed_pages": report.processed,
            "failed_pages": report.failed,
            "success_rate": report.success_rate,
            "cancelled": report.cancelled,
        }
