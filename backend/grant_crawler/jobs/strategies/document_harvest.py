"""
document_harvest: crawl for document links, then scrape and ingest each
document on its own so one bad file does not sink the rest.
"""

from typing import Any

from grant_crawler.core.models import ContentType, JobType
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext, process_units
from grant_crawler.services.url_utils import DOCUMENT_INCLUDE_PATTERNS, dedupe_urls, is_document_url


class DocumentHarvestStrategy(BaseStrategy):
    job_type = JobType.DOCUMENT_HARVEST

    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        pages = await ctx.crawl(ctx.crawl_options(include_patterns=DOCUMENT_INCLUDE_PATTERNS))
        document_urls = dedupe_urls([page.url for page in pages if is_document_url(page.url)])
        ctx.log.info("Documents found", count=len(document_urls), crawled=len(pages))

        async def harvest(index: int, url: str) -> None:
            document = await ctx.scrape(url, count_failure=False)
            await ctx.ingestion.ingest(ctx, document, content_type=ContentType.DOCUMENT, url=url)

        report = await process_units(ctx, document_urls, harvest, unit_name="document")

        return {
            "documents_processed": len(report.processed),
            "total_documents": report.total,
            "processed_documents": report.processed,
            "failed_documents": report.failed,
            "success_rate": report.success_rate,
            "cancelled": report.cancelled,
        }
