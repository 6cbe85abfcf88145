"""
targeted_scrape: fetch exactly one page and ingest it.
"""

from typing import Any

from grant_crawler.core.models import JobType
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext


class TargetedScrapeStrategy(BaseStrategy):
    job_type = JobType.TARGETED_SCRAPE

    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        page = await ctx.scrape(ctx.source_url)
        await ctx.ingestion.ingest(ctx, page, url=ctx.source_url)
        await ctx.report_progress(90)
        return {"pages_processed": 1, "url": ctx.source_url}
