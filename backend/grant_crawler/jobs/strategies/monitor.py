"""
monitor: re-fetch one URL and compare it with the latest fetch by any other
job. Only changed content is ingested and signalled.
"""

from typing import Any

from grant_crawler.core.models import JobType
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext
from grant_crawler.services.event_bus import EventType


def normalize_text(text: str | None) -> str:
    return " ".join((text or "").split())


class MonitorStrategy(BaseStrategy):
    job_type = JobType.MONITOR

    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        url = ctx.source_url
        previous = await ctx.content_store.latest_for_url(url, exclude_job_id=ctx.job_id)

        page = await ctx.scrape(url)
        await ctx.report_progress(50)

        if previous is None:
            has_changed = True
        else:
            has_changed = normalize_text(previous.markdown or previous.content) != normalize_text(page.markdown)

        if has_changed:
            await ctx.ingestion.ingest(ctx, page, url=url)
            ctx.event_bus.emit(ctx.job_id, EventType.CONTENT_CHANGED, url=url)
            ctx.log.info("Monitored content changed", url=url, first_fetch=previous is None)
        else:
            ctx.log.info("Monitored content unchanged", url=url)

        return {"has_changed": has_changed, "url": url}
