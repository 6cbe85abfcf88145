"""
Content Ingestion - persist one fetched unit and run its enabled stages.

Order per unit: upsert row (processing) → count it → links → structured
data → AI analysis → mark processed. The row only leaves `processing`
once every enabled stage is done.
"""

from typing import Any

from grant_crawler.core.exceptions import FetchError
from grant_crawler.core.models import ContentType, ProcessingStatus
from grant_crawler.db.models import ScrapedContentModel
from grant_crawler.jobs.analysis import AnalysisStage
from grant_crawler.jobs.strategies.base import JobContext
from grant_crawler.services.content_store import ContentStore
from grant_crawler.services.extraction import extract_json_ld, extract_links, html_to_text
from grant_crawler.services.firecrawl_client import FetchedPage

HTTP_ERROR_THRESHOLD = 400


class ContentIngestion:
    def __init__(self, content_store: ContentStore, analysis: AnalysisStage):
        self.content_store = content_store
        self.analysis = analysis

    async def ingest(
        self,
        ctx: JobContext,
        page: FetchedPage,
        *,
        content_type: ContentType = ContentType.PAGE,
        url: str | None = None,
        run_ai: bool | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> ScrapedContentModel:
        """
        Persist page under ctx's job and run structured-data and AI stages.

        Raises FetchError without persisting anything when the provider
        reports the page itself as failed. AnalysisError from the AI stage
        propagates after the row has been marked ai_failed.
        """
        url = url or page.url
        if page.error or (page.status_code or 0) >= HTTP_ERROR_THRESHOLD:
            reason = page.error or f"HTTP {page.status_code}"
            raise FetchError(f"Fetch failed for {url}: {reason}", details={"url": url})

        links = page.links or (extract_links(page.html) if page.html else [])
        metadata = {**page.metadata, "links": links, **(extra_metadata or {})}
        text = page.markdown or (html_to_text(page.html) if page.html else None)

        row = await self.content_store.upsert(
            ctx.job_id,
            url,
            title=page.title,
            content=text,
            markdown=page.markdown,
            html=page.html,
            metadata=metadata,
            content_type=content_type,
        )

        if content_type == ContentType.DOCUMENT:
            ctx.stats.documents_processed += 1
        else:
            ctx.stats.pages_scraped += 1
        ctx.stats.links_discovered += len(links)

        if ctx.config.extract_structured_data and page.html:
            structured = extract_json_ld(page.html)
            if structured:
                await self.content_store.attach_structured_data(row.id, structured)

        if run_ai is None:
            run_ai = ctx.config.ai_extraction
        analyzed = False
        if run_ai and page.markdown:
            analyzed = await self.analysis.analyze(ctx, row.id, page.markdown)

        if not analyzed:
            await self.content_store.set_status(row.id, ProcessingStatus.PROCESSED)

        ctx.log.debug("Ingested unit", url=url, content_type=content_type.value, analyzed=analyzed)
        return row
