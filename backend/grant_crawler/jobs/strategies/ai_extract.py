"""
ai_extract: scrape one page's markdown and hand it straight to the AI
extractor, skipping structured-data extraction and the keyword pre-filter.

Each candidate gets its own ai_extraction content row (keyed by a
per-record URL fragment) plus a record, both at the direct-extraction
confidence.
"""

import json
from typing import Any

from grant_crawler.core.config import settings
from grant_crawler.core.models import ContentType, JobType, ProcessingStatus
from grant_crawler.jobs.analysis import normalize_candidate
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext
from grant_crawler.services.ai.prompts import DEFAULT_DIRECT_EXTRACTION_PROMPT


class AIExtractStrategy(BaseStrategy):
    job_type = JobType.AI_EXTRACT

    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        url = ctx.source_url
        page = await ctx.scrape(url, formats=["markdown"])
        await ctx.report_progress(30)

        markdown = page.markdown or ""
        if not markdown.strip():
            ctx.log.info("No content to extract from", url=url)
            return {"records_extracted": 0, "candidates": [], "url": url}

        prompt = ctx.config.extraction_prompt or DEFAULT_DIRECT_EXTRACTION_PROMPT
        try:
            analysis = await ctx.analysis.extract_candidates(markdown, prompt)
        except Exception:
            ctx.stats.errors_encountered += 1
            raise
        ctx.stats.ai_analyzed += 1
        await ctx.report_progress(70)

        confidence = settings.direct_extraction_confidence
        saved = 0
        for index, raw in enumerate(analysis.records):
            fields = normalize_candidate(
                raw,
                default_confidence=confidence,
                confidence_override=confidence,
            )
            if fields is None:
                ctx.log.warning("Skipping candidate with empty title", index=index)
                continue

            row = await ctx.content_store.upsert(
                ctx.job_id,
                f"{url}#record-{index}",
                title=fields["title"],
                content=json.dumps(raw, default=str),
                markdown=None,
                html=None,
                metadata={"source_url": url, "record_index": index},
                content_type=ContentType.AI_EXTRACTION,
                processing_status=ProcessingStatus.PROCESSED,
            )
            await ctx.content_store.save_analysis(row.id, {"candidate": raw}, confidence)
            await ctx.record_store.create(row.id, ai_metadata=analysis.metadata, **fields)
            saved += 1
            ctx.stats.records_found += 1

        ctx.log.info("Direct extraction finished", candidates=len(analysis.records), saved=saved)
        return {
            "records_extracted": saved,
            "candidates": analysis.records,
            "overall_confidence": analysis.overall_confidence,
            "url": url,
        }
