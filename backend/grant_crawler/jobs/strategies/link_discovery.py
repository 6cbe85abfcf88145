"""
link_discovery: crawl, store pages without AI analysis and triage every
link found on them.
"""

from typing import Any
from urllib.parse import urljoin

from grant_crawler.core.models import JobType, LinkType
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext, process_units
from grant_crawler.services.extraction import extract_links
from grant_crawler.services.url_utils import classify_link, link_priority, normalize_url

TOP_LINKS_IN_RESULT = 20


def triage_links(links: list[str], base_url: str) -> list[dict[str, Any]]:
    """Classify and score links, highest priority first."""
    triaged = []
    for link in links:
        link_type = classify_link(link, base_url)
        target = link if link_type in (LinkType.EMAIL, LinkType.PHONE) else urljoin(base_url, link)
        triaged.append({
            "url": target,
            "link_type": link_type.value,
            "priority_score": link_priority(target, link_type),
        })
    triaged.sort(key=lambda item: item["priority_score"], reverse=True)
    return triaged


class LinkDiscoveryStrategy(BaseStrategy):
    job_type = JobType.LINK_DISCOVERY

    async def execute(self, ctx: JobContext) -> dict[str, Any]:
        pages = await ctx.crawl(ctx.crawl_options())
        discovered: dict[str, dict[str, Any]] = {}

        async def discover(index: int, url: str) -> None:
            page = pages[index]
            links = page.links or (extract_links(page.html) if page.html else [])
            triaged = triage_links(links, page.url or ctx.source_url)
            await ctx.ingestion.ingest(
                ctx,
                page,
                run_ai=False,
                extra_metadata={"classified_links": triaged},
            )
            for item in triaged:
                key = item["url"]
                if key.startswith(("http://", "https://")):
                    key = normalize_url(key)
                discovered.setdefault(key, item)

        report = await process_units(ctx, [page.url for page in pages], discover)

        ranked = sorted(discovered.values(), key=lambda item: item["priority_score"], reverse=True)
        by_type: dict[str, int] = {}
        for item in ranked:
            by_type[item["link_type"]] = by_type.get(item["link_type"], 0) + 1

        return {
            "pages_processed": len(report.processed),
            "total_pages": report.total,
            "failed_pages": report.failed,
            "unique_links": len(ranked),
            "links_by_type": by_type,
            "top_links": ranked[:TOP_LINKS_IN_RESULT],
            "success_rate": report.success_rate,
            "cancelled": report.cancelled,
        }
