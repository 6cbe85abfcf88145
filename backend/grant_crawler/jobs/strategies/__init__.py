"""
Pipeline strategies, one per job type.
"""

from grant_crawler.core.models import JobType
from grant_crawler.jobs.strategies.ai_extract import AIExtractStrategy
from grant_crawler.jobs.strategies.base import BaseStrategy, JobContext, UnitReport, process_units
from grant_crawler.jobs.strategies.document_harvest import DocumentHarvestStrategy
from grant_crawler.jobs.strategies.full_crawl import FullCrawlStrategy
from grant_crawler.jobs.strategies.link_discovery import LinkDiscoveryStrategy
from grant_crawler.jobs.strategies.monitor import MonitorStrategy
from grant_crawler.jobs.strategies.targeted_scrape import TargetedScrapeStrategy

STRATEGIES: dict[JobType, type[BaseStrategy]] = {
    JobType.FULL_CRAWL: FullCrawlStrategy,
    JobType.TARGETED_SCRAPE: TargetedScrapeStrategy,
    JobType.AI_EXTRACT: AIExtractStrategy,
    JobType.DOCUMENT_HARVEST: DocumentHarvestStrategy,
    JobType.LINK_DISCOVERY: LinkDiscoveryStrategy,
    JobType.MONITOR: MonitorStrategy,
}


def get_strategy(job_type: JobType | str) -> BaseStrategy:
    return STRATEGIES[JobType(job_type)]()


__all__ = [
    "STRATEGIES",
    "BaseStrategy",
    "JobContext",
    "UnitReport",
    "get_strategy",
    "process_units",
]
