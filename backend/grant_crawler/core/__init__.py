"""
Core package initialization.
"""

from grant_crawler.core.config import Settings, get_settings, settings
from grant_crawler.core.exceptions import (
    AnalysisError,
    FetchError,
    GrantCrawlerException,
    PersistenceError,
    ResourceNotFoundError,
    ValidationError,
)
from grant_crawler.core.models import (
    ContentType,
    CrawlConfig,
    CrawlJob,
    JobStats,
    JobStatus,
    JobType,
    ProcessingStatus,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "settings",
    # Errors
    "GrantCrawlerException",
    "ValidationError",
    "FetchError",
    "AnalysisError",
    "PersistenceError",
    "ResourceNotFoundError",
    # Enums
    "JobStatus",
    "JobType",
    "ContentType",
    "ProcessingStatus",
    # Models
    "CrawlConfig",
    "CrawlJob",
    "JobStats",
]
