"""
Database package initialization.
"""

from grant_crawler.db.database import (
    Base,
    async_session_maker,
    build_engine,
    check_database_health,
    close_db,
    engine,
    get_db_session,
    init_db,
)
from grant_crawler.db.models import (
    CrawlJobModel,
    ExtractedRecordModel,
    ScrapedContentModel,
)

__all__ = [
    # Database
    "Base",
    "engine",
    "build_engine",
    "async_session_maker",
    "get_db_session",
    "init_db",
    "close_db",
    "check_database_health",
    # Models
    "CrawlJobModel",
    "ScrapedContentModel",
    "ExtractedRecordModel",
]
