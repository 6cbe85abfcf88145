"""
Exception hierarchy for Grant Crawler.

Every application error carries a user-facing message plus an optional
details dict; the API layer maps each class to an HTTP status.
"""

from typing import Any


class GrantCrawlerException(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(GrantCrawlerException):
    """Malformed input, rejected before anything is persisted."""

    pass


class FetchError(GrantCrawlerException):
    """Crawl provider or network failure."""

    pass


class AnalysisError(GrantCrawlerException):
    """AI extraction failure for a single content unit."""

    pass


class PersistenceError(GrantCrawlerException):
    """Storage failure. Always fatal to the current operation."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.original_error = original_error
        super().__init__(message, details)


class ResourceNotFoundError(GrantCrawlerException):
    """Requested job or record does not exist."""

    pass
