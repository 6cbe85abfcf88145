"""
API Middleware package.

Contains middleware components for request processing:
- Wide Events: Canonical log line pattern for comprehensive request logging
"""

from grant_crawler.api.middleware.wide_events import (
    WideEventMiddleware,
    add_job_to_wide_event,
    add_owner_to_wide_event,
)

__all__ = [
    "WideEventMiddleware",
    "add_job_to_wide_event",
    "add_owner_to_wide_event",
]
