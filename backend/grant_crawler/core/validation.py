"""
Submission validation: crawl configuration, source URLs and job types.

All checks run before anything touches the database, so a rejected
submission never leaves a row behind.
"""

from typing import Any
from urllib.parse import urlparse

import pydantic
from pydantic.alias_generators import to_snake

from grant_crawler.core.exceptions import ValidationError
from grant_crawler.core.models import CrawlConfig, JobType


def validate_config(partial: dict[str, Any] | CrawlConfig | None = None) -> CrawlConfig:
    """
    Fill defaults into a partial configuration and enforce hard bounds.

    Accepts snake_case or camelCase keys.

    Raises:
        ValidationError: max_depth outside [1, 10], rate_limit_ms outside
            [0, 10000], or a field of the wrong type.
    """
    if isinstance(partial, CrawlConfig):
        partial = partial.model_dump()
    try:
        return CrawlConfig.model_validate(partial or {})
    except pydantic.ValidationError as e:
        errors = [
            {"field": ".".join(to_snake(str(p)) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid crawl configuration", details={"errors": errors}) from e


def validate_source_url(url: str | None, field_name: str = "source_url") -> str:
    """Require an absolute http(s) URL with a host."""
    if not url or not isinstance(url, str):
        raise ValidationError(f"{field_name} is required")

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValidationError(
            f"{field_name} must be an absolute http(s) URL",
            details={"field": field_name, "value": url[:200]},
        )
    return url.strip()


def validate_job_type(job_type: str | JobType) -> JobType:
    try:
        return JobType(job_type)
    except ValueError as e:
        raise ValidationError(
            f"Unknown job type: {job_type}",
            details={"allowed": [t.value for t in JobType]},
        ) from e
