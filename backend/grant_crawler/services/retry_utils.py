"""
Retry Utilities for Grant Crawler.

Provides exponential backoff retry logic for calls to the fetch provider
and other transient operations.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import FetchError

logger = structlog.get_logger()

T = TypeVar("T")

# Exceptions that should trigger a retry
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.ProtocolError,
    FetchError,
)


def backoff_delay(attempt: int, backoff_base: float, backoff_max: float) -> float:
    """Delay before the next attempt: base * 2^(attempt-1), capped."""
    return min(backoff_base * (2 ** (attempt - 1)), backoff_max)


async def with_retries(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int | None = None,
    backoff_base: float | None = None,
    backoff_max: float | None = None,
    jitter: float = 0.0,
    retry_on: tuple = RETRYABLE_EXCEPTIONS,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with exponential backoff retries.

    Args:
        func: Async function to call
        *args: Positional arguments for func
        max_attempts: Maximum number of attempts (default: settings.fetch_max_attempts)
        backoff_base: Base delay in seconds (default: settings.fetch_backoff_base)
        backoff_max: Maximum delay in seconds (default: settings.fetch_backoff_max)
        jitter: Random jitter factor (0.1 = ±10%)
        retry_on: Tuple of exception types to retry on
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        FetchError once every attempt has failed
    """
    max_attempts = max_attempts or settings.fetch_max_attempts
    backoff_base = settings.fetch_backoff_base if backoff_base is None else backoff_base
    backoff_max = settings.fetch_backoff_max if backoff_max is None else backoff_max

    name = getattr(func, "__name__", repr(func))
    log = logger.bind(func=name, max_attempts=max_attempts)

    last_error: str | None = None

    for attempt in range(1, max_attempts + 1):
        delay = backoff_delay(attempt, backoff_base, backoff_max)
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            last_error = str(e)

            if attempt < max_attempts:
                delay *= 1 + random.uniform(-jitter, jitter)
                log.warning(
                    "Retry after exception",
                    error=last_error,
                    attempt=attempt,
                    delay=round(delay, 2),
                )
                await asyncio.sleep(delay)

    log.error("All retry attempts failed", error=last_error, attempts=max_attempts)
    raise FetchError(
        f"Failed after {max_attempts} attempts. Last error: {last_error}",
        details={"attempts": max_attempts, "last_error": last_error},
    )
