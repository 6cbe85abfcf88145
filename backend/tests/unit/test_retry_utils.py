"""
Unit tests for fetch retry with exponential backoff.
"""

import httpx
import pytest

from grant_crawler.core.exceptions import FetchError
from grant_crawler.services.retry_utils import backoff_delay, with_retries


class TestBackoffDelay:
    def test_doubles_per_attempt(self):
        assert backoff_delay(1, 1.0, 10.0) == 1.0
        assert backoff_delay(2, 1.0, 10.0) == 2.0
        assert backoff_delay(3, 1.0, 10.0) == 4.0

    def test_is_capped(self):
        assert backoff_delay(6, 1.0, 10.0) == 10.0


class TestWithRetries:
    async def test_returns_first_success(self):
        calls = []

        async def fetch():
            calls.append(1)
            return "ok"

        assert await with_retries(fetch, max_attempts=3) == "ok"
        assert len(calls) == 1

    async def test_retries_transient_errors(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectTimeout("timed out")
            return "ok"

        assert await with_retries(flaky, max_attempts=3, backoff_base=0) == "ok"
        assert len(attempts) == 3

    async def test_raises_fetch_error_after_last_attempt(self):
        attempts = []

        async def always_fails():
            attempts.append(1)
            raise FetchError("Scrape failed: upstream timeout")

        with pytest.raises(FetchError) as exc_info:
            await with_retries(always_fails, max_attempts=3, backoff_base=0)

        assert len(attempts) == 3
        assert exc_info.value.message == (
            "Failed after 3 attempts. Last error: Scrape failed: upstream timeout"
        )
        assert exc_info.value.details["attempts"] == 3

    async def test_does_not_retry_other_errors(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await with_retries(broken, max_attempts=3, backoff_base=0)
        assert len(attempts) == 1
