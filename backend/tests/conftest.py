"""
Pytest configuration and fixtures for Grant Crawler tests.

Every test gets its own SQLite database file, a scripted fetch provider and
(optionally) a scripted AI extractor, so pipelines run end to end without
network access.
"""

import asyncio
import inspect
import os
from collections.abc import AsyncGenerator, Callable
from typing import Any

# Must be set before grant_crawler.core.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AI_API_URL"] = ""
os.environ["AI_MODEL"] = ""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from grant_crawler.core.config import settings
from grant_crawler.db.database import build_engine, init_db
from grant_crawler.services.ai import AIExtractorInterface, AnalysisResult
from grant_crawler.services.crawl_service import CrawlService
from grant_crawler.services.firecrawl_client import CrawlOptions, FetchedPage, FetchResult
from grant_crawler.services.webhook import WebhookDispatcher

# Pipelines sleep rate_limit_ms between units; tests never want that
FAST_CONFIG = {"rate_limit_ms": 0}


def make_page(
    url: str,
    markdown: str | None = "Some page text",
    *,
    html: str | None = None,
    title: str | None = "Page",
    status_code: int | None = 200,
    links: list[str] | None = None,
    error: str | None = None,
) -> FetchedPage:
    metadata: dict[str, Any] = {"sourceURL": url}
    if title is not None:
        metadata["title"] = title
    if status_code is not None:
        metadata["statusCode"] = status_code
    if links is not None:
        metadata["links"] = links
    if error is not None:
        metadata["error"] = error
    return FetchedPage(url=url, markdown=markdown, html=html, metadata=metadata)


class FakeFetcher:
    """Scripted fetch provider.

    scrape() answers from `pages`; crawl() returns `crawl_pages`. Set
    `gate` to hold every scrape until the event is set.
    """

    def __init__(self):
        self.pages: dict[str, FetchedPage] = {}
        self.crawl_pages: list[FetchedPage] = []
        self.scrape_failures: dict[str, int] = {}
        self.crawl_error: str | None = None
        self.gate: asyncio.Event | None = None
        self.scrape_calls: list[str] = []
        self.crawl_calls: list[tuple[str, CrawlOptions]] = []

    async def scrape(
        self,
        url: str,
        *,
        formats: list[str] | None = None,
        only_main_content: bool = True,
    ) -> FetchResult:
        self.scrape_calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.scrape_failures.get(url, 0) > 0:
            self.scrape_failures[url] -= 1
            return FetchResult(success=False, error="upstream timeout")
        page = self.pages.get(url)
        if page is None:
            return FetchResult(success=False, error="not found")
        return FetchResult(success=True, pages=[page])

    async def crawl(self, url: str, options: CrawlOptions) -> FetchResult:
        self.crawl_calls.append((url, options))
        if self.crawl_error:
            return FetchResult(success=False, error=self.crawl_error)
        return FetchResult(success=True, pages=list(self.crawl_pages))


class FakeExtractor(AIExtractorInterface):
    """Returns the same candidates for every call, after `failures` errors."""

    def __init__(
        self,
        records: list[dict[str, Any]] | None = None,
        overall_confidence: float | None = 0.8,
        failures: int = 0,
    ):
        self.records = records or []
        self.overall_confidence = overall_confidence
        self.failures = failures
        self.calls: list[tuple[str, str | None]] = []

    async def analyze(self, content: str, prompt: str | None = None) -> AnalysisResult:
        self.calls.append((content, prompt))
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("model overloaded")
        return AnalysisResult(
            records=[dict(record) for record in self.records],
            overall_confidence=self.overall_confidence,
            metadata={"model": self.model_name},
        )

    @property
    def model_name(self) -> str:
        return "fake-model"


async def wait_until(predicate: Callable[[], Any], timeout: float = 5.0) -> None:
    """Poll predicate (sync or async) until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    """No backoff sleeps between fetch attempts."""
    monkeypatch.setattr(settings, "fetch_backoff_base", 0.0)
    monkeypatch.setattr(settings, "fetch_backoff_max", 0.0)
    monkeypatch.setattr(settings, "ai_retry_delay", 0.0)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database file with all tables."""
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'grant_crawler.db'}")
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def webhook_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def webhooks(webhook_requests: list[httpx.Request]) -> WebhookDispatcher:
    """Dispatcher whose POSTs are recorded instead of sent."""

    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(200)

    return WebhookDispatcher(transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def service_factory(session_maker, fetcher, webhooks):
    """Build CrawlService instances wired to the test database."""
    services: list[CrawlService] = []

    def factory(
        extractor: AIExtractorInterface | None = None,
        max_concurrent: int = 2,
        poll_interval: float = 0.01,
        wake_delay: float = 0.0,
    ) -> CrawlService:
        service = CrawlService(
            session_maker,
            fetcher=fetcher,
            extractor=extractor,
            webhooks=webhooks,
            max_concurrent=max_concurrent,
            poll_interval=poll_interval,
            wake_delay=wake_delay,
            ai_retry_delay=0,
        )
        services.append(service)
        return service

    yield factory

    for service in services:
        await service.shutdown(cancel_running=True)


@pytest.fixture
def service(service_factory) -> CrawlService:
    return service_factory()


async def wait_for_terminal(service: CrawlService, job_id: str, timeout: float = 5.0):
    """Wait for job_id to reach a terminal status and return it."""

    async def finished() -> bool:
        return (await service.get_job(job_id)).status.is_terminal

    await wait_until(finished, timeout)
    return await service.get_job(job_id)
