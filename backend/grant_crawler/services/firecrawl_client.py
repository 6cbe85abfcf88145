"""
Firecrawl client - the fetch provider behind every pipeline.

Talks to the Firecrawl v1 REST API:
- POST /v1/scrape            single page, returned inline
- POST /v1/crawl             starts an async crawl, returns an id
- GET  /v1/crawl/{id}        status + pages, paginated through `next`

Provider-level failures come back as FetchResult(success=False, error=...).
Transport errors (timeouts, connection resets) propagate as httpx
exceptions so the caller's retry loop can see them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from grant_crawler.core.config import settings

logger = structlog.get_logger()

DEFAULT_FORMATS = ["markdown", "html"]


@dataclass
class FetchedPage:
    """One page or document as returned by the provider."""

    url: str
    markdown: str | None = None
    html: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        return self.metadata.get("title") or None

    @property
    def error(self) -> str | None:
        return self.metadata.get("error") or None

    @property
    def status_code(self) -> int | None:
        try:
            return int(self.metadata.get("statusCode"))
        except (TypeError, ValueError):
            return None

    @property
    def links(self) -> list[str]:
        links = self.metadata.get("links") or []
        return [link for link in links if isinstance(link, str)]

    @classmethod
    def from_payload(cls, data: dict[str, Any], fallback_url: str = "") -> "FetchedPage":
        metadata = dict(data.get("metadata") or {})
        if data.get("links") and "links" not in metadata:
            metadata["links"] = data["links"]
        if data.get("screenshot"):
            metadata["screenshot"] = data["screenshot"]
        url = data.get("url") or metadata.get("sourceURL") or metadata.get("url") or fallback_url
        return cls(
            url=url,
            markdown=data.get("markdown"),
            html=data.get("html"),
            metadata=metadata,
        )


@dataclass
class FetchResult:
    success: bool
    pages: list[FetchedPage] = field(default_factory=list)
    error: str | None = None


@dataclass
class CrawlOptions:
    """Crawl request options, already derived from a job's configuration."""

    max_depth: int = 3
    limit: int = 100
    include_patterns: list[str] = field(default_factory=list)
    exclude_patterns: list[str] = field(default_factory=list)
    follow_external_links: bool = False
    formats: list[str] = field(default_factory=lambda: list(DEFAULT_FORMATS))
    only_main_content: bool = True

    def to_payload(self, url: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "url": url,
            "maxDepth": self.max_depth,
            "limit": self.limit,
            "allowBackwardLinks": False,
            "allowExternalLinks": self.follow_external_links,
            "scrapeOptions": {
                "formats": self.formats,
                "onlyMainContent": self.only_main_content,
                "waitFor": 2000,
            },
        }
        # "*" means everything, which is the provider default anyway
        include = [p for p in self.include_patterns if p != "*"]
        if include:
            payload["includePaths"] = include
        if self.exclude_patterns:
            payload["excludePaths"] = self.exclude_patterns
        return payload


class FetchProvider(Protocol):
    """What the pipelines need from a crawling backend."""

    async def scrape(
        self,
        url: str,
        *,
        formats: list[str] | None = None,
        only_main_content: bool = True,
    ) -> FetchResult: ...

    async def crawl(self, url: str, options: CrawlOptions) -> FetchResult: ...


class FirecrawlClient:
    """HTTP client for the Firecrawl v1 API."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        crawl_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        api_key = api_key or settings.firecrawl_api_key
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.poll_interval = settings.firecrawl_poll_interval if poll_interval is None else poll_interval
        self.crawl_timeout = crawl_timeout or settings.firecrawl_crawl_timeout
        self._client = httpx.AsyncClient(
            base_url=(api_url or settings.firecrawl_api_url).rstrip("/"),
            headers=headers,
            timeout=timeout or settings.firecrawl_timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def scrape(
        self,
        url: str,
        *,
        formats: list[str] | None = None,
        only_main_content: bool = True,
    ) -> FetchResult:
        """Scrape a single URL."""
        payload = {
            "url": url,
            "formats": formats or list(DEFAULT_FORMATS),
            "onlyMainContent": only_main_content,
        }
        response = await self._client.post("/v1/scrape", json=payload)
        body = _json(response)
        if response.is_error or not body.get("success"):
            error = _error_message(response, body)
            logger.warning("Firecrawl scrape failed", url=url, error=error)
            return FetchResult(success=False, error=error)

        return FetchResult(success=True, pages=[FetchedPage.from_payload(body.get("data") or {}, url)])

    async def crawl(self, url: str, options: CrawlOptions) -> FetchResult:
        """Start a crawl and poll until it finishes."""
        log = logger.bind(url=url)

        response = await self._client.post("/v1/crawl", json=options.to_payload(url))
        body = _json(response)
        if response.is_error or not body.get("success") or not body.get("id"):
            error = _error_message(response, body)
            log.warning("Firecrawl crawl rejected", error=error)
            return FetchResult(success=False, error=error)

        crawl_id = body["id"]
        log = log.bind(crawl_id=crawl_id)
        log.info("Firecrawl crawl started")
        deadline = time.monotonic() + self.crawl_timeout

        while True:
            response = await self._client.get(f"/v1/crawl/{crawl_id}")
            body = _json(response)
            if response.is_error:
                return FetchResult(success=False, error=_error_message(response, body))

            status = body.get("status")
            if status == "completed":
                result = await self._collect_pages(body)
                if result.success:
                    log.info("Firecrawl crawl completed", pages=len(result.pages))
                else:
                    log.warning("Firecrawl crawl results unavailable", error=result.error)
                return result

            if status in ("failed", "cancelled"):
                error = _error_message(response, body) or f"Crawl {status}"
                log.warning("Firecrawl crawl ended without completing", status=status, error=error)
                return FetchResult(success=False, error=error)

            if time.monotonic() >= deadline:
                return FetchResult(
                    success=False,
                    error=f"Crawl {crawl_id} did not finish within {self.crawl_timeout}s",
                )

            await asyncio.sleep(self.poll_interval)

    async def _collect_pages(self, body: dict[str, Any]) -> FetchResult:
        """Gather every page of a completed crawl, following `next` links."""
        items = list(body.get("data") or [])
        next_url = body.get("next")
        while next_url:
            response = await self._client.get(next_url)
            page_body = _json(response)
            if response.is_error:
                return FetchResult(success=False, error=_error_message(response, page_body))
            items.extend(page_body.get("data") or [])
            next_url = page_body.get("next")

        pages = [FetchedPage.from_payload(item) for item in items if isinstance(item, dict)]
        return FetchResult(success=True, pages=pages)


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(response: httpx.Response, body: dict[str, Any]) -> str:
    error = body.get("error") or body.get("message")
    if error:
        return str(error)
    if response.is_error:
        return f"HTTP {response.status_code}"
    return "Unknown error"
