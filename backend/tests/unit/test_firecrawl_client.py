"""
Unit tests for the Firecrawl API client.
"""

import json

import httpx
import pytest

from grant_crawler.services.firecrawl_client import CrawlOptions, FetchedPage, FirecrawlClient

API_URL = "https://firecrawl.test"


def make_client(handler) -> FirecrawlClient:
    return FirecrawlClient(
        api_url=API_URL,
        api_key="fc-test",
        poll_interval=0,
        crawl_timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestFetchedPage:
    def test_from_payload(self):
        page = FetchedPage.from_payload(
            {
                "markdown": "# Fund",
                "html": "<h1>Fund</h1>",
                "links": ["https://example.org/a"],
                "metadata": {"title": "Fund", "sourceURL": "https://example.org", "statusCode": 200},
            }
        )

        assert page.url == "https://example.org"
        assert page.title == "Fund"
        assert page.status_code == 200
        assert page.links == ["https://example.org/a"]
        assert page.error is None

    def test_missing_status_code(self):
        page = FetchedPage(url="https://example.org", metadata={"statusCode": "n/a"})
        assert page.status_code is None


class TestCrawlOptions:
    def test_payload_omits_wildcard_include(self):
        payload = CrawlOptions(max_depth=2, limit=10, include_patterns=["*"]).to_payload("https://example.org")

        assert payload["maxDepth"] == 2
        assert payload["limit"] == 10
        assert "includePaths" not in payload
        assert payload["scrapeOptions"]["formats"] == ["markdown", "html"]

    def test_payload_with_patterns(self):
        options = CrawlOptions(include_patterns=["*.pdf"], exclude_patterns=["/login*"])
        payload = options.to_payload("https://example.org")

        assert payload["includePaths"] == ["*.pdf"]
        assert payload["excludePaths"] == ["/login*"]


class TestScrape:
    async def test_successful_scrape(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {"markdown": "# Fund", "metadata": {"title": "Fund", "statusCode": 200}},
                },
            )

        async with make_client(handler) as client:
            result = await client.scrape("https://example.org/fund", formats=["markdown"])

        assert result.success is True
        assert result.pages[0].url == "https://example.org/fund"
        assert result.pages[0].markdown == "# Fund"
        assert requests[0].url.path == "/v1/scrape"
        assert requests[0].headers["Authorization"] == "Bearer fc-test"
        assert json.loads(requests[0].content)["formats"] == ["markdown"]

    async def test_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(402, json={"success": False, "error": "Payment required"})

        async with make_client(handler) as client:
            result = await client.scrape("https://example.org/fund")

        assert result.success is False
        assert result.error == "Payment required"


class TestCrawl:
    async def test_polls_until_completed_and_follows_next(self):
        polls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "crawl-1"})
            if request.url.path == "/v1/crawl/crawl-1" and not request.url.params.get("skip"):
                polls["count"] += 1
                if polls["count"] == 1:
                    return httpx.Response(200, json={"status": "scraping", "data": []})
                return httpx.Response(
                    200,
                    json={
                        "status": "completed",
                        "data": [{"markdown": "one", "metadata": {"sourceURL": "https://example.org/1"}}],
                        "next": f"{API_URL}/v1/crawl/crawl-1?skip=1",
                    },
                )
            return httpx.Response(
                200,
                json={
                    "status": "completed",
                    "data": [{"markdown": "two", "metadata": {"sourceURL": "https://example.org/2"}}],
                },
            )

        async with make_client(handler) as client:
            result = await client.crawl("https://example.org", CrawlOptions())

        assert result.success is True
        assert [page.url for page in result.pages] == ["https://example.org/1", "https://example.org/2"]
        assert polls["count"] == 2

    async def test_failed_crawl(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "crawl-2"})
            return httpx.Response(200, json={"status": "failed", "error": "Site unreachable"})

        async with make_client(handler) as client:
            result = await client.crawl("https://example.org", CrawlOptions())

        assert result.success is False
        assert result.error == "Site unreachable"

    async def test_failing_next_page_is_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "crawl-3"})
            if request.url.params.get("skip"):
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(
                200,
                json={
                    "status": "completed",
                    "data": [{"markdown": "one", "metadata": {"sourceURL": "https://example.org/1"}}],
                    "next": f"{API_URL}/v1/crawl/crawl-3?skip=1",
                },
            )

        async with make_client(handler) as client:
            result = await client.crawl("https://example.org", CrawlOptions())

        assert result.success is False
        assert result.error == "HTTP 503"
        assert result.pages == []
