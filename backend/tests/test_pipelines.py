"""
End-to-end pipeline tests: jobs run through PipelineExecutor against the
scripted fetch provider and AI extractor.
"""

import asyncio
from datetime import date

import httpx
import pytest
from conftest import FAST_CONFIG, FakeExtractor, make_page, wait_until

from grant_crawler.core.models import ContentType, JobStatus, JobType, ProcessingStatus
from grant_crawler.services.ai.prompts import DEFAULT_DIRECT_EXTRACTION_PROMPT
from grant_crawler.services.crawl_service import CrawlService
from grant_crawler.services.event_bus import EventType
from grant_crawler.services.firecrawl_client import FirecrawlClient

pytestmark = pytest.mark.asyncio

SOURCE = "https://example.org/grants"

GRANT_MARKDOWN = (
    "# Regional Innovation Grant\n\n"
    "Funding of up to 50,000 EUR is available for small businesses. "
    "The application deadline is 31 December 2026 and eligibility is limited to SMEs."
)


async def run_job(service, job_type, config=None, source_url=SOURCE, **kwargs):
    """Create a job and execute it directly, bypassing the scheduler."""
    job = await service.create_job(source_url, job_type, {**FAST_CONFIG, **(config or {})}, **kwargs)
    service.scheduler.remove(job.id)
    await service.executor.run(job.id)
    return await service.get_job(job.id)


def collect_events(service, job_id):
    events = []
    service.subscribe_to_job_updates(job_id, events.append)
    return events


class TestFullCrawl:
    async def test_one_failed_page_does_not_fail_the_job(self, service, fetcher):
        fetcher.crawl_pages = [
            make_page(f"{SOURCE}/{i}", status_code=500 if i == 3 else 200) for i in range(1, 6)
        ]

        job = await run_job(service, JobType.FULL_CRAWL, {"ai_extraction": False})

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.stats.pages_scraped == 4
        assert job.stats.errors_encountered == 1
        assert job.result["total_pages"] == 5
        assert job.result["pages_processed"] == 4
        assert job.result["success_rate"] == 80.0
        assert [failure["url"] for failure in job.result["failed_pages"]] == [f"{SOURCE}/3"]

        content, total = await service.get_job_content(job.id)
        assert total == 4
        assert f"{SOURCE}/3" not in {row.url for row in content}
        assert {row.processing_status for row in content} == {ProcessingStatus.PROCESSED}

    async def test_every_page_failing_fails_the_job(self, service, fetcher):
        fetcher.crawl_pages = [
            make_page(f"{SOURCE}/a", error="blocked"),
            make_page(f"{SOURCE}/b", status_code=404),
        ]

        job = await run_job(service, JobType.FULL_CRAWL)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "All 2 pages failed"
        assert job.stats.errors_encountered == 2

    async def test_crawl_error_is_retried_then_fails_the_job(self, service, fetcher):
        fetcher.crawl_error = "Site unreachable"

        job = await run_job(service, JobType.FULL_CRAWL)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Failed after 3 attempts. Last error: Crawl failed: Site unreachable"
        assert len(fetcher.crawl_calls) == 3
        assert job.stats.errors_encountered == 1

    async def test_crawl_options_follow_configuration(self, service, fetcher):
        fetcher.crawl_pages = [make_page(SOURCE)]

        await run_job(
            service,
            JobType.FULL_CRAWL,
            {"max_depth": 9, "exclude_patterns": ["/login*"], "capture_screenshots": True},
        )

        url, options = fetcher.crawl_calls[0]
        assert url == SOURCE
        assert options.max_depth == 5
        assert options.exclude_patterns == ["/login*"]
        assert "screenshot" in options.formats

    async def test_documents_in_crawl_are_stored_as_documents(self, service, fetcher):
        fetcher.crawl_pages = [
            make_page(SOURCE, links=["/guide.pdf", "/about"]),
            make_page(f"{SOURCE}/guide.pdf", markdown="Guide text"),
        ]

        job = await run_job(service, JobType.FULL_CRAWL)

        assert job.stats.pages_scraped == 1
        assert job.stats.documents_processed == 1
        assert job.stats.links_discovered == 2
        documents, total = await service.get_job_content(job.id, content_type=ContentType.DOCUMENT)
        assert total == 1
        assert documents[0].url == f"{SOURCE}/guide.pdf"

    async def test_progress_is_monotonic_and_100_only_on_completion(self, service, fetcher):
        fetcher.crawl_pages = [make_page(f"{SOURCE}/{i}") for i in range(4)]
        job = await service.create_job(SOURCE, JobType.FULL_CRAWL, FAST_CONFIG)
        service.scheduler.remove(job.id)
        events = collect_events(service, job.id)

        await service.executor.run(job.id)

        progress = [event["progress"] for event in events if event["type"] == EventType.PROGRESS.value]
        assert progress == [22, 45, 67, 90]
        assert events[-1]["type"] == EventType.COMPLETED.value
        assert events[-1]["job"]["progress"] == 100
        assert (await service.get_job(job.id)).progress == 100

    async def test_structured_data_is_attached(self, service, fetcher):
        html = '<script type="application/ld+json">{"@type": "MonetaryGrant"}</script><p>Fund</p>'
        fetcher.crawl_pages = [make_page(SOURCE, html=html)]

        job = await run_job(service, JobType.FULL_CRAWL)

        content, _ = await service.get_job_content(job.id)
        assert content[0].structured_data == [{"type": "json-ld", "data": {"@type": "MonetaryGrant"}}]

    async def test_structured_data_can_be_disabled(self, service, fetcher):
        html = '<script type="application/ld+json">{"@type": "MonetaryGrant"}</script>'
        fetcher.crawl_pages = [make_page(SOURCE, html=html)]

        job = await run_job(service, JobType.FULL_CRAWL, {"extract_structured_data": False})

        content, _ = await service.get_job_content(job.id)
        assert content[0].structured_data == []


class TestAnalysisStage:
    async def test_records_are_stored_with_clamped_confidence(self, service_factory, fetcher):
        extractor = FakeExtractor(
            records=[
                {"title": "Grant A", "confidence": 1.7},
                {"title": "Grant B", "confidence": -3},
                {"title": "   ", "confidence": 0.9},
                {"description": "No title at all"},
            ],
            overall_confidence=0.8,
        )
        service = service_factory(extractor=extractor)
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown=GRANT_MARKDOWN)

        job = await run_job(service, JobType.TARGETED_SCRAPE)

        assert job.status == JobStatus.COMPLETED
        assert job.stats.records_found == 2
        assert job.stats.ai_analyzed == 1

        records, total = await service.get_extracted_records(job_id=job.id)
        assert total == 2
        assert {record.title: record.confidence_score for record in records} == {
            "Grant A": 1.0,
            "Grant B": 0.0,
        }
        assert all(record.source_url == SOURCE for record in records)

        content, _ = await service.get_job_content(job.id)
        assert content[0].processing_status == ProcessingStatus.AI_ANALYZED
        assert content[0].confidence_score == 0.8

    async def test_short_or_off_topic_content_skips_ai(self, service_factory, fetcher):
        extractor = FakeExtractor(records=[{"title": "Grant A"}])
        service = service_factory(extractor=extractor)
        fetcher.crawl_pages = [
            make_page(f"{SOURCE}/short", markdown="Grant"),
            make_page(f"{SOURCE}/team", markdown="Our team and our history. " * 10),
        ]

        job = await run_job(service, JobType.FULL_CRAWL)

        assert job.status == JobStatus.COMPLETED
        assert extractor.calls == []
        assert job.stats.ai_analyzed == 0

    async def test_ai_failure_marks_the_unit_and_counts_one_error(self, service_factory, fetcher):
        extractor = FakeExtractor(records=[{"title": "Grant A"}], failures=10)
        service = service_factory(extractor=extractor)
        fetcher.crawl_pages = [
            make_page(f"{SOURCE}/about", markdown="About us"),
            make_page(f"{SOURCE}/fund", markdown=GRANT_MARKDOWN),
        ]

        job = await run_job(service, JobType.FULL_CRAWL)

        assert job.status == JobStatus.COMPLETED
        assert job.stats.errors_encountered == 1
        assert job.stats.pages_scraped == 2
        assert len(extractor.calls) == 2

        content, _ = await service.get_job_content(job.id)
        by_url = {row.url: row for row in content}
        failed = by_url[f"{SOURCE}/fund"]
        assert failed.processing_status == ProcessingStatus.AI_FAILED
        assert failed.ai_analysis["attempts"] == 2
        assert "model overloaded" in failed.ai_analysis["error"]
        assert by_url[f"{SOURCE}/about"].processing_status == ProcessingStatus.PROCESSED

    async def test_ai_can_be_disabled_per_job(self, service_factory, fetcher):
        extractor = FakeExtractor(records=[{"title": "Grant A"}])
        service = service_factory(extractor=extractor)
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown=GRANT_MARKDOWN)

        job = await run_job(service, JobType.TARGETED_SCRAPE, {"ai_extraction": False})

        assert job.status == JobStatus.COMPLETED
        assert extractor.calls == []


class TestTargetedScrape:
    async def test_retries_transient_failures(self, service, fetcher):
        fetcher.pages[SOURCE] = make_page(SOURCE, title="Grants overview")
        fetcher.scrape_failures[SOURCE] = 2

        job = await run_job(service, JobType.TARGETED_SCRAPE)

        assert job.status == JobStatus.COMPLETED
        assert job.result == {"pages_processed": 1, "url": SOURCE}
        assert fetcher.scrape_calls == [SOURCE] * 3
        content, _ = await service.get_job_content(job.id)
        assert content[0].title == "Grants overview"

    async def test_gives_up_after_max_attempts(self, service, fetcher):
        fetcher.pages[SOURCE] = make_page(SOURCE)
        fetcher.scrape_failures[SOURCE] = 3

        job = await run_job(service, JobType.TARGETED_SCRAPE)

        assert job.status == JobStatus.FAILED
        assert job.error_message.startswith("Failed after 3 attempts")
        assert job.stats.errors_encountered == 1

    async def test_rescraping_keeps_one_row_per_url(self, service, fetcher):
        fetcher.pages[SOURCE] = make_page(SOURCE)
        job = await service.create_job(SOURCE, JobType.TARGETED_SCRAPE, FAST_CONFIG)
        service.scheduler.remove(job.id)

        await service.executor.run(job.id)
        row = await service.content_store.upsert(
            job.id, SOURCE, title="Updated", content="new", markdown="new", html=None
        )

        content, total = await service.get_job_content(job.id)
        assert total == 1
        assert content[0].id == row.id
        assert content[0].title == "Updated"


class TestDocumentHarvest:
    async def test_scrapes_each_document(self, service, fetcher):
        docs = [f"{SOURCE}/call.pdf", f"{SOURCE}/form.docx", f"{SOURCE}/broken.pdf"]
        fetcher.crawl_pages = [
            make_page(SOURCE),
            make_page(docs[0]),
            make_page(docs[0]),
            make_page(docs[1]),
            make_page(docs[2]),
        ]
        fetcher.pages = {docs[0]: make_page(docs[0]), docs[1]: make_page(docs[1])}

        job = await run_job(service, JobType.DOCUMENT_HARVEST)

        assert job.status == JobStatus.COMPLETED
        assert fetcher.crawl_calls[0][1].include_patterns == ["*.pdf", "*.docx", "*.doc"]
        assert job.result["total_documents"] == 3
        assert job.result["documents_processed"] == 2
        assert job.stats.documents_processed == 2
        assert job.stats.errors_encountered == 1

        content, total = await service.get_job_content(job.id, content_type=ContentType.DOCUMENT)
        assert total == 2
        assert {row.url for row in content} == {docs[0], docs[1]}

    async def test_tracking_variants_of_a_document_are_scraped_once(self, service, fetcher):
        doc = f"{SOURCE}/call.pdf"
        fetcher.crawl_pages = [make_page(doc), make_page(f"{doc}?utm_source=newsletter")]
        fetcher.pages = {doc: make_page(doc)}

        job = await run_job(service, JobType.DOCUMENT_HARVEST)

        assert job.status == JobStatus.COMPLETED
        assert fetcher.scrape_calls == [doc]
        assert job.result["total_documents"] == 1


class TestLinkDiscovery:
    async def test_links_are_triaged_and_pages_not_analyzed(self, service_factory, fetcher):
        extractor = FakeExtractor(records=[{"title": "Grant A"}])
        service = service_factory(extractor=extractor)
        fetcher.crawl_pages = [
            make_page(
                SOURCE,
                markdown=GRANT_MARKDOWN,
                links=["/funding-guide.pdf", "https://partner.eu/", "mailto:info@example.org", "/about"],
            ),
            make_page(f"{SOURCE}/about", links=["/about"]),
        ]

        job = await run_job(service, JobType.LINK_DISCOVERY)

        assert job.status == JobStatus.COMPLETED
        assert extractor.calls == []
        assert job.result["pages_processed"] == 2
        assert job.result["unique_links"] == 4
        assert job.result["links_by_type"] == {"document": 1, "external": 1, "email": 1, "internal": 1}
        top = job.result["top_links"][0]
        assert top["url"] == "https://example.org/funding-guide.pdf"
        assert top["link_type"] == "document"
        assert top["priority_score"] >= 80

        content, _ = await service.get_job_content(job.id)
        source_row = next(row for row in content if row.url == SOURCE)
        assert len(source_row.metadata["classified_links"]) == 4

    async def test_link_variants_count_once(self, service, fetcher):
        fetcher.crawl_pages = [
            make_page(SOURCE, links=["/apply", "/apply/?utm_source=feed", "/apply#form"]),
        ]

        job = await run_job(service, JobType.LINK_DISCOVERY)

        assert job.status == JobStatus.COMPLETED
        assert job.result["unique_links"] == 1
        assert job.result["top_links"][0]["url"] == "https://example.org/apply"


class TestMonitor:
    async def test_only_changed_content_is_signalled(self, service, fetcher):
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Call   for proposals\nopen")

        first = await run_job(service, JobType.MONITOR)
        assert first.result == {"has_changed": True, "url": SOURCE}

        # Same text, different whitespace
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Call for proposals open")
        job = await service.create_job(SOURCE, JobType.MONITOR, FAST_CONFIG)
        service.scheduler.remove(job.id)
        events = collect_events(service, job.id)
        await service.executor.run(job.id)

        second = await service.get_job(job.id)
        assert second.status == JobStatus.COMPLETED
        assert second.result == {"has_changed": False, "url": SOURCE}
        assert EventType.CONTENT_CHANGED.value not in [event["type"] for event in events]
        assert (await service.get_job_content(job.id))[1] == 0

        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Call for proposals closed")
        job = await service.create_job(SOURCE, JobType.MONITOR, FAST_CONFIG)
        service.scheduler.remove(job.id)
        events = collect_events(service, job.id)
        await service.executor.run(job.id)

        third = await service.get_job(job.id)
        assert third.result["has_changed"] is True
        assert {"type": "content_changed", "job_id": job.id, "url": SOURCE} in events


class TestAIExtract:
    async def test_candidates_become_records_at_direct_confidence(self, service_factory, fetcher):
        extractor = FakeExtractor(
            records=[
                {
                    "title": "Green Fund",
                    "confidence": 0.2,
                    "amount": {"min": "1,000", "max": 5000, "currency": "usd"},
                    "deadline": "2026-12-31",
                },
                {"title": ""},
            ],
        )
        service = service_factory(extractor=extractor)
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Short page")

        job = await run_job(service, JobType.AI_EXTRACT)

        assert job.status == JobStatus.COMPLETED
        assert job.result["records_extracted"] == 1
        assert job.stats.ai_analyzed == 1
        assert job.stats.records_found == 1
        # Direct extraction skips the keyword pre-filter
        assert extractor.calls == [("Short page", DEFAULT_DIRECT_EXTRACTION_PROMPT)]

        records, _ = await service.get_extracted_records(job_id=job.id)
        assert len(records) == 1
        record = records[0]
        assert record.confidence_score == 0.9
        assert record.currency == "USD"
        assert record.amount_min == 1000.0
        assert record.deadline == date(2026, 12, 31)

        content, _ = await service.get_job_content(job.id, content_type=ContentType.AI_EXTRACTION)
        assert [row.url for row in content] == [f"{SOURCE}#record-0"]
        assert content[0].confidence_score == 0.9
        assert content[0].processing_status == ProcessingStatus.AI_ANALYZED

    async def test_custom_prompt_is_used(self, service_factory, fetcher):
        extractor = FakeExtractor()
        service = service_factory(extractor=extractor)
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Page")

        await run_job(service, JobType.AI_EXTRACT, {"extraction_prompt": "Only EU calls"})

        assert extractor.calls[0][1] == "Only EU calls"

    async def test_extractor_failure_fails_the_job(self, service_factory, fetcher):
        service = service_factory(extractor=FakeExtractor(failures=10))
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Page")

        job = await run_job(service, JobType.AI_EXTRACT)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "AI analysis failed after 2 attempts: model overloaded"
        assert job.stats.errors_encountered == 1

    async def test_without_extractor_the_job_fails(self, service, fetcher):
        fetcher.pages[SOURCE] = make_page(SOURCE, markdown="Page")

        job = await run_job(service, JobType.AI_EXTRACT)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "AI extraction is not configured"


class TestCooperativeCancellation:
    async def test_in_flight_unit_finishes_and_no_new_unit_starts(self, service, fetcher):
        docs = [f"{SOURCE}/{name}.pdf" for name in ("a", "b", "c")]
        fetcher.crawl_pages = [make_page(url) for url in docs]
        fetcher.pages = {url: make_page(url) for url in docs}
        fetcher.gate = asyncio.Event()

        job = await service.create_job(SOURCE, JobType.DOCUMENT_HARVEST, FAST_CONFIG)
        service.scheduler.remove(job.id)
        events = collect_events(service, job.id)
        task = asyncio.create_task(service.executor.run(job.id))

        await wait_until(lambda: len(fetcher.scrape_calls) == 1)
        cancelled = await service.cancel_job(job.id)
        assert cancelled.status == JobStatus.CANCELLED

        fetcher.gate.set()
        await task

        final = await service.get_job(job.id)
        assert final.status == JobStatus.CANCELLED
        assert fetcher.scrape_calls == [docs[0]]
        _, total = await service.get_job_content(job.id)
        assert total == 1
        assert [event["type"] for event in events] == ["cancelled"]


class TestFirecrawlBackedCrawl:
    async def test_failing_result_page_is_retried_then_fails_the_job(self, session_maker, webhooks):
        calls = {"crawl": 0, "next": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                calls["crawl"] += 1
                return httpx.Response(200, json={"success": True, "id": "c1"})
            if request.url.params.get("skip"):
                calls["next"] += 1
                return httpx.Response(503, json={"success": False, "error": "Service Unavailable"})
            return httpx.Response(
                200,
                json={
                    "status": "completed",
                    "data": [{"markdown": "one", "metadata": {"sourceURL": f"{SOURCE}/1"}}],
                    "next": "https://firecrawl.test/v1/crawl/c1?skip=1",
                },
            )

        client = FirecrawlClient(
            api_url="https://firecrawl.test",
            poll_interval=0,
            transport=httpx.MockTransport(handler),
        )
        service = CrawlService(session_maker, fetcher=client, webhooks=webhooks)
        try:
            job = await run_job(service, JobType.FULL_CRAWL)
        finally:
            await service.shutdown()

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Failed after 3 attempts. Last error: Crawl failed: Service Unavailable"
        assert calls == {"crawl": 3, "next": 3}
        assert job.stats.errors_encountered == 1
