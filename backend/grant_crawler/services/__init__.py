"""
Services layer for Grant Crawler.

MODULES:
- ai/: AI extractor interface, OpenAI-compatible client and prompts
- extraction/: HTML helpers (JSON-LD, links, plain text)

STANDALONE SERVICES:
- job_store / content_store / record_store: persistence for jobs, fetched units and records
- firecrawl_client: Firecrawl scrape and crawl API client
- retry_utils: exponential-backoff retry for fetch calls
- url_utils: URL normalization and link classification
- event_bus: in-process per-job event delivery
- webhook: completion webhook dispatch
- crawl_service: public job operations wiring everything together
"""
