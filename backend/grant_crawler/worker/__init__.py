"""
Headless job worker.

Runs the scheduler and pipelines without the HTTP API:

    python -m grant_crawler.worker

Jobs are submitted through the API process or directly via CrawlService.
Only one process should run the scheduler against a given database.
"""
