"""
Entry point for `python -m grant_crawler.worker`.
"""

import asyncio
import signal

import structlog

from grant_crawler.core.config import settings
from grant_crawler.core.logging import configure_logging
from grant_crawler.db import close_db, init_db
from grant_crawler.services.crawl_service import CrawlService

logger = structlog.get_logger()


async def run_worker() -> None:
    """Start the scheduler and run until SIGINT or SIGTERM."""
    logger.info("Starting up worker...", max_concurrent=settings.max_concurrent_jobs)
    await init_db()

    service = CrawlService()
    await service.start()
    logger.info("Worker startup complete.")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down worker...")
        # Running pipelines finish; pending jobs are picked up on next start
        await service.shutdown()
        await close_db()
        logger.info("Worker shutdown complete.")


def main() -> None:
    configure_logging(
        json_logs=not settings.debug,
        log_level="DEBUG" if settings.debug else "INFO",
    )
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
