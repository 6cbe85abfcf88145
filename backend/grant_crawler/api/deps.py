"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from grant_crawler.services.crawl_service import CrawlService


def get_crawl_service(request: Request) -> CrawlService:
    """The CrawlService built by the application lifespan."""
    return request.app.state.crawl_service


CrawlServiceDep = Annotated[CrawlService, Depends(get_crawl_service)]
