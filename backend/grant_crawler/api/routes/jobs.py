"""
Jobs API - submission, queries, lifecycle control and live updates.
"""

import asyncio
import json
from typing import Any

import structlog
from fastapi import APIRouter, Query, Request, status
from fastapi.responses import StreamingResponse

from grant_crawler.api.deps import CrawlServiceDep
from grant_crawler.api.middleware import add_job_to_wide_event, add_owner_to_wide_event
from grant_crawler.core.models import (
    BatchJobCreate,
    ContentType,
    CrawlJob,
    CrawlJobCreate,
    JobStatus,
    JobType,
)
from grant_crawler.services.event_bus import TERMINAL_EVENTS, EventType

logger = structlog.get_logger()
router = APIRouter()

# Comment frame sent when a stream has been idle this long
SSE_KEEPALIVE_SECONDS = 15.0


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_job(body: CrawlJobCreate, service: CrawlServiceDep) -> CrawlJob:
    """Submit a crawl job. It starts once the scheduler admits it."""
    add_owner_to_wide_event(body.owner_id, body.organization_id)
    job = await service.create_job(
        body.source_url,
        body.job_type,
        body.configuration,
        owner_id=body.owner_id,
        organization_id=body.organization_id,
        webhook_url=body.webhook_url,
        priority=body.priority,
    )
    add_job_to_wide_event(job.id, job.job_type.value, job.status.value, job.priority)
    return job


@router.post("/batch", status_code=status.HTTP_201_CREATED)
async def create_batch_jobs(body: BatchJobCreate, service: CrawlServiceDep) -> dict:
    """Submit up to 50 jobs at once; all or nothing on validation."""
    add_owner_to_wide_event(body.owner_id, body.organization_id)
    jobs = await service.create_batch_jobs(
        body.jobs,
        owner_id=body.owner_id,
        organization_id=body.organization_id,
    )
    return {"jobs": jobs, "count": len(jobs)}


@router.get("")
async def list_jobs(
    service: CrawlServiceDep,
    owner_id: str | None = Query(None),
    organization_id: str | None = Query(None),
    status_filter: JobStatus | None = Query(None, alias="status"),
    job_type: JobType | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict:
    jobs, total = await service.list_jobs(
        owner_id=owner_id,
        organization_id=organization_id,
        status=status_filter,
        job_type=job_type,
        limit=limit,
        offset=offset,
    )
    return {"jobs": jobs, "total": total, "limit": limit, "offset": offset}


@router.get("/{job_id}")
async def get_job(job_id: str, service: CrawlServiceDep) -> CrawlJob:
    job = await service.get_job(job_id)
    add_job_to_wide_event(job.id, job.job_type.value, job.status.value, job.priority)
    return job


@router.get("/{job_id}/content")
async def get_job_content(
    job_id: str,
    service: CrawlServiceDep,
    content_type: ContentType | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict:
    content, total = await service.get_job_content(
        job_id, content_type=content_type, limit=limit, offset=offset
    )
    return {"content": content, "total": total, "limit": limit, "offset": offset}


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, service: CrawlServiceDep) -> dict:
    job = await service.cancel_job(job_id)
    add_job_to_wide_event(job.id, job.job_type.value, job.status.value, job.priority)
    return {"message": "Job cancelled successfully", "job": job}


@router.post("/{job_id}/retry", status_code=status.HTTP_201_CREATED)
async def retry_job(job_id: str, service: CrawlServiceDep) -> CrawlJob:
    """Clone a finished job into a new pending job."""
    job = await service.retry_job(job_id)
    add_job_to_wide_event(job.id, job.job_type.value, job.status.value, job.priority)
    return job


@router.get("/{job_id}/subscribe")
async def subscribe(job_id: str, request: Request, service: CrawlServiceDep) -> StreamingResponse:
    """
    Server-sent events for one job.

    Opens with {"type": "connected"}, then relays every job event. The
    stream ends after a terminal event or when the client disconnects.
    """
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    unsubscribe = service.subscribe_to_job_updates(job_id, queue.put_nowait)
    try:
        # Read after subscribing so a transition in between is not lost
        job = await service.get_job(job_id)
    except Exception:
        unsubscribe()
        raise

    async def event_stream():
        try:
            yield _sse({"type": "connected", "job_id": job_id, "status": job.status.value})
            if job.status.is_terminal:
                return

            while True:
                if await request.is_disconnected():
                    logger.debug("SSE client disconnected", job_id=job_id)
                    return
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue

                yield _sse(event)
                if EventType(event["type"]) in TERMINAL_EVENTS:
                    return
        finally:
            unsubscribe()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
