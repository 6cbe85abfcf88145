"""
Records, statistics and one-off extraction endpoints.
"""

from datetime import date, datetime

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from grant_crawler.api.deps import CrawlServiceDep
from grant_crawler.api.middleware import add_job_to_wide_event, add_owner_to_wide_event
from grant_crawler.core.models import ExtractRequest, JobStatistics, JobStatus

router = APIRouter()


@router.get("/records")
async def get_extracted_records(
    service: CrawlServiceDep,
    job_id: str | None = Query(None),
    min_confidence: float | None = Query(None, ge=0, le=1),
    deadline_after: date | None = Query(None),
    deadline_before: date | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> dict:
    """Extracted records, most confident first."""
    records, total = await service.get_extracted_records(
        job_id=job_id,
        min_confidence=min_confidence,
        deadline_after=deadline_after,
        deadline_before=deadline_before,
        limit=limit,
        offset=offset,
    )
    return {"records": records, "total": total, "limit": limit, "offset": offset}


@router.get("/statistics")
async def get_statistics(
    service: CrawlServiceDep,
    owner_id: str | None = Query(None),
    organization_id: str | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
) -> JobStatistics:
    return await service.get_statistics(
        owner_id=owner_id,
        organization_id=organization_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("/extract")
async def extract(body: ExtractRequest, service: CrawlServiceDep):
    """
    Run a high-priority ai_extract job and wait briefly for its result.

    If the job is still running when the wait ends, the job id is returned
    for polling.
    """
    add_owner_to_wide_event(body.owner_id, body.organization_id)
    job = await service.extract(
        body.url,
        extraction_prompt=body.extraction_prompt,
        screenshot=body.screenshot,
        owner_id=body.owner_id,
        organization_id=body.organization_id,
    )
    add_job_to_wide_event(job.id, job.job_type.value, job.status.value, job.priority)

    if job.status == JobStatus.COMPLETED:
        return {"job_id": job.id, "status": job.status.value, "results": job.result}

    if job.status in (JobStatus.FAILED, JobStatus.CANCELLED):
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"job_id": job.id, "status": job.status.value, "error": job.error_message},
        )

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "job_id": job.id,
            "status": job.status.value,
            "message": "Extraction is taking longer than expected. Use the job ID to check status.",
        },
    )
