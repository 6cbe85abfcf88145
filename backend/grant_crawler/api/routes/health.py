"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from grant_crawler.db import check_database_health

router = APIRouter()


@router.get("/api/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/api/ready")
async def readiness_check(request: Request):
    """Readiness check - database connectivity and scheduler state."""
    database_ok = await check_database_health(getattr(request.app.state, "db_engine", None))
    service = getattr(request.app.state, "crawl_service", None)
    body = {
        "status": "ready" if database_ok else "not_ready",
        "database": "connected" if database_ok else "unavailable",
        "scheduler": {
            "active_jobs": service.scheduler.active_count if service else 0,
            "queued_jobs": service.scheduler.pending_count if service else 0,
        },
    }
    return JSONResponse(status_code=200 if database_ok else 503, content=body)
