"""
Wide Events Middleware for FastAPI.

One canonical log line per request:
- a wide event is initialized when the request arrives
- route handlers enrich it with job context (add_job_to_wide_event)
- it is finalized with status and duration and emitted through the
  tail sampler when the response is returned

For the SSE subscription route the event is emitted once the stream
starts, not when it ends.
"""

import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from grant_crawler.core.logging import (
    emit_wide_event,
    enrich_event,
    finalize_request_event,
    init_request_event,
)


class WideEventMiddleware(BaseHTTPMiddleware):
    """Capture one wide event per request."""

    # Probes would drown everything else
    SKIP_PATHS = {"/api/health", "/api/ready", "/favicon.ico"}

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        init_request_event(
            request_id=request.headers.get("x-request-id"),
            method=request.method,
            path=request.url.path,
            client_ip=self._get_client_ip(request),
            user_agent=request.headers.get("user-agent", ""),
        )
        if request.query_params:
            enrich_event(**{"http.query_params": dict(request.query_params)})

        error: Exception | None = None
        status_code = 500
        started = time.perf_counter()

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            error = e
            status_code = getattr(e, "status_code", 500)
            raise
        finally:
            enrich_event(**{"timing.handler_ms": round((time.perf_counter() - started) * 1000, 1)})
            emit_wide_event(finalize_request_event(status_code, error))

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP, respecting proxy headers."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host
        return "unknown"


def add_job_to_wide_event(
    job_id: str | None = None,
    job_type: str | None = None,
    job_status: str | None = None,
    priority: int | None = None,
) -> None:
    """Add job context to the wide event."""
    enrich_event(
        job={
            "id": job_id,
            "type": job_type,
            "status": job_status,
            "priority": priority,
        }
    )


def add_owner_to_wide_event(
    owner_id: str | None = None,
    organization_id: str | None = None,
) -> None:
    """Add the submitting owner/organization to the wide event."""
    if owner_id or organization_id:
        enrich_event(owner={"id": owner_id, "organization_id": organization_id})
