"""
Webhook Dispatcher - best-effort completion callbacks.

One POST per completed job. Failures are logged and dropped: no retry,
no exception reaches the caller.
"""

from typing import Any

import httpx
import structlog

from grant_crawler.core.config import settings

logger = structlog.get_logger()


class WebhookDispatcher:
    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout or settings.webhook_timeout
        self.transport = transport

    async def dispatch(self, url: str, payload: dict[str, Any]) -> bool:
        """POST payload as JSON to url. Returns True on a 2xx response."""
        log = logger.bind(webhook_url=url, job_id=payload.get("job", {}).get("id"))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error("Webhook rejected", status=e.response.status_code)
            return False
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log.error("Webhook delivery failed", error=str(e), error_type=type(e).__name__)
            return False

        log.info("Webhook delivered", status=response.status_code)
        return True
