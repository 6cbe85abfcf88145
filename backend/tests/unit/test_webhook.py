"""
Unit tests for the webhook dispatcher.
"""

import json

import httpx
import pytest

from grant_crawler.services.webhook import WebhookDispatcher

pytestmark = pytest.mark.asyncio

PAYLOAD = {"job": {"id": "job-1", "status": "completed"}, "result": {"pages_processed": 3}}


class TestWebhookDispatcher:
    async def test_posts_json_payload(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(handler))

        assert await dispatcher.dispatch("https://hooks.example.org/done", PAYLOAD) is True
        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == PAYLOAD

    async def test_error_status_returns_false(self):
        dispatcher = WebhookDispatcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        assert await dispatcher.dispatch("https://hooks.example.org/done", PAYLOAD) is False

    async def test_transport_error_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(handler))

        assert await dispatcher.dispatch("https://hooks.example.org/done", PAYLOAD) is False
