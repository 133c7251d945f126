"""
Tests for the fire-and-forget Notification Sink.

Uses httpx.MockTransport so no network is touched.
"""

import asyncio

import httpx
import orjson
import pytest

from app.models.domain import NotificationCategory
from app.services.notifications import NotificationSink
from tests.helpers import FakeClock


def _sink(handler, clock: FakeClock | None = None) -> NotificationSink:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationSink(
        webhook_url="https://hooks.example.test/imghost",
        http_client=client,
        clock=clock or FakeClock(),
    )


class TestNotify:
    """Tests for notify and drain."""

    @pytest.mark.asyncio
    async def test_delivers_json_payload(self):
        received: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(orjson.loads(request.content))
            return httpx.Response(204)

        clock = FakeClock()
        sink = _sink(handler, clock)

        sink.notify(NotificationCategory.SECURITY, "login_failed", client_address="1.2.3.4")
        await sink.drain(timeout=1.0)

        assert received == [
            {
                "category": "security",
                "event": "login_failed",
                "occurred_at": clock.now.isoformat(),
                "client_address": "1.2.3.4",
            }
        ]

    @pytest.mark.asyncio
    async def test_notify_returns_before_delivery(self):
        """The caller never waits on the webhook."""
        gate = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            await gate.wait()
            return httpx.Response(200)

        sink = _sink(handler)

        sink.notify(NotificationCategory.ACCOUNT, "account_created")

        assert sink.pending == 1
        gate.set()
        await sink.drain(timeout=1.0)
        assert sink.pending == 0

    @pytest.mark.asyncio
    async def test_http_error_is_swallowed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        sink = _sink(handler)

        sink.notify(NotificationCategory.ACTIVITY, "resource_uploaded", name="cat")
        await sink.drain(timeout=1.0)

        assert sink.pending == 0

    @pytest.mark.asyncio
    async def test_transport_error_is_swallowed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        sink = _sink(handler)

        sink.notify(NotificationCategory.ACTIVITY, "resource_uploaded")
        await sink.drain(timeout=1.0)

    @pytest.mark.asyncio
    async def test_unencodable_field_counts_as_failed_delivery(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(204)

        sink = _sink(handler)

        sink.notify(NotificationCategory.ACTIVITY, "resource_uploaded", blob=object())
        (task,) = sink._pending
        await sink.drain(timeout=1.0)

        assert task.done() and task.exception() is None
        assert sink.pending == 0
        assert calls == []

    @pytest.mark.asyncio
    async def test_drain_abandons_slow_deliveries(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200)

        sink = _sink(handler)
        sink.notify(NotificationCategory.ACCOUNT, "login_succeeded")

        await sink.drain(timeout=0.01)
        await asyncio.sleep(0.05)

        assert sink.pending == 0

    @pytest.mark.asyncio
    async def test_without_webhook_only_logs(self):
        sink = NotificationSink(webhook_url="")

        sink.notify(NotificationCategory.ACCOUNT, "account_created", account_id="a")

        assert sink.pending == 0
        await sink.drain()

    def test_without_running_loop_is_dropped(self):
        """A sync caller with a webhook configured gets no exception."""
        sink = NotificationSink(webhook_url="https://hooks.example.test/imghost")

        sink.notify(NotificationCategory.SECURITY, "login_failed")

        assert sink.pending == 0
