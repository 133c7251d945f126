"""
Notification Sink - Fire-and-forget webhook delivery.

notify() schedules the POST as an asyncio task and returns at once, so a slow
or failing webhook never delays or fails the request that produced the event.
Delivery failures are logged and dropped. There is no retry.
"""

import asyncio
from typing import Any

import httpx
import orjson
from structlog import get_logger

from app.models.domain import Clock, NotificationCategory, NotificationEvent, utc_now
from app.observability.metrics import metrics

logger = get_logger(__name__)


class NotificationSink:
    """
    Delivers NotificationEvents to a webhook.

    With no webhook_url the events are only logged.

    Usage:
        sink = NotificationSink(webhook_url=settings.webhook_url)
        sink.notify(NotificationCategory.SECURITY, "login_failed", email=email)
        ...
        await sink.drain(timeout=5.0)  # on shutdown
    """

    def __init__(
        self,
        webhook_url: str = "",
        timeout_seconds: float = 3.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
    ):
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client
        self.clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._pending)

    def notify(self, category: NotificationCategory, event: str, **fields: Any) -> None:
        """Schedule delivery of one event. Never raises, never blocks."""
        notification = NotificationEvent(
            category=category,
            event=event,
            occurred_at=self.clock(),
            fields=fields,
        )
        logger.info("notification_emitted", category=category.value, notification=event)

        if not self.webhook_url:
            metrics.record_notification("logged")
            return

        try:
            task = asyncio.get_running_loop().create_task(self._deliver(notification))
        except RuntimeError:
            # No running loop (sync caller); nothing can carry the delivery
            metrics.record_notification("dropped")
            logger.warning("notification_dropped_no_loop", notification=event)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: NotificationEvent) -> None:
        try:
            response = await self.http_client.post(
                self.webhook_url,
                content=orjson.dumps(notification.to_payload()),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except (httpx.HTTPError, orjson.JSONEncodeError) as exc:
            metrics.record_notification("failed")
            logger.warning(
                "notification_delivery_failed",
                notification=notification.event,
                error=str(exc),
            )
            return
        metrics.record_notification("delivered")

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight deliveries, then close the HTTP client."""
        if self._pending:
            _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning("notification_drain_timeout", abandoned=len(not_done))
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
