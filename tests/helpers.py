"""
Shared test helpers: a controllable clock, a recording notification sink and
thin wrappers around the HTTP endpoints.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi.testclient import TestClient

from app.models.domain import NotificationCategory
from app.services.notifications import NotificationSink

# A tiny PNG header is enough; payloads are opaque bytes
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotificationSink(NotificationSink):
    """Notification sink that records events instead of delivering them."""

    def __init__(self) -> None:
        super().__init__(webhook_url="")
        self.events: list[tuple[NotificationCategory, str, dict[str, Any]]] = []

    def notify(self, category: NotificationCategory, event: str, **fields: Any) -> None:
        self.events.append((category, event, fields))

    def named(self, event: str) -> list[dict[str, Any]]:
        return [fields for _, name, fields in self.events if name == event]


def signup(
    client: TestClient,
    username: str = "alice",
    email: str = "alice@x.com",
    password: str = "secret1",
    address: str = "10.0.0.1",
):
    """POST /api/auth/signup from a given client address."""
    return client.post(
        "/api/auth/signup",
        json={"username": username, "email": email, "password": password},
        headers={"X-Forwarded-For": address},
    )


def login(
    client: TestClient,
    email: str = "alice@x.com",
    password: str = "secret1",
    address: str = "10.0.0.1",
):
    """POST /api/auth/login from a given client address."""
    return client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
        headers={"X-Forwarded-For": address},
    )


def upload(
    client: TestClient,
    name: str | None = "cat",
    payload: bytes = PNG_BYTES,
    content_type: str = "image/png",
    expires_in: int | None = None,
    token: str | None = None,
    address: str = "10.0.0.1",
):
    """POST /api/upload as multipart form data."""
    data: dict[str, str] = {}
    if name is not None:
        data["name"] = name
    if expires_in is not None:
        data["expires_in"] = str(expires_in)
    headers = {"X-Forwarded-For": address}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return client.post(
        "/api/upload",
        files={"file": ("upload.png", payload, content_type)},
        data=data,
        headers=headers,
    )
