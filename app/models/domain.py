"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
Dict conversion exists only at the store boundary (to_record/from_record).
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MILLISECOND = timedelta(milliseconds=1)


def to_millis(moment: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds, truncating sub-millisecond parts."""
    return (moment - _EPOCH) // _MILLISECOND


def from_millis(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return _EPOCH + millis * _MILLISECOND


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ============================================================================
# Accounts and sessions
# ============================================================================


@dataclass(frozen=True)
class Account:
    """Immutable account snapshot."""

    id: str
    username: str
    email: str
    credential_digest: str
    created_at: datetime
    last_login_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate account identity fields."""
        if not self.id:
            raise ValueError("id cannot be empty")
        if not self.username:
            raise ValueError("username cannot be empty")
        if not self.email:
            raise ValueError("email cannot be empty")

    def with_login(self, moment: datetime) -> "Account":
        """Return a copy with last_login_at set."""
        return replace(self, last_login_at=moment)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "credential_digest": self.credential_digest,
            "created_at": _iso(self.created_at),
            "last_login_at": _iso(self.last_login_at),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Account":
        return cls(
            id=record["id"],
            username=record["username"],
            email=record["email"],
            credential_digest=record["credential_digest"],
            created_at=datetime.fromisoformat(record["created_at"]),
            last_login_at=_dt(record.get("last_login_at")),
        )


@dataclass(frozen=True)
class Session:
    """Bearer session bound to one account."""

    user_id: str
    token: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """A session is expired from expires_at onwards."""
        return now >= self.expires_at

    def to_record(self) -> dict[str, Any]:
        # The raw token is the lookup key's preimage; it is never persisted.
        return {
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
        }

    @classmethod
    def from_record(cls, token: str, record: dict[str, Any]) -> "Session":
        return cls(
            user_id=record["user_id"],
            token=token,
            created_at=datetime.fromisoformat(record["created_at"]),
            expires_at=datetime.fromisoformat(record["expires_at"]),
        )


# ============================================================================
# Rate limiting
# ============================================================================


@dataclass(frozen=True)
class RateLimitCounter:
    """Fixed-window counter as stored."""

    subject_key: str
    count: int
    window_reset_at: datetime

    def is_open(self, now: datetime) -> bool:
        """The stored count only applies while the window is open."""
        return now < self.window_reset_at

    def to_record(self) -> dict[str, Any]:
        return {"count": self.count, "window_reset_at": _iso(self.window_reset_at)}

    @classmethod
    def from_record(cls, subject_key: str, record: dict[str, Any]) -> "RateLimitCounter":
        return cls(
            subject_key=subject_key,
            count=int(record["count"]),
            window_reset_at=datetime.fromisoformat(record["window_reset_at"]),
        )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    count: int
    retry_after: timedelta | None = None

    @property
    def retry_after_seconds(self) -> int:
        """Retry-After hint rounded up to whole seconds (0 when allowed)."""
        if self.retry_after is None:
            return 0
        seconds = self.retry_after.total_seconds()
        return max(1, int(seconds) + (0 if seconds.is_integer() else 1))


@dataclass(frozen=True)
class RateLimitPolicy:
    """A (limit, window) pair for one rate-limited action. limit=None means unbounded."""

    action: str
    limit: int | None
    window: timedelta

    def __post_init__(self) -> None:
        """Validate policy constraints."""
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"Rate limit must be positive: {self.limit}")
        if self.window <= timedelta(0):
            raise ValueError(f"Rate limit window must be positive: {self.window}")

    def subject_key(self, subject: str) -> str:
        """Namespace the subject by action so policies never share counters."""
        return f"{self.action}/{subject}"


# ============================================================================
# Resources and expiry
# ============================================================================


@dataclass(frozen=True)
class Resource:
    """Uploaded object metadata. The payload lives under payload_key."""

    id: str
    name: str
    content_type: str
    size: int
    payload_key: str
    created_at: datetime
    owner_id: str | None = None
    expires_at: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_ephemeral(self) -> bool:
        return self.expires_at is not None

    def is_expired(self, now: datetime) -> bool:
        """Non-ephemeral resources never expire."""
        return self.expires_at is not None and now >= self.expires_at

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content_type": self.content_type,
            "size": self.size,
            "payload_key": self.payload_key,
            "created_at": _iso(self.created_at),
            "owner_id": self.owner_id,
            "is_ephemeral": self.is_ephemeral,
            "expires_at": _iso(self.expires_at),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Resource":
        return cls(
            id=record["id"],
            name=record["name"],
            content_type=record["content_type"],
            size=int(record["size"]),
            payload_key=record["payload_key"],
            created_at=datetime.fromisoformat(record["created_at"]),
            owner_id=record.get("owner_id"),
            expires_at=_dt(record.get("expires_at")),
            metadata=dict(record.get("metadata") or {}),
        )


@dataclass(frozen=True, order=True)
class ExpiryIndexEntry:
    """Secondary index entry pointing at an ephemeral resource."""

    expires_at_millis: int
    resource_name: str

    @property
    def expires_at(self) -> datetime:
        return from_millis(self.expires_at_millis)

    def is_due(self, now: datetime) -> bool:
        return self.expires_at_millis <= to_millis(now)


class ExpiryOutcome(str, Enum):
    """Result of a lazy expiry check."""

    LIVE = "live"
    EXPIRED_AND_PURGED = "expired_and_purged"


@dataclass(frozen=True)
class SweepResult:
    """Counters from one sweep run."""

    scanned: int
    purged: int
    orphans_removed: int
    failed: int


# ============================================================================
# Notifications
# ============================================================================


class NotificationCategory(str, Enum):
    """Notification event categories."""

    ACCOUNT = "account"
    SECURITY = "security"
    ACTIVITY = "activity"


@dataclass(frozen=True)
class NotificationEvent:
    """Structured event handed to the notification sink."""

    category: NotificationCategory
    event: str
    occurred_at: datetime
    fields: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "event": self.event,
            "occurred_at": _iso(self.occurred_at),
            **self.fields,
        }
