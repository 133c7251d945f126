"""
Rate Limiter - Fixed-window counters kept in the key-value store.

Each (action, subject) pair owns one counter under ratelimit/{action}/{subject}.
A counter is read, compared and rewritten without any lock, so two concurrent
requests can both observe the same count and both be allowed. Undercounting
by the number of concurrent requests is accepted.

The window is fixed: it starts with the first counted call and the block
lifts as soon as it closes, however many calls were refused in between.
"""

from datetime import timedelta
from enum import Enum

from structlog import get_logger

from app.config import Settings
from app.db.store import KeyValueStore
from app.models.domain import (
    Clock,
    RateLimitCounter,
    RateLimitDecision,
    RateLimitPolicy,
    utc_now,
)
from app.observability.metrics import metrics

logger = get_logger(__name__)


class RateLimitAction(str, Enum):
    """Rate-limited actions, keyed per client address."""

    AUTH_FAILURE = "auth_failure"
    SIGNUP = "signup"
    UPLOAD = "upload"
    NOT_FOUND = "not_found"


def build_policies(settings: Settings) -> dict[RateLimitAction, RateLimitPolicy]:
    """Build the per-action policies from configuration."""
    return {
        RateLimitAction.AUTH_FAILURE: RateLimitPolicy(
            action=RateLimitAction.AUTH_FAILURE.value,
            limit=settings.auth_failure_limit,
            window=timedelta(seconds=settings.auth_failure_window_seconds),
        ),
        RateLimitAction.SIGNUP: RateLimitPolicy(
            action=RateLimitAction.SIGNUP.value,
            limit=settings.signup_limit,
            window=timedelta(seconds=settings.signup_window_seconds),
        ),
        RateLimitAction.UPLOAD: RateLimitPolicy(
            action=RateLimitAction.UPLOAD.value,
            limit=settings.upload_limit,
            window=timedelta(seconds=settings.upload_window_seconds),
        ),
        # Observed, never blocked
        RateLimitAction.NOT_FOUND: RateLimitPolicy(
            action=RateLimitAction.NOT_FOUND.value,
            limit=None,
            window=timedelta(seconds=settings.not_found_window_seconds),
        ),
    }


def counter_key(subject_key: str) -> str:
    return f"ratelimit/{subject_key}"


class RateLimiter:
    """Fixed-window rate limiter over the key-value store."""

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock

    async def _load(self, subject_key: str) -> RateLimitCounter | None:
        record = await self.store.get_json(counter_key(subject_key))
        if record is None:
            return None
        return RateLimitCounter.from_record(subject_key, record)

    async def check_and_increment(
        self, subject_key: str, limit: int | None, window: timedelta
    ) -> RateLimitDecision:
        """
        Count one call against subject_key.

        Returns an allowed decision carrying the new count, or a blocked one
        carrying the time until the window closes. Blocked calls are not
        counted. limit=None never blocks.
        """
        now = self.clock()
        counter = await self._load(subject_key)

        if counter is None or not counter.is_open(now):
            count = 0
            window_reset_at = now + window
        else:
            count = counter.count
            window_reset_at = counter.window_reset_at

        if limit is not None and count >= limit:
            retry_after = window_reset_at - now
            logger.info(
                "rate_limit_blocked",
                subject_key=subject_key,
                count=count,
                limit=limit,
                retry_after_seconds=int(retry_after.total_seconds()),
            )
            return RateLimitDecision(allowed=False, count=count, retry_after=retry_after)

        updated = RateLimitCounter(
            subject_key=subject_key, count=count + 1, window_reset_at=window_reset_at
        )
        await self.store.set_json(counter_key(subject_key), updated.to_record())
        return RateLimitDecision(allowed=True, count=updated.count)

    async def peek(self, subject_key: str, limit: int | None) -> RateLimitDecision:
        """Report whether the next call would be blocked, without counting it."""
        now = self.clock()
        counter = await self._load(subject_key)
        if counter is None or not counter.is_open(now):
            return RateLimitDecision(allowed=True, count=0)
        if limit is not None and counter.count >= limit:
            return RateLimitDecision(
                allowed=False,
                count=counter.count,
                retry_after=counter.window_reset_at - now,
            )
        return RateLimitDecision(allowed=True, count=counter.count)

    async def hit(self, policy: RateLimitPolicy, subject: str) -> RateLimitDecision:
        """check_and_increment under a policy, with metrics."""
        decision = await self.check_and_increment(
            policy.subject_key(subject), policy.limit, policy.window
        )
        metrics.record_rate_limit(policy.action, decision.allowed)
        return decision

    async def status(self, policy: RateLimitPolicy, subject: str) -> RateLimitDecision:
        """peek under a policy."""
        return await self.peek(policy.subject_key(subject), policy.limit)
