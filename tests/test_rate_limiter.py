"""
Tests for the fixed-window Rate Limiter.

Includes a Hypothesis property over arbitrary call/advance sequences.
"""

from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from app.config import get_settings
from app.db.store import MemoryKeyValueStore
from app.models.domain import RateLimitDecision, RateLimitPolicy
from app.services.rate_limiter import RateLimitAction, RateLimiter, build_policies
from tests.helpers import FakeClock

WINDOW = timedelta(minutes=15)


class TestCheckAndIncrement:
    """Tests for check_and_increment."""

    @pytest.mark.asyncio
    async def test_limit_calls_allowed_then_blocked(self, limiter):
        """limit calls in one window pass; call limit+1 is blocked."""
        for expected in range(1, 11):
            decision = await limiter.check_and_increment("auth_failure/1.2.3.4", 10, WINDOW)
            assert decision.allowed
            assert decision.count == expected

        blocked = await limiter.check_and_increment("auth_failure/1.2.3.4", 10, WINDOW)

        assert not blocked.allowed
        assert blocked.count == 10
        assert blocked.retry_after == WINDOW

    @pytest.mark.asyncio
    async def test_blocked_calls_are_not_counted(self, limiter, store):
        for _ in range(3):
            await limiter.check_and_increment("s", 2, WINDOW)

        record = await store.get_json("ratelimit/s")
        assert record["count"] == 2

    @pytest.mark.asyncio
    async def test_retry_after_shrinks_with_time(self, limiter, clock):
        await limiter.check_and_increment("s", 1, WINDOW)
        clock.advance(minutes=10)

        blocked = await limiter.check_and_increment("s", 1, WINDOW)

        assert blocked.retry_after == timedelta(minutes=5)
        assert blocked.retry_after_seconds == 300

    @pytest.mark.asyncio
    async def test_window_reset(self, limiter, clock):
        """After the window closes the next call is allowed with a fresh counter."""
        for _ in range(10):
            await limiter.check_and_increment("s", 10, WINDOW)
        clock.advance(minutes=15)

        decision = await limiter.check_and_increment("s", 10, WINDOW)

        assert decision.allowed
        assert decision.count == 1

    @pytest.mark.asyncio
    async def test_window_is_fixed_from_first_call(self, limiter, clock):
        """Later calls don't extend the window."""
        await limiter.check_and_increment("s", 2, WINDOW)
        clock.advance(minutes=14)
        await limiter.check_and_increment("s", 2, WINDOW)
        clock.advance(minutes=1)

        decision = await limiter.check_and_increment("s", 2, WINDOW)

        assert decision.allowed
        assert decision.count == 1

    @pytest.mark.asyncio
    async def test_unbounded_never_blocks(self, limiter):
        for expected in range(1, 51):
            decision = await limiter.check_and_increment("not_found/x", None, WINDOW)
            assert decision.allowed
            assert decision.count == expected

    @pytest.mark.asyncio
    async def test_subjects_are_independent(self, limiter):
        await limiter.check_and_increment("a", 1, WINDOW)

        decision = await limiter.check_and_increment("b", 1, WINDOW)

        assert decision.allowed


class TestPeek:
    """Tests for peek."""

    @pytest.mark.asyncio
    async def test_peek_does_not_count(self, limiter, store):
        await limiter.check_and_increment("s", 5, WINDOW)

        for _ in range(3):
            decision = await limiter.peek("s", 5)
            assert decision.allowed
            assert decision.count == 1

        assert (await store.get_json("ratelimit/s"))["count"] == 1

    @pytest.mark.asyncio
    async def test_peek_reports_block(self, limiter, clock):
        await limiter.check_and_increment("s", 1, WINDOW)
        clock.advance(minutes=5)

        decision = await limiter.peek("s", 1)

        assert not decision.allowed
        assert decision.retry_after == timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_peek_after_window(self, limiter, clock):
        await limiter.check_and_increment("s", 1, WINDOW)
        clock.advance(minutes=15)

        decision = await limiter.peek("s", 1)

        assert decision.allowed
        assert decision.count == 0


class TestPolicies:
    """Tests for policy construction."""

    def test_default_policies(self):
        policies = build_policies(get_settings())

        auth = policies[RateLimitAction.AUTH_FAILURE]
        assert (auth.limit, auth.window) == (10, timedelta(minutes=15))
        upload = policies[RateLimitAction.UPLOAD]
        assert (upload.limit, upload.window) == (50, timedelta(hours=1))
        probes = policies[RateLimitAction.NOT_FOUND]
        assert (probes.limit, probes.window) == (None, timedelta(minutes=10))
        signup = policies[RateLimitAction.SIGNUP]
        assert (signup.limit, signup.window) == (10, timedelta(hours=1))

    def test_subject_key_is_namespaced_by_action(self):
        policy = RateLimitPolicy(action="upload", limit=1, window=WINDOW)
        assert policy.subject_key("1.2.3.4") == "upload/1.2.3.4"

    @pytest.mark.parametrize("limit,window", [(0, WINDOW), (-1, WINDOW), (1, timedelta(0))])
    def test_invalid_policy(self, limit, window):
        with pytest.raises(ValueError):
            RateLimitPolicy(action="x", limit=limit, window=window)

    @pytest.mark.asyncio
    async def test_hit_uses_policy(self, limiter, store):
        policy = RateLimitPolicy(action="upload", limit=1, window=WINDOW)

        assert (await limiter.hit(policy, "1.2.3.4")).allowed
        assert not (await limiter.hit(policy, "1.2.3.4")).allowed
        assert not (await limiter.status(policy, "1.2.3.4")).allowed
        assert "ratelimit/upload/1.2.3.4" in store


class TestRetryAfterSeconds:
    """Tests for RateLimitDecision.retry_after_seconds."""

    def test_rounds_up(self):
        decision = RateLimitDecision(False, 3, timedelta(seconds=1.2))
        assert decision.retry_after_seconds == 2

    def test_minimum_one_second(self):
        decision = RateLimitDecision(False, 3, timedelta(0))
        assert decision.retry_after_seconds == 1

    def test_allowed_has_no_retry(self):
        assert RateLimitDecision(True, 1).retry_after_seconds == 0


# ============================================================================
# Hypothesis - fixed-window model
# ============================================================================

steps = st.lists(
    st.one_of(
        st.just(("call", 0)),
        st.tuples(st.just("advance"), st.integers(min_value=1, max_value=20 * 60)),
    ),
    min_size=1,
    max_size=60,
)


@pytest.mark.asyncio
@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(limit=st.integers(min_value=1, max_value=5), script=steps)
async def test_matches_fixed_window_model(limit, script):
    """Decisions match a simple in-test model of a fixed window."""
    clock = FakeClock()
    limiter = RateLimiter(MemoryKeyValueStore(), clock=clock)

    model_count = 0
    model_reset = None
    for step, seconds in script:
        if step == "advance":
            clock.advance(seconds=seconds)
            continue

        if model_reset is None or clock.now >= model_reset:
            model_count = 0
            model_reset = clock.now + WINDOW

        decision = await limiter.check_and_increment("subject", limit, WINDOW)

        if model_count >= limit:
            assert not decision.allowed
            assert decision.retry_after == model_reset - clock.now
        else:
            model_count += 1
            assert decision.allowed
            assert decision.count == model_count
