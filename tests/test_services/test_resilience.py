"""
Tests for Resilience Patterns.

Tests:
- Retry with exponential backoff
- Circuit breaker behavior
- Breaker registry
"""

import pytest

from riskgate.exceptions import CircuitOpenError
from riskgate.services.resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    RetryPolicy,
    retry_with_backoff,
)

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


# ============================================================================
# RETRY TESTS
# ============================================================================


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("transient")
            return "ok"

        assert await retry_with_backoff(flaky, policy=NO_WAIT) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_reraises_when_exhausted(self):
        calls = []

        async def broken():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await retry_with_backoff(broken, policy=NO_WAIT)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_only_listed_exceptions_are_retried(self):
        calls = []

        async def bad_input():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_with_backoff(bad_input, policy=NO_WAIT, retry_on=(ConnectionError,))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_default_is_single_attempt(self):
        calls = []

        async def broken():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await retry_with_backoff(broken)
        assert len(calls) == 1

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=4.0, jitter=0.0)
        assert [policy.delay_for(a) for a in range(4)] == [1.0, 2.0, 4.0, 4.0]


# ============================================================================
# CIRCUIT BREAKER TESTS
# ============================================================================


class TestCircuitBreaker:

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            "kyc", failure_threshold=3, window_seconds=60.0, recovery_timeout=30.0, clock=clock
        )

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        breaker.allow()

    def test_opens_after_threshold(self, breaker):
        for _ in range(3):
            breaker.allow()
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.allow()
        assert exc_info.value.breaker == "kyc"

    def test_success_resets_consecutive_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_failures_outside_window_are_pruned(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(61)
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_allows_single_trial(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(30)
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.allow()
        with pytest.raises(CircuitOpenError):
            breaker.allow()

    def test_half_open_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(30)
        breaker.allow()
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(30)
        breaker.allow()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        clock.advance(10)
        with pytest.raises(CircuitOpenError):
            breaker.allow()

    @pytest.mark.asyncio
    async def test_call_wraps_coroutine(self, breaker):
        async def fail():
            raise ConnectionError("down")

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await breaker.call(fail)
        with pytest.raises(CircuitOpenError):
            await breaker.call(fail)

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


class TestCircuitBreakerRegistry:

    def test_one_breaker_per_name(self, clock):
        registry = CircuitBreakerRegistry(failure_threshold=2, clock=clock)
        assert registry.get("kyc") is registry.get("kyc")
        assert registry.get("kyc") is not registry.get("aml")
        assert registry.get("aml").failure_threshold == 2

    def test_states_and_reset_all(self, clock):
        registry = CircuitBreakerRegistry(failure_threshold=1, clock=clock)
        registry.get("kyc").record_failure()
        assert registry.states() == {"kyc": "open"}
        registry.reset_all()
        assert registry.states() == {"kyc": "closed"}
