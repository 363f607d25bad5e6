"""
Resilience Patterns — Retry with Backoff + Circuit Breaker.

Applied to every Signal Provider, Pattern Detector and the audit sink.
Breakers are shared across concurrent requests, so their state sits behind
a threading.Lock that is never held across an await.
"""

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from riskgate.exceptions import CircuitOpenError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ── Retry with Exponential Backoff ─────────────────────────────────────────


@dataclass(frozen=True)
class RetryPolicy:
    """
    Explicit per-interface retry policy.

    max_attempts counts the first call; the default is a single attempt.
    """
    max_attempts: int = 1
    base_delay: float = 0.1
    max_delay: float = 2.0
    jitter: float = 0.05

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay


SINGLE_ATTEMPT = RetryPolicy()


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = SINGLE_ATTEMPT,
    retry_on: tuple = (Exception,),
    operation_name: str = "operation",
) -> T:
    """
    Retry an async function with exponential backoff and jitter.

    Strategy: base_delay * 2^attempt + random(0, jitter), capped at max_delay.
    The last exception is re-raised once attempts are exhausted.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return await fn()
        except retry_on as exc:
            if attempt == attempts - 1:
                if attempts > 1:
                    logger.error(
                        "retry_exhausted",
                        operation=operation_name,
                        attempts=attempts,
                        error=str(exc),
                    )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_attempt",
                operation=operation_name,
                attempt=attempt + 1,
                max_attempts=attempts,
                delay=round(delay, 3),
                error=str(exc),
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


# ── Circuit Breaker ─────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Rejecting all requests
    HALF_OPEN = "half_open" # Testing with one request


class CircuitBreaker:
    """
    Prevent cascade failures when a source is down.

    States: CLOSED → OPEN → HALF_OPEN → CLOSED
    - CLOSED: normal. After `failure_threshold` consecutive failures inside
      `window_seconds` → OPEN. Any success resets the count.
    - OPEN: reject immediately for `recovery_timeout` seconds
    - HALF_OPEN: allow 1 trial request. Success → CLOSED; Failure → OPEN

    ``clock`` is injectable so tests can move time forward.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures: list[float] = []
        self._opened_at: float = 0.0
        self._half_open_in_progress = False

    def _current_state(self) -> CircuitState:
        # caller holds the lock
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_in_progress = False
                logger.info("circuit_half_open", breaker=self.name)
        return self._state

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def failure_count(self) -> int:
        with self._lock:
            return len(self._failures)

    def allow(self) -> None:
        """
        Admit one call or raise CircuitOpenError.

        Callers that are admitted must report back via record_success() or
        record_failure().
        """
        with self._lock:
            state = self._current_state()
            if state == CircuitState.OPEN:
                logger.warning("circuit_open_rejected", breaker=self.name)
                raise CircuitOpenError(self.name)
            if state == CircuitState.HALF_OPEN:
                if self._half_open_in_progress:
                    raise CircuitOpenError(self.name, f"Circuit breaker '{self.name}' is testing")
                self._half_open_in_progress = True

    def record_success(self) -> None:
        with self._lock:
            if self._state in (CircuitState.HALF_OPEN, CircuitState.OPEN):
                logger.info("circuit_closed", breaker=self.name)
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._half_open_in_progress = False

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._half_open_in_progress = False

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._opened_at = now
                logger.warning("circuit_reopened", breaker=self.name)
                return

            # Prune old failures outside window
            cutoff = now - self.window_seconds
            self._failures = [t for t in self._failures if t > cutoff]
            self._failures.append(now)

            if len(self._failures) >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = now
                logger.warning(
                    "circuit_opened",
                    breaker=self.name,
                    failures=len(self._failures),
                    threshold=self.failure_threshold,
                )

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Execute fn through the circuit breaker."""
        self.allow()
        try:
            result = await fn(*args, **kwargs)
        except asyncio.CancelledError:
            self.record_failure()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._half_open_in_progress = False


class CircuitBreakerRegistry:
    """One breaker per source name, created lazily with shared settings."""

    def __init__(
        self,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        recovery_timeout: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.recovery_timeout = recovery_timeout
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, config) -> "CircuitBreakerRegistry":
        return cls(
            failure_threshold=config.breaker_failure_threshold,
            window_seconds=config.breaker_window_seconds,
            recovery_timeout=config.breaker_recovery_seconds,
        )

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=name,
                    failure_threshold=self.failure_threshold,
                    window_seconds=self.window_seconds,
                    recovery_timeout=self.recovery_timeout,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def states(self) -> dict[str, str]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.state.value for b in breakers}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for b in breakers:
            b.reset()
