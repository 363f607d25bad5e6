"""
Test fixtures for RiskGate tests.

Provides:
- Fake Signal Providers (scripted contribution, delay, hang, failure)
- A fake clock for breakers, caches and policy TTLs
- Request / transfer factories anchored at a fixed "now"
- Fast runtime settings so timeout tests finish in well under a second
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from riskgate.config import Settings
from riskgate.providers.base import SignalProvider
from riskgate.providers.history import InMemoryHistoryStore
from riskgate.providers.policy import StaticPolicyProvider
from riskgate.schemas.findings import SignalFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest, TransactionContext, Transfer
from riskgate.services.resilience import RetryPolicy

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(SignalProvider):
    """
    Scripted Signal Provider.

    ``failures`` makes the first N calls raise before succeeding; ``error``
    makes every call raise; ``hang`` never returns.
    """

    def __init__(
        self,
        name: str,
        contribution: float = 10.0,
        delay: float = 0.0,
        hang: bool = False,
        error: Optional[Exception] = None,
        failures: int = 0,
        timeout_seconds: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.name = name
        self.contribution = contribution
        self.delay = delay
        self.hang = hang
        self.error = error
        self.failures = failures
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def assess(self, subject_id: str, context: TransactionContext) -> SignalFinding:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hang:
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.calls <= self.failures:
                raise ConnectionError(f"{self.name} flaked")
            return SignalFinding(
                source=self.name,
                contribution=self.contribution,
                confidence=0.9,
                detail={"subject": subject_id},
            )
        finally:
            self.active -= 1


def build_request(
    subject_id: str = "subject-1",
    jurisdiction: str = "US",
    sender: str = "alice",
    recipient: str = "bob",
    amount: float = 1_000.0,
    idempotency_key: str = "idem-1",
    checks: Optional[tuple[str, ...]] = None,
    deadline_seconds: Optional[float] = None,
    timestamp: datetime = NOW,
    **context,
) -> AssessmentRequest:
    return AssessmentRequest(
        subject_id=subject_id,
        jurisdiction=jurisdiction,
        idempotency_key=idempotency_key,
        checks=checks,
        deadline_seconds=deadline_seconds,
        context=TransactionContext(
            amount=amount,
            sender=sender,
            recipient=recipient,
            timestamp=timestamp,
            **context,
        ),
    )


def build_transfer(
    transfer_id: str,
    sender: str,
    recipient: str,
    amount: float,
    minutes_ago: float,
) -> Transfer:
    return Transfer(
        transfer_id=transfer_id,
        sender=sender,
        recipient=recipient,
        amount=amount,
        timestamp=NOW - timedelta(minutes=minutes_ago),
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def make_transfer():
    return build_transfer


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def history() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def policy() -> PolicySnapshot:
    return PolicySnapshot(jurisdiction="US", version="test-1")


@pytest.fixture
def policy_provider(policy) -> StaticPolicyProvider:
    return StaticPolicyProvider([policy])


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        source_timeout_seconds=0.2,
        detector_timeout_seconds=0.2,
        overall_deadline_seconds=1.0,
        fan_in_grace_seconds=0.05,
        breaker_failure_threshold=2,
        breaker_window_seconds=60.0,
        breaker_recovery_seconds=30.0,
        audit_retry_attempts=3,
        audit_retry_base_delay=0.0,
        audit_retry_max_delay=0.0,
        batch_concurrency=2,
    )
