"""
Signal Orchestrator — parallel fan-out to every selected source.

Flow per request:
  1. Fetch the jurisdiction's PolicySnapshot, drawing on the same time
     budget as the fan-out so a slow policy store cannot extend the request
  2. One task per Signal Provider / Pattern Detector, each behind its own
     circuit breaker and timeout
  3. Fan-in bounded by the largest per-source timeout (or the deadline),
     measured from the start of the request; stragglers are cancelled and
     scored as timeouts
  4. Fold findings in configured order and aggregate

Source failures never escape: they become findings with no contribution,
which the aggregator replaces with the policy's fallback penalty.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import structlog

from riskgate.config import Settings, settings as default_settings
from riskgate.detectors.base import PatternDetector
from riskgate.engine.aggregator import RiskAggregator
from riskgate.exceptions import (
    CircuitOpenError,
    PolicyMissingError,
    RequestValidationError,
    RiskGateError,
)
from riskgate.providers.base import HistoryStore, PolicyProvider, SignalProvider
from riskgate.providers.history import InMemoryHistoryStore
from riskgate.schemas.findings import Finding, PatternFinding, SignalFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest
from riskgate.schemas.risk import AggregatedRisk
from riskgate.services.resilience import (
    SINGLE_ATTEMPT,
    CircuitBreakerRegistry,
    retry_with_backoff,
)

logger = structlog.get_logger(__name__)

Source = Union[SignalProvider, PatternDetector]

TIMEOUT = "timeout"
CIRCUIT_OPEN = "circuit_open"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class OrchestrationResult:
    """
    Explicit outcome of one fan-out.

    ``policy`` is None when the jurisdiction had no usable snapshot; the
    risk was then scored against built-in defaults and ``error`` holds the
    PolicyMissingError. ``risk`` is None only if aggregation itself failed.
    """
    risk: Optional[AggregatedRisk]
    policy: Optional[PolicySnapshot]
    findings: tuple = field(default_factory=tuple)
    error: Optional[RiskGateError] = None

    @property
    def policy_missing(self) -> bool:
        return isinstance(self.error, PolicyMissingError)


def _consume_result(task: asyncio.Task) -> None:
    # Cancelled stragglers are never awaited; retrieve their outcome so the
    # loop does not log "exception was never retrieved".
    if not task.cancelled():
        task.exception()


def _unavailable(source: Source, error: str) -> Finding:
    if isinstance(source, PatternDetector):
        return PatternFinding.unavailable(source.name, error)
    return SignalFinding.unavailable(source.name, error)


class SignalOrchestrator:
    """Fan out one request to providers and detectors and aggregate the result."""

    def __init__(
        self,
        policy_provider: PolicyProvider,
        providers: Sequence[SignalProvider] = (),
        detectors: Sequence[PatternDetector] = (),
        history: Optional[HistoryStore] = None,
        aggregator: Optional[RiskAggregator] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.policy_provider = policy_provider
        self.providers = list(providers)
        self.detectors = list(detectors)
        self.history = history if history is not None else InMemoryHistoryStore()
        self.aggregator = aggregator if aggregator is not None else RiskAggregator()
        if breakers is None:
            breakers = CircuitBreakerRegistry.from_settings(self.config)
        self.breakers = breakers

        names = [s.name for s in self.sources]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate source names: {', '.join(duplicates)}")

    @property
    def sources(self) -> list[Source]:
        """Configured order: providers first, then detectors."""
        return [*self.providers, *self.detectors]

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self.sources]

    def select(self, checks: Optional[Sequence[str]]) -> list[Source]:
        """Sources named by ``checks`` in configured order; all when None."""
        if checks is None:
            return self.sources
        known = set(self.source_names)
        unknown = [c for c in checks if c not in known]
        if unknown:
            raise RequestValidationError(
                f"Unknown checks: {', '.join(unknown)}",
                details={"unknown": unknown, "available": self.source_names},
            )
        wanted = set(checks)
        return [s for s in self.sources if s.name in wanted]

    def _timeout_for(self, source: Source) -> float:
        if source.timeout_seconds is not None:
            return source.timeout_seconds
        if isinstance(source, PatternDetector):
            return self.config.detector_timeout_seconds
        return self.config.source_timeout_seconds

    async def _fetch_policy(
        self, jurisdiction: str, timeout: float
    ) -> tuple[Optional[PolicySnapshot], Optional[PolicyMissingError]]:
        try:
            policy = await asyncio.wait_for(
                self.policy_provider.get_policy(jurisdiction), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("policy_fetch_timeout", jurisdiction=jurisdiction)
            return None, PolicyMissingError(jurisdiction, reason=TIMEOUT)
        except Exception as e:
            logger.warning("policy_fetch_failed", jurisdiction=jurisdiction, error=str(e))
            return None, PolicyMissingError(jurisdiction, reason=str(e))

        if policy is None:
            logger.warning("policy_missing", jurisdiction=jurisdiction)
            return None, PolicyMissingError(jurisdiction)
        return policy, None

    async def _invoke(self, source: Source, request: AssessmentRequest, policy: PolicySnapshot):
        if isinstance(source, PatternDetector):
            return await source.detect(request, policy, self.history)
        return await retry_with_backoff(
            lambda: source.assess(request.subject_id, request.context),
            policy=source.retry_policy or SINGLE_ATTEMPT,
            operation_name=f"source:{source.name}",
        )

    def _conform(self, source: Source, finding) -> Finding:
        """Reject malformed output and pin the finding to the source's name."""
        if isinstance(source, PatternDetector):
            if not isinstance(finding, PatternFinding):
                raise TypeError(f"detector returned {type(finding).__name__}")
            if finding.pattern != source.name:
                finding = finding.model_copy(update={"pattern": source.name})
        else:
            if not isinstance(finding, SignalFinding):
                raise TypeError(f"provider returned {type(finding).__name__}")
            if finding.source != source.name:
                finding = finding.model_copy(update={"source": source.name})
        return finding

    async def _run_source(
        self,
        source: Source,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        timeout: float,
    ) -> Finding:
        breaker = self.breakers.get(source.name)
        try:
            breaker.allow()
        except CircuitOpenError:
            logger.info("source_short_circuited", source=source.name)
            return _unavailable(source, CIRCUIT_OPEN)

        try:
            raw = await asyncio.wait_for(self._invoke(source, request, policy), timeout=timeout)
            finding = self._conform(source, raw)
        except asyncio.TimeoutError:
            breaker.record_failure()
            logger.warning("source_timeout", source=source.name, timeout=timeout)
            return _unavailable(source, TIMEOUT)
        except asyncio.CancelledError:
            breaker.record_failure()
            raise
        except Exception as e:
            breaker.record_failure()
            logger.warning(
                "source_failed",
                source=source.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return _unavailable(source, f"{type(e).__name__}: {e}")

        if finding.failed:
            breaker.record_failure()
        else:
            breaker.record_success()
        return finding

    async def execute(self, request: AssessmentRequest) -> OrchestrationResult:
        """
        Evaluate one request.

        Raises RequestValidationError for unknown checks before any source
        runs. Everything else is reported through the returned result.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = request.deadline_seconds or self.config.overall_deadline_seconds

        selected = self.select(request.checks)

        # Policy fetch and fan-out share one budget: the largest per-source
        # timeout, never more than the deadline.
        source_timeouts = [self._timeout_for(s) for s in selected]
        budget = min(max(source_timeouts, default=deadline), deadline)

        policy_timeout = min(self.config.policy_timeout_seconds, budget)
        policy, error = await self._fetch_policy(request.jurisdiction, policy_timeout)
        effective = policy or PolicySnapshot.fallback(request.jurisdiction)

        remaining = max(budget - (loop.time() - started), 0.0)
        timeouts = [min(t, remaining) for t in source_timeouts]

        tasks: list[asyncio.Task] = [
            asyncio.ensure_future(self._run_source(s, request, effective, t))
            for s, t in zip(selected, timeouts)
        ]

        if tasks:
            bound = max(timeouts) + self.config.fan_in_grace_seconds
            _, pending = await asyncio.wait(tasks, timeout=bound)
            for task in pending:
                task.cancel()
                task.add_done_callback(_consume_result)
            if pending:
                logger.warning(
                    "fan_in_bound_reached",
                    pending=[s.name for s, t in zip(selected, tasks) if t in pending],
                    bound=round(bound, 3),
                )

        findings: list[Finding] = []
        for source, task in zip(selected, tasks):
            if not task.done() or task.cancelled():
                findings.append(_unavailable(source, TIMEOUT))
            elif task.exception() is not None:
                findings.append(_unavailable(source, CANCELLED))
            else:
                findings.append(task.result())

        try:
            risk = self.aggregator.aggregate(findings, effective)
        except Exception as e:
            logger.exception("aggregation_failed", jurisdiction=request.jurisdiction)
            return OrchestrationResult(
                risk=None,
                policy=policy,
                findings=tuple(findings),
                error=RiskGateError(f"Aggregation failed: {e}"),
            )

        logger.info(
            "orchestration_complete",
            jurisdiction=request.jurisdiction,
            sources=len(selected),
            failed=list(risk.failed_sources),
            score=risk.score,
            policy_missing=error is not None,
            duration_ms=round((loop.time() - started) * 1000, 1),
        )
        return OrchestrationResult(risk=risk, policy=policy, findings=tuple(findings), error=error)
