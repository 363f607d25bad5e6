"""
Decision Engine — request in, auditable decision out.

Pipeline:
1. Validate the request
2. Return the cached decision for the idempotency key, if any
3. Fan out to providers and detectors, aggregate
4. Drive the state machine to a terminal Decision
5. Append the audit record (retrying)
6. Cache the decision
7. Publish the decision-completed event
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence, Union

import structlog
from pydantic import ValidationError

from riskgate.config import Settings, settings as default_settings
from riskgate.decisions.state_machine import DecisionStateMachine, EscalationEngine
from riskgate.detectors import default_detectors
from riskgate.detectors.base import PatternDetector
from riskgate.exceptions import CacheUnavailableError, RequestValidationError, RiskGateError
from riskgate.providers.base import HistoryStore, PolicyProvider, SignalProvider
from riskgate.schemas.audit import AuditRecord
from riskgate.schemas.decision import Decision, DecisionCompletedEvent
from riskgate.schemas.request import AssessmentRequest
from riskgate.services.audit import AuditWriter, InMemoryAuditSink
from riskgate.services.cache import InMemoryResultCache, ResultCache
from riskgate.services.events import DecisionEventBus
from riskgate.services.orchestrator import OrchestrationResult, SignalOrchestrator
from riskgate.services.resilience import CircuitBreakerRegistry

logger = structlog.get_logger(__name__)

RequestLike = Union[AssessmentRequest, dict[str, Any]]


@dataclass(frozen=True)
class BatchItem:
    """Outcome of one request in a batch: a decision or a validation error."""
    index: int
    decision: Optional[Decision] = None
    error: Optional[RequestValidationError] = None

    @property
    def ok(self) -> bool:
        return self.decision is not None


def coerce_request(request: RequestLike) -> AssessmentRequest:
    """Validate raw input into an AssessmentRequest."""
    if isinstance(request, AssessmentRequest):
        return request
    try:
        return AssessmentRequest.model_validate(request)
    except ValidationError as e:
        raise RequestValidationError(
            "Invalid assessment request",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def _audit_notes(result: OrchestrationResult, decision: Decision) -> tuple[str, ...]:
    notes: list[str] = []
    if result.policy_missing:
        notes.append(f"policy missing: {result.error.message}")
    if result.risk is None:
        notes.append(f"aggregation failed: {result.error.message if result.error else 'unknown'}")
    elif result.risk.degraded:
        notes.append(
            "degraded mode: fallback penalty applied for "
            + ", ".join(result.risk.failed_sources)
        )
    if result.risk is not None and result.risk.floor_source:
        notes.append(f"score floor applied from {result.risk.floor_source}")
    if decision.escalation_rules:
        notes.append("escalation rules: " + ", ".join(decision.escalation_rules))
    return tuple(notes)


class DecisionEngine:
    """
    Unified compliance decision engine.

    Concurrent calls sharing an idempotency key are collapsed onto one
    evaluation, so providers are invoked once per key within the cache TTL.
    """

    def __init__(
        self,
        orchestrator: SignalOrchestrator,
        cache: Optional[ResultCache] = None,
        audit: Optional[AuditWriter] = None,
        events: Optional[DecisionEventBus] = None,
        escalation: Optional[EscalationEngine] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.orchestrator = orchestrator
        if cache is None:
            cache = InMemoryResultCache.from_settings(self.config)
        if audit is None:
            audit = AuditWriter.from_settings(InMemoryAuditSink(), self.config)
        self.cache = cache
        self.audit = audit
        self.events = events if events is not None else DecisionEventBus()
        self.escalation = escalation if escalation is not None else EscalationEngine()
        self._inflight: dict[str, asyncio.Future] = {}

    @classmethod
    def create(
        cls,
        policy_provider: PolicyProvider,
        providers: Sequence[SignalProvider] = (),
        detectors: Optional[Sequence[PatternDetector]] = None,
        history: Optional[HistoryStore] = None,
        cache: Optional[ResultCache] = None,
        audit: Optional[AuditWriter] = None,
        events: Optional[DecisionEventBus] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        config: Optional[Settings] = None,
    ) -> "DecisionEngine":
        """Wire an engine with the five standard detectors unless told otherwise."""
        config = config or default_settings
        orchestrator = SignalOrchestrator(
            policy_provider=policy_provider,
            providers=providers,
            detectors=default_detectors(policy_provider) if detectors is None else detectors,
            history=history,
            breakers=breakers,
            config=config,
        )
        return cls(orchestrator, cache=cache, audit=audit, events=events, config=config)

    async def assess(self, request: RequestLike) -> Decision:
        """
        Evaluate one request.

        Only RequestValidationError propagates. Source, policy, cache and
        audit failures are absorbed and show up on the Decision.
        """
        req = coerce_request(request)
        self.orchestrator.select(req.checks)

        structlog.contextvars.bind_contextvars(
            idempotency_key=req.idempotency_key,
            subject_id=req.subject_id,
        )
        try:
            cached = await self._cache_get(req.idempotency_key)
            if cached is not None:
                logger.info("decision_cache_hit", decision_id=cached.decision_id)
                return cached
            return await self._single_flight(req)
        finally:
            structlog.contextvars.unbind_contextvars("idempotency_key", "subject_id")

    async def assess_batch(
        self,
        requests: Iterable[RequestLike],
        concurrency: Optional[int] = None,
    ) -> list[BatchItem]:
        """
        Evaluate many requests with bounded concurrency, preserving order.

        A request that fails validation yields its error; one whose
        evaluation raises unexpectedly yields an ESCALATED decision.
        """
        limit = max(1, concurrency or self.config.batch_concurrency)
        semaphore = asyncio.Semaphore(limit)

        async def run(index: int, raw: RequestLike) -> BatchItem:
            try:
                req = coerce_request(raw)
                self.orchestrator.select(req.checks)
            except RequestValidationError as e:
                return BatchItem(index=index, error=e)
            async with semaphore:
                try:
                    return BatchItem(index=index, decision=await self.assess(req))
                except RequestValidationError as e:
                    return BatchItem(index=index, error=e)
                except Exception as e:
                    logger.exception("batch_item_failed", index=index)
                    return BatchItem(index=index, decision=self._error_decision(req, e))

        items = await asyncio.gather(*(run(i, r) for i, r in enumerate(requests)))
        logger.info(
            "batch_complete",
            total=len(items),
            failed_validation=sum(1 for i in items if i.error is not None),
        )
        return list(items)

    # ── internals ──────────────────────────────────────────────────────

    async def _single_flight(self, req: AssessmentRequest) -> Decision:
        key = req.idempotency_key
        existing = self._inflight.get(key)
        if existing is not None:
            logger.info("decision_joined_inflight")
            return await asyncio.shield(existing)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            decision = await self._evaluate(req)
        except BaseException as e:
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(e)
                # followers may not exist; mark the exception as retrieved
                future.exception()
            raise
        else:
            future.set_result(decision)
            return decision
        finally:
            self._inflight.pop(key, None)

    async def _evaluate(self, req: AssessmentRequest) -> Decision:
        machine = DecisionStateMachine(req, escalation=self.escalation)
        result = await self.orchestrator.execute(req)

        if result.risk is None:
            machine.mark_failed(str(result.error), result.policy)
        else:
            machine.mark_aggregated(result.risk, result.policy)
        decision = machine.decide()

        record = AuditRecord.create(
            decision,
            req.model_dump(mode="json"),
            notes=_audit_notes(result, decision),
        )
        await self.audit.write(record)

        await self._cache_put(req.idempotency_key, decision)
        await self.events.publish(DecisionCompletedEvent(
            decision_id=decision.decision_id,
            idempotency_key=decision.idempotency_key,
            subject_id=decision.subject_id,
            status=decision.status,
            score=decision.score,
            degraded=decision.degraded,
            emitted_at=datetime.now(timezone.utc),
        ))
        return decision

    def _error_decision(self, req: AssessmentRequest, error: Exception) -> Decision:
        machine = DecisionStateMachine(req, escalation=self.escalation)
        reason = error.message if isinstance(error, RiskGateError) else f"{type(error).__name__}: {error}"
        machine.mark_failed(reason)
        return machine.decide()

    async def _cache_get(self, key: str) -> Optional[Decision]:
        try:
            return await self.cache.get(key)
        except CacheUnavailableError as e:
            logger.warning("cache_unavailable_treated_as_miss", error=e.message)
            return None

    async def _cache_put(self, key: str, decision: Decision) -> None:
        try:
            await self.cache.put(key, decision, ttl=self.config.cache_ttl_seconds)
        except CacheUnavailableError as e:
            logger.warning("cache_put_skipped", error=e.message)
