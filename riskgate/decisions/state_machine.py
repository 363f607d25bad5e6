"""
Decision State Machine — COLLECTING → AGGREGATED → DECIDED.

Threshold mapping (strict order):
  score ≥ block    → BLOCKED
  score ≥ reject   → REJECTED
  score ≥ escalate → ESCALATED
  otherwise        → APPROVED

Escalation rules then decide whether an APPROVED outcome needs human
review. When ANY rule triggers, APPROVED becomes ESCALATED; rules never
soften a BLOCKED or REJECTED outcome. A missing policy is the exception: it
forces ESCALATED whatever the score, since no threshold can be trusted.

Fallback penalties alone never push a decision past ESCALATED: when the
score of the successful findings would not reach reject or block, a
degraded REJECTED or BLOCKED is capped.
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from riskgate.exceptions import InvalidTransitionError
from riskgate.schemas.decision import Decision, DecisionState, DecisionStatus, DecisionWarning
from riskgate.schemas.findings import PatternFinding
from riskgate.schemas.policy import DecisionThresholds, PolicySnapshot
from riskgate.schemas.request import AssessmentRequest
from riskgate.schemas.risk import AggregatedRisk

logger = structlog.get_logger(__name__)

# Score recorded when aggregation itself failed and no policy penalty is known
AGGREGATION_FAILURE_SCORE: float = 50.0

_SEVERITY = [
    DecisionStatus.APPROVED,
    DecisionStatus.ESCALATED,
    DecisionStatus.REJECTED,
    DecisionStatus.BLOCKED,
]


class EscalationRule(BaseModel):
    """One human-in-the-loop rule and whether it fired."""
    model_config = ConfigDict(frozen=True)

    rule_name: str
    triggered: bool
    reason: str


def status_for_score(score: float, thresholds: DecisionThresholds) -> DecisionStatus:
    if score >= thresholds.block:
        return DecisionStatus.BLOCKED
    if score >= thresholds.reject:
        return DecisionStatus.REJECTED
    if score >= thresholds.escalate:
        return DecisionStatus.ESCALATED
    return DecisionStatus.APPROVED


class EscalationEngine:
    """Evaluate escalation rules for an aggregated risk."""

    def evaluate(
        self,
        risk: AggregatedRisk,
        policy: Optional[PolicySnapshot],
    ) -> list[EscalationRule]:
        rules: list[EscalationRule] = []

        # Rule 1: No usable policy
        rules.append(EscalationRule(
            rule_name="policy_missing",
            triggered=policy is None,
            reason="No policy snapshot for jurisdiction",
        ))

        # Rule 2: Some sources fell back to the penalty score
        rules.append(EscalationRule(
            rule_name="degraded_evaluation",
            triggered=risk.degraded,
            reason=f"Sources unavailable: {', '.join(risk.failed_sources) or 'none'}",
        ))

        # Rule 3: A detector is confident on its own
        cutoff = policy.pattern_escalation_probability if policy is not None else 0.5
        strong = [
            f for f in risk.findings
            if isinstance(f, PatternFinding) and not f.failed and f.probability > cutoff
        ]
        rules.append(EscalationRule(
            rule_name="high_risk_pattern",
            triggered=bool(strong),
            reason=(
                "Patterns above {:.2f}: {}".format(
                    cutoff, ", ".join(f"{f.pattern}={f.probability:.2f}" for f in strong)
                )
                if strong else f"No pattern above {cutoff:.2f}"
            ),
        ))

        # Rule 4: Nothing was evaluated at all
        rules.append(EscalationRule(
            rule_name="no_findings",
            triggered=not risk.findings,
            reason="No signal or pattern findings were produced",
        ))

        return rules


def classify(
    risk: AggregatedRisk,
    policy: Optional[PolicySnapshot],
    escalation: Optional[EscalationEngine] = None,
) -> tuple[DecisionStatus, list[EscalationRule], str]:
    """
    Pure mapping (risk, policy) → (status, triggered rules, reasoning).

    Reasoning is a fixed template over the inputs, with no ids or clocks.
    """
    escalation = escalation if escalation is not None else EscalationEngine()
    triggered = [r for r in escalation.evaluate(risk, policy) if r.triggered]

    if policy is None:
        status = DecisionStatus.ESCALATED
        basis = f"Score {risk.score:.2f} evaluated without a jurisdiction policy"
    else:
        status = status_for_score(risk.score, policy.thresholds)
        t = policy.thresholds
        basis = (
            f"Score {risk.score:.2f} against thresholds "
            f"escalate {t.escalate:g} / reject {t.reject:g} / block {t.block:g} "
            f"(policy {policy.jurisdiction} v{policy.version}) -> {status.value}"
        )
        if status == DecisionStatus.APPROVED and triggered:
            status = DecisionStatus.ESCALATED

    capped_from = None
    if policy is not None and risk.degraded and risk.observed_score is not None:
        observed = status_for_score(risk.observed_score, policy.thresholds)
        ceiling = max(observed, DecisionStatus.ESCALATED, key=_SEVERITY.index)
        if _SEVERITY.index(status) > _SEVERITY.index(ceiling):
            capped_from, status = status, ceiling

    parts = [basis]
    if capped_from is not None:
        parts.append(
            f"Capped at {status.value}: observed score {risk.observed_score:.2f}, "
            f"{capped_from.value} reached only through fallback penalties"
        )
    if risk.floor_source:
        parts.append(f"Floor applied from {risk.floor_source}")
    if risk.primary_driver:
        parts.append(f"Primary driver: {risk.primary_driver}")
    if triggered:
        parts.append("Escalation rules: " + "; ".join(f"{r.rule_name} ({r.reason})" for r in triggered))
    return status, triggered, ". ".join(parts)


class DecisionStateMachine:
    """
    Lifecycle of one request's decision.

    Each transition fires exactly once; driving the machine out of order
    raises InvalidTransitionError. The resulting Decision is frozen.
    """

    def __init__(
        self,
        request: AssessmentRequest,
        escalation: Optional[EscalationEngine] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.request = request
        self.escalation = escalation if escalation is not None else EscalationEngine()
        self._clock = clock
        self._state = DecisionState.COLLECTING
        self._risk: Optional[AggregatedRisk] = None
        self._policy: Optional[PolicySnapshot] = None
        self._failure: Optional[str] = None
        self._decision: Optional[Decision] = None

    @property
    def state(self) -> DecisionState:
        return self._state

    @property
    def decision(self) -> Optional[Decision]:
        return self._decision

    def _transition(self, expected: DecisionState, target: DecisionState) -> None:
        if self._state != expected:
            raise InvalidTransitionError(self._state.value, target.value)
        self._state = target

    def mark_aggregated(self, risk: AggregatedRisk, policy: Optional[PolicySnapshot]) -> None:
        """Orchestration returned. ``policy`` is None when it was missing."""
        self._transition(DecisionState.COLLECTING, DecisionState.AGGREGATED)
        self._risk = risk
        self._policy = policy

    def mark_failed(self, reason: str, policy: Optional[PolicySnapshot] = None) -> None:
        """Aggregation could not produce a risk at all."""
        self._transition(DecisionState.COLLECTING, DecisionState.AGGREGATED)
        self._failure = reason
        self._policy = policy

    def decide(self) -> Decision:
        self._transition(DecisionState.AGGREGATED, DecisionState.DECIDED)

        if self._failure is not None:
            decision = self._failed_decision()
        else:
            decision = self._scored_decision()

        self._decision = decision
        logger.info(
            "decision_made",
            decision_id=decision.decision_id,
            status=decision.status.value,
            score=decision.score,
            escalation_rules=list(decision.escalation_rules),
            degraded=decision.degraded,
        )
        return decision

    def _scored_decision(self) -> Decision:
        risk = self._risk
        policy = self._policy
        status, triggered, reasoning = classify(risk, policy, self.escalation)

        warnings: list[str] = []
        if policy is None:
            warnings.append(DecisionWarning.POLICY_MISSING.value)
        if risk.degraded:
            warnings.append(DecisionWarning.DEGRADED.value)

        return Decision(
            decision_id=f"dec_{uuid.uuid4().hex[:16]}",
            idempotency_key=self.request.idempotency_key,
            subject_id=self.request.subject_id,
            jurisdiction=self.request.jurisdiction,
            status=status,
            score=risk.score,
            reasoning=reasoning,
            policy_version=policy.version if policy is not None else "missing",
            timestamp=self._clock(),
            tools_used=tuple(f.name for f in risk.findings),
            warnings=tuple(warnings),
            escalation_rules=tuple(r.rule_name for r in triggered),
            degraded=risk.degraded,
            primary_driver=risk.primary_driver,
        )

    def _failed_decision(self) -> Decision:
        policy = self._policy
        score = policy.fallback_penalty if policy is not None else AGGREGATION_FAILURE_SCORE
        warnings = [DecisionWarning.AGGREGATION_FAILED.value]
        if policy is None:
            warnings.append(DecisionWarning.POLICY_MISSING.value)
        return Decision(
            decision_id=f"dec_{uuid.uuid4().hex[:16]}",
            idempotency_key=self.request.idempotency_key,
            subject_id=self.request.subject_id,
            jurisdiction=self.request.jurisdiction,
            status=DecisionStatus.ESCALATED,
            score=score,
            reasoning=f"Evaluation failed, escalated for manual review: {self._failure}",
            policy_version=policy.version if policy is not None else "missing",
            timestamp=self._clock(),
            warnings=tuple(warnings),
            escalation_rules=("aggregation_failed",),
            degraded=True,
        )
