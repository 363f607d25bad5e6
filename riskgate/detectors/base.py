"""
Pattern detector base class and shared helpers.

A detector inspects the request plus transfer history and returns one
PatternFinding. "Now" is always the transaction timestamp so a replayed
request scores the same as the original. Missing history is not an error:
the detector reports probability 0 with an ``insufficient_data`` note.
"""

from abc import ABC, abstractmethod
from typing import Optional

from riskgate.providers.base import HistoryStore
from riskgate.schemas.findings import INSUFFICIENT_DATA, PatternFinding, Severity
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest, Transfer


class PatternDetector(ABC):
    """Base class for AML pattern detectors."""

    name: str = "pattern"
    description: str = ""
    timeout_seconds: Optional[float] = None

    @abstractmethod
    async def detect(
        self,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        history: HistoryStore,
    ) -> PatternFinding:
        """Score the request against this typology."""

    def insufficient_data(self, reason: str) -> PatternFinding:
        return PatternFinding(
            pattern=self.name,
            probability=0.0,
            severity=Severity.LOW,
            description=reason,
            notes=(INSUFFICIENT_DATA,),
        )

    def finding(
        self,
        probability: float,
        severity: Severity,
        features: dict[str, float],
        description: str,
    ) -> PatternFinding:
        return PatternFinding(
            pattern=self.name,
            probability=round(min(max(probability, 0.0), 1.0), 4),
            severity=severity,
            features={k: round(v, 4) for k, v in features.items() if v > 0},
            description=description,
        )


def current_transfer(request: AssessmentRequest) -> Transfer:
    """The transaction under assessment, in history form."""
    ctx = request.context
    return Transfer(
        transfer_id=ctx.transaction_id or f"pending:{request.idempotency_key}",
        sender=ctx.sender,
        recipient=ctx.recipient,
        amount=ctx.amount,
        timestamp=ctx.timestamp,
        asset=ctx.asset,
    )


def grade(probability: float, high: float, medium: float) -> Severity:
    """Two-cut severity used by most detectors."""
    if probability > high:
        return Severity.HIGH
    if probability > medium:
        return Severity.MEDIUM
    return Severity.LOW
