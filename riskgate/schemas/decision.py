"""
Decision schemas — terminal, immutable compliance outcomes.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionStatus(StrEnum):
    APPROVED = "APPROVED"
    ESCALATED = "ESCALATED"
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"


class DecisionState(StrEnum):
    COLLECTING = "COLLECTING"
    AGGREGATED = "AGGREGATED"
    DECIDED = "DECIDED"


class DecisionWarning(StrEnum):
    POLICY_MISSING = "policy_missing"
    DEGRADED = "degraded"
    AGGREGATION_FAILED = "aggregation_failed"


class Decision(BaseModel):
    """
    A complete decision object — fully auditable.

    ``status``, ``score`` and ``reasoning`` derive only from the aggregated
    risk and the policy; ids and timestamps are the only per-call values.
    """
    model_config = ConfigDict(frozen=True)

    decision_id: str
    idempotency_key: str
    subject_id: str
    jurisdiction: str
    status: DecisionStatus
    score: float = Field(ge=0, le=100)
    reasoning: str
    policy_version: str
    timestamp: datetime
    tools_used: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    escalation_rules: tuple[str, ...] = ()
    degraded: bool = False
    primary_driver: Optional[str] = None


class DecisionCompletedEvent(BaseModel):
    """Emitted once per fresh (non-cached) decision."""
    model_config = ConfigDict(frozen=True)

    event_type: str = "decision.completed"
    decision_id: str
    idempotency_key: str
    subject_id: str
    status: DecisionStatus
    score: float
    degraded: bool
    emitted_at: datetime
