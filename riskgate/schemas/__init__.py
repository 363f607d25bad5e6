"""
RiskGate data model.

Requests, findings, aggregated risk, decisions, audit records and policy
snapshots. All value objects are frozen pydantic models.
"""

from riskgate.schemas.audit import AuditRecord, canonical_hash
from riskgate.schemas.decision import (
    Decision,
    DecisionCompletedEvent,
    DecisionState,
    DecisionStatus,
    DecisionWarning,
)
from riskgate.schemas.findings import (
    INSUFFICIENT_DATA,
    Finding,
    PatternFinding,
    Severity,
    SignalFinding,
)
from riskgate.schemas.policy import (
    DecisionThresholds,
    DetectorParameters,
    FieldRule,
    PolicySnapshot,
    ValidationResult,
)
from riskgate.schemas.request import AssessmentRequest, TransactionContext, Transfer
from riskgate.schemas.risk import AggregatedRisk, FactorContribution

__all__ = [
    "AggregatedRisk",
    "AssessmentRequest",
    "AuditRecord",
    "Decision",
    "DecisionCompletedEvent",
    "DecisionState",
    "DecisionStatus",
    "DecisionThresholds",
    "DecisionWarning",
    "DetectorParameters",
    "FactorContribution",
    "FieldRule",
    "Finding",
    "INSUFFICIENT_DATA",
    "PatternFinding",
    "PolicySnapshot",
    "Severity",
    "SignalFinding",
    "TransactionContext",
    "Transfer",
    "ValidationResult",
    "canonical_hash",
]
