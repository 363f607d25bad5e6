"""
RiskGate Exceptions.

Centralized exception definitions with error codes.

Only RequestValidationError ever reaches the caller of DecisionEngine.assess.
Every other error is recovered inside the pipeline and shows up on the
Decision as a warning or an escalation.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Engine error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    INVALID_TRANSITION = "E1002"

    # Source errors (5xxx)
    PROVIDER_UNAVAILABLE = "E5000"
    CIRCUIT_BREAKER_OPEN = "E5001"
    TIMEOUT_ERROR = "E5002"

    # Policy errors (6xxx)
    POLICY_MISSING = "E6000"
    POLICY_INVALID = "E6001"

    # Storage errors (7xxx)
    CACHE_UNAVAILABLE = "E7000"
    AUDIT_WRITE_FAILED = "E7001"


class RiskGateError(Exception):
    """Base exception for RiskGate."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class RequestValidationError(RiskGateError):
    """Malformed assessment request. Raised before orchestration starts."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.VALIDATION_ERROR, details=details)


class ProviderUnavailableError(RiskGateError):
    """A signal source failed or timed out."""

    def __init__(self, source: str, reason: str):
        super().__init__(
            f"Source '{source}' unavailable: {reason}",
            code=ErrorCode.PROVIDER_UNAVAILABLE,
            details={"source": source, "reason": reason},
        )
        self.source = source
        self.reason = reason


class CircuitOpenError(RiskGateError):
    """Raised when a circuit breaker is open and rejects a call."""

    def __init__(self, breaker: str, message: Optional[str] = None):
        super().__init__(
            message or f"Circuit breaker '{breaker}' is OPEN",
            code=ErrorCode.CIRCUIT_BREAKER_OPEN,
            details={"breaker": breaker},
        )
        self.breaker = breaker


class PolicyMissingError(RiskGateError):
    """No PolicySnapshot could be obtained for a jurisdiction."""

    def __init__(self, jurisdiction: str, reason: str = "not found"):
        super().__init__(
            f"No policy for jurisdiction '{jurisdiction}': {reason}",
            code=ErrorCode.POLICY_MISSING,
            details={"jurisdiction": jurisdiction, "reason": reason},
        )
        self.jurisdiction = jurisdiction


class PolicyInvalidError(RiskGateError):
    """A policy document failed structural validation while loading."""

    def __init__(self, jurisdiction: str, reason: str):
        super().__init__(
            f"Invalid policy for '{jurisdiction}': {reason}",
            code=ErrorCode.POLICY_INVALID,
            details={"jurisdiction": jurisdiction, "reason": reason},
        )


class CacheUnavailableError(RiskGateError):
    """Result cache backend is unreachable. Callers treat it as a miss."""

    def __init__(self, reason: str):
        super().__init__(
            f"Result cache unavailable: {reason}",
            code=ErrorCode.CACHE_UNAVAILABLE,
            details={"reason": reason},
        )


class AuditWriteError(RiskGateError):
    """Audit sink rejected or failed to persist a record."""

    def __init__(self, record_id: str, reason: str):
        super().__init__(
            f"Audit write failed for {record_id}: {reason}",
            code=ErrorCode.AUDIT_WRITE_FAILED,
            details={"record_id": record_id, "reason": reason},
        )
        self.record_id = record_id


class InvalidTransitionError(RiskGateError):
    """Decision state machine was driven out of order."""

    def __init__(self, current: str, attempted: str):
        super().__init__(
            f"Cannot transition from {current} to {attempted}",
            code=ErrorCode.INVALID_TRANSITION,
            details={"current": current, "attempted": attempted},
        )
