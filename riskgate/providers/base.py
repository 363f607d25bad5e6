"""
External collaborator contracts.

Vendor adapters (KYC, AML, sanctions/PEP screening) implement SignalProvider
outside the core and translate their payloads into a SignalFinding at the
boundary. Policy loading and transfer history sit behind PolicyProvider and
HistoryStore so the engine never touches global or filesystem state directly.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from riskgate.schemas.findings import SignalFinding
from riskgate.schemas.policy import PolicySnapshot, ValidationResult
from riskgate.schemas.request import TransactionContext, Transfer
from riskgate.services.resilience import RetryPolicy


class SignalProvider(ABC):
    """
    One identity / risk source.

    Implementations must be idempotent for identical input and should honour
    cancellation: the orchestrator cancels calls that outlive their timeout.
    """

    name: str = "signal"
    timeout_seconds: Optional[float] = None
    retry_policy: Optional[RetryPolicy] = None

    @abstractmethod
    async def assess(self, subject_id: str, context: TransactionContext) -> SignalFinding:
        """Score one subject/transaction. Contribution is 0-100."""


class PolicyProvider(ABC):
    """Supplies jurisdiction-specific PolicySnapshots."""

    @abstractmethod
    async def get_policy(self, jurisdiction: str) -> Optional[PolicySnapshot]:
        """Return the active snapshot, or None when the jurisdiction has none."""

    async def resolve_jurisdiction(self, party_id: str) -> Optional[str]:
        """Map a party (wallet, account) to its KYC jurisdiction, if known."""
        return None

    async def validate_structural_rule(
        self,
        rule_set: str,
        data: dict[str, Any],
        jurisdiction: Optional[str] = None,
    ) -> ValidationResult:
        """
        Check ``data`` against a named rule set of the jurisdiction's policy.

        The jurisdiction defaults to ``data["jurisdiction"]``. A policy with no
        such rule set accepts the data with a warning.
        """
        code = (jurisdiction or data.get("jurisdiction") or "").upper()
        if not code:
            return ValidationResult(is_valid=False, violations=("jurisdiction is required",))

        policy = await self.get_policy(code)
        if policy is None:
            return ValidationResult(
                is_valid=False,
                violations=(f"no policy for jurisdiction {code}",),
            )

        rules = policy.structural_rules.get(rule_set)
        if rules is None:
            return ValidationResult(
                is_valid=True,
                warnings=(f"rule set '{rule_set}' not defined for {code}",),
            )

        violations: list[str] = []
        for field_name, rule in rules.items():
            value = data.get(field_name)
            if value is None:
                if rule.required:
                    violations.append(f"{field_name} is required")
                continue
            if rule.min is not None and isinstance(value, (int, float)) and value < rule.min:
                violations.append(f"{field_name} {value} below minimum {rule.min}")
            if rule.max is not None and isinstance(value, (int, float)) and value > rule.max:
                violations.append(f"{field_name} {value} exceeds maximum {rule.max}")
            if rule.allowed is not None:
                values = value if isinstance(value, (list, tuple, set)) else [value]
                if not any(str(v) in rule.allowed for v in values):
                    violations.append(
                        f"{field_name} [{', '.join(str(v) for v in values)}] not allowed. "
                        f"Allowed: [{', '.join(rule.allowed)}]"
                    )

        return ValidationResult(is_valid=not violations, violations=tuple(violations))


class HistoryStore(ABC):
    """Read-only access to completed transfers."""

    @abstractmethod
    async def transfers_from(
        self, party: str, since: datetime, until: Optional[datetime] = None
    ) -> list[Transfer]:
        """Transfers sent by ``party`` with since <= timestamp < until, oldest first."""

    @abstractmethod
    async def transfers_to(
        self, party: str, since: datetime, until: Optional[datetime] = None
    ) -> list[Transfer]:
        """Transfers received by ``party`` with since <= timestamp < until, oldest first."""
