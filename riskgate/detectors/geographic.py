"""
Geographic risk detection.

Destination jurisdiction against the policy's high/medium risk lists, plus a
cross-border surcharge. Jurisdictions come from the transaction context
first, then from the PolicyProvider's party lookup.
"""

from typing import Optional

from riskgate.detectors.base import PatternDetector
from riskgate.providers.base import HistoryStore, PolicyProvider
from riskgate.schemas.findings import PatternFinding, Severity
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest


def _severity(probability: float) -> Severity:
    if probability > 0.7:
        return Severity.CRITICAL
    if probability > 0.3:
        return Severity.HIGH
    return Severity.LOW


class GeographicDetector(PatternDetector):

    name = "geographic"
    description = "Transfer to a high-risk or cross-border jurisdiction"

    def __init__(self, resolver: Optional[PolicyProvider] = None):
        self.resolver = resolver

    async def _jurisdiction(self, explicit: Optional[str], party: str) -> Optional[str]:
        if explicit:
            return explicit
        if self.resolver is None:
            return None
        code = await self.resolver.resolve_jurisdiction(party)
        return code.upper() if code else None

    async def detect(
        self,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        history: HistoryStore,
    ) -> PatternFinding:
        params = policy.detectors.geographic
        ctx = request.context

        origin = await self._jurisdiction(ctx.sender_jurisdiction, ctx.sender)
        destination = await self._jurisdiction(ctx.recipient_jurisdiction, ctx.recipient)
        if origin is None and destination is None:
            return self.insufficient_data("Jurisdiction unknown for both parties")

        features: dict[str, float] = {}
        notes = []
        if destination in policy.high_risk_jurisdictions:
            features["high_risk_jurisdiction"] = params.weight_high_risk
            notes.append(f"high-risk destination {destination}")
        elif destination in policy.medium_risk_jurisdictions:
            features["medium_risk_jurisdiction"] = params.weight_medium_risk
            notes.append(f"elevated-risk destination {destination}")

        if origin and destination and origin != destination:
            features["cross_border"] = params.weight_cross_border
            notes.append(f"cross-border {origin}->{destination}")

        probability = min(sum(features.values()), 1.0)
        description = "; ".join(notes) if notes else "Geographic risk acceptable"
        return self.finding(probability, _severity(probability), features, description)
