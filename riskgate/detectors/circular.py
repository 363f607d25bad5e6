"""
Circular transfer (round-tripping) detection.
"""

from datetime import timedelta

from riskgate.detectors.base import PatternDetector, current_transfer, grade
from riskgate.providers.base import HistoryStore
from riskgate.schemas.findings import PatternFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest


class CircularTransferDetector(PatternDetector):
    """
    Ratio of transfers coming back to the sender from its first-hop
    recipients over the number of distinct first-hop recipients.
    """

    name = "circular_transfer"
    description = "Funds returning to origin through first-hop recipients"

    async def detect(
        self,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        history: HistoryStore,
    ) -> PatternFinding:
        params = policy.detectors.circular
        sender = request.context.sender
        now = request.context.timestamp
        since = now - timedelta(days=params.lookback_days)

        outbound = await history.transfers_from(sender, since, now)
        inbound = await history.transfers_to(sender, since, now)
        if not outbound and not inbound:
            return self.insufficient_data("No transfer history for sender in lookback")

        first_hop = {t.recipient for t in outbound + [current_transfer(request)]}
        first_hop.discard(sender)
        if not first_hop:
            return self.insufficient_data("No first-hop recipients")

        back = [t for t in inbound if t.sender in first_hop]
        probability = min(len(back) / len(first_hop), 1.0)

        if back:
            description = (
                f"{len(back)} transfers returned from "
                f"{len({t.sender for t in back})} of {len(first_hop)} recipients"
            )
        else:
            description = "No circular flows"

        return self.finding(
            probability,
            grade(probability, 0.4, 0.1),
            {"return_ratio": probability},
            description,
        )
