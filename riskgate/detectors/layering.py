"""
Layering detection.

Funds split across many fresh recipients in a short burst, often with one
leg large enough to suggest conversion to fiat.
"""

from datetime import timedelta

import structlog

from riskgate.detectors.base import PatternDetector, current_transfer, grade
from riskgate.providers.base import HistoryStore
from riskgate.schemas.findings import PatternFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest

logger = structlog.get_logger(__name__)


class LayeringDetector(PatternDetector):
    """
    Signals (probability is their sum, capped at 1.0):
    - rapid_succession: ≥2 transfers in the window to ≥N distinct recipients
    - fiat_conversion: a recipient unseen in the novelty lookback appears and
      some window transfer reaches the reporting threshold
    - transfer_burst: more than ``burst_count`` transfers in the lookback
    """

    name = "layering"
    description = "Rapid fan-out to novel recipients"

    async def detect(
        self,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        history: HistoryStore,
    ) -> PatternFinding:
        params = policy.detectors.layering
        now = request.context.timestamp
        window_start = now - timedelta(minutes=params.window_minutes)
        lookback_start = now - timedelta(hours=params.lookback_hours)
        earliest = min(
            window_start,
            lookback_start,
            now - timedelta(days=params.novelty_lookback_days),
        )

        past = await history.transfers_from(request.context.sender, earliest, now)
        if not past:
            return self.insufficient_data("No prior outbound transfers for sender")

        current = current_transfer(request)
        window = [t for t in past if t.timestamp >= window_start] + [current]
        prior = [t for t in past if t.timestamp < window_start]
        day = [t for t in past if t.timestamp >= lookback_start] + [current]

        window_recipients = {t.recipient for t in window}
        novel = window_recipients - {t.recipient for t in prior}

        features: dict[str, float] = {}
        if len(window) >= 2 and len(window_recipients) >= params.min_unique_recipients:
            features["rapid_succession"] = params.weight_rapid_succession
        if novel and any(t.amount >= params.reporting_threshold for t in window):
            features["fiat_conversion"] = params.weight_fiat_conversion
        if len(day) > params.burst_count:
            features["transfer_burst"] = params.weight_burst

        probability = min(sum(features.values()), 1.0)
        if features:
            description = (
                f"{len(window)} transfers to {len(window_recipients)} recipients "
                f"within {params.window_minutes:g} min, {len(novel)} novel"
            )
        else:
            description = "No layering indicators"

        logger.debug(
            "layering_scored",
            sender=request.context.sender,
            window_transfers=len(window),
            novel_recipients=len(novel),
            probability=probability,
        )
        return self.finding(probability, grade(probability, 0.5, 0.2), features, description)
