"""
Velocity / volume anomaly detection.

Compares the current transfer and the trailing 24 h against the sender's own
30-day baseline.
"""

import math
import statistics
from datetime import timedelta

from riskgate.detectors.base import PatternDetector, grade
from riskgate.providers.base import HistoryStore
from riskgate.schemas.findings import PatternFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest


class VelocityDetector(PatternDetector):

    name = "velocity"
    description = "Amount, count or volume far outside the sender's baseline"

    async def detect(
        self,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        history: HistoryStore,
    ) -> PatternFinding:
        params = policy.detectors.velocity
        ctx = request.context
        now = ctx.timestamp

        past = await history.transfers_from(
            ctx.sender, now - timedelta(days=params.history_days), now
        )
        if len(past) < max(params.min_history, 2):
            return self.insufficient_data(
                f"{len(past)} historical transfers, need {max(params.min_history, 2)}"
            )

        amounts = [t.amount for t in past]
        mean = statistics.fmean(amounts)
        stdev = statistics.stdev(amounts)
        if stdev > 0:
            zscore = abs(ctx.amount - mean) / stdev
        else:
            # flat baseline: any deviation is off the chart
            zscore = 0.0 if ctx.amount == mean else math.inf

        day_start = now - timedelta(hours=24)
        day = [t for t in past if t.timestamp >= day_start]
        day_count = len(day) + 1
        day_volume = sum(t.amount for t in day) + ctx.amount
        daily_average = len(past) / params.history_days

        features: dict[str, float] = {}
        if zscore > params.extreme_zscore:
            features["amount_zscore"] = params.weight_extreme_zscore
        elif zscore > params.elevated_zscore:
            features["amount_zscore"] = params.weight_elevated_zscore

        if (
            day_count >= params.spike_multiple * daily_average
            and day_count >= params.spike_min_count
        ):
            features["count_spike"] = params.weight_count_spike

        if (
            day_volume > mean * params.reporting_multiple
            and len(past) > params.reporting_min_history
        ):
            features["volume_trigger"] = params.weight_volume_trigger

        probability = min(sum(features.values()), 1.0)
        z_text = "inf" if math.isinf(zscore) else f"{zscore:.2f}"
        description = (
            f"z={z_text}, 24h count {day_count} vs daily avg {daily_average:.2f}, "
            f"24h volume {day_volume:,.2f}"
        )
        return self.finding(probability, grade(probability, 0.6, 0.2), features, description)
