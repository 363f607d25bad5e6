"""
Rapid liquidation (buy-sell cycle) detection.

Receipts by the recipient that are pushed back out at nearly the same size
within the hour, plus recent sales by the recipient that already match the
size of the transfer being assessed.
"""

from datetime import timedelta

from riskgate.detectors.base import PatternDetector, grade
from riskgate.providers.base import HistoryStore
from riskgate.schemas.findings import PatternFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.request import AssessmentRequest


class RapidLiquidationDetector(PatternDetector):

    name = "rapid_liquidation"
    description = "Received funds sold off at ≥80% size within the hour"

    async def detect(
        self,
        request: AssessmentRequest,
        policy: PolicySnapshot,
        history: HistoryStore,
    ) -> PatternFinding:
        params = policy.detectors.liquidation
        recipient = request.context.recipient
        now = request.context.timestamp
        since = now - timedelta(hours=params.lookback_hours)
        window = timedelta(minutes=params.window_minutes)

        receipts = await history.transfers_to(recipient, since, now)
        sales = await history.transfers_from(recipient, since, now)
        if not receipts and not sales:
            return self.insufficient_data("No transfer history for recipient in lookback")

        matched: set[str] = set()
        for receipt in receipts:
            floor = receipt.amount * params.min_amount_ratio
            for sale in sales:
                if (
                    receipt.timestamp <= sale.timestamp <= receipt.timestamp + window
                    and sale.amount >= floor
                ):
                    matched.add(sale.transfer_id)

        # the current transfer has not settled yet: match the recipient's
        # sales in the window before it instead
        floor = request.context.amount * params.min_amount_ratio
        for sale in sales:
            if sale.timestamp >= now - window and sale.amount >= floor:
                matched.add(sale.transfer_id)

        count = len(matched)
        probability = min(count / params.saturation_count, 1.0)
        if count:
            description = (
                f"Rapid liquidation: {count} similar sales within "
                f"{params.window_minutes:g} min of receipt"
            )
        else:
            description = "No rapid liquidation detected"

        return self.finding(
            probability,
            grade(probability, 0.5, 0.0),
            {"rapid_sales": probability},
            description,
        )
