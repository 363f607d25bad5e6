"""
Risk Aggregator — folds findings into one explainable score.

Formula:
  raw_i    = contribution_i (signals) or probability_i × 100 (patterns)
             fallback penalty when the source failed
  weighted = Σ(w_i × raw_i) / Σ(w_i)
  score    = max(weighted, raw of any successful floor source)
  observed = the same over successful findings only

clamped to [0, 100] and rounded to 2 dp. Every input to the score is
either a finding or a PolicySnapshot field, so the same findings and policy
always produce the same AggregatedRisk.
"""

from typing import Sequence

import structlog

from riskgate.schemas.findings import Finding, PatternFinding
from riskgate.schemas.policy import PolicySnapshot
from riskgate.schemas.risk import AggregatedRisk, FactorContribution

logger = structlog.get_logger(__name__)


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def _feature_shares(finding: Finding) -> dict[str, float]:
    """Split one source into explainability keys that sum to 1.0."""
    if finding.failed:
        return {f"{finding.name}.fallback_penalty": 1.0}
    if isinstance(finding, PatternFinding):
        total = sum(v for v in finding.features.values() if v > 0)
        if total > 0:
            return {
                f"{finding.name}.{feature}": value / total
                for feature, value in finding.features.items()
                if value > 0
            }
    return {finding.name: 1.0}


class RiskAggregator:
    """
    Weighted fusion of Signal and Pattern findings.

    Stateless. Weights, penalties and floor sources all come from the
    PolicySnapshot passed in.
    """

    def aggregate(self, findings: Sequence[Finding], policy: PolicySnapshot) -> AggregatedRisk:
        if not findings:
            return AggregatedRisk(score=0.0, policy_version=policy.version)

        rows: list[tuple[Finding, float, float]] = []
        failed_sources: list[str] = []
        for finding in findings:
            weight = policy.weight_for(finding.name)
            if finding.failed:
                raw = policy.penalty_for(finding.name)
                failed_sources.append(finding.name)
            else:
                raw = _clamp(finding.raw_score)
            rows.append((finding, weight, raw))

        total_weight = sum(w for _, w, _ in rows)

        factors: list[FactorContribution] = []
        explainability: dict[str, float] = {}
        weighted = 0.0
        for finding, weight, raw in rows:
            points = weight * raw / total_weight if total_weight > 0 else 0.0
            weighted += points
            factors.append(FactorContribution(
                source=finding.name,
                kind=finding.kind,
                raw=round(raw, 4),
                weight=weight,
                points=round(points, 4),
                fallback_applied=finding.failed,
            ))
            for key, share in _feature_shares(finding).items():
                explainability[key] = explainability.get(key, 0.0) + points * share

        score = weighted
        floor_source = None
        for finding, _, raw in rows:
            if not finding.failed and finding.name in policy.floor_sources and raw > score:
                score = raw
                floor_source = finding.name

        score = round(_clamp(score), 2)
        degraded = bool(failed_sources)

        observed_weight = sum(w for f, w, _ in rows if not f.failed)
        observed = (
            sum(w * raw for f, w, raw in rows if not f.failed) / observed_weight
            if observed_weight > 0 else 0.0
        )
        for finding, _, raw in rows:
            if not finding.failed and finding.name in policy.floor_sources:
                observed = max(observed, raw)
        observed = round(_clamp(observed), 2)

        if degraded:
            logger.info(
                "aggregation_degraded",
                failed_sources=failed_sources,
                policy_version=policy.version,
            )

        return AggregatedRisk(
            score=score,
            findings=tuple(findings),
            factors=tuple(factors),
            explainability={k: round(v, 4) for k, v in explainability.items()},
            degraded=degraded,
            failed_sources=tuple(failed_sources),
            floor_source=floor_source,
            observed_score=observed,
            policy_version=policy.version,
        )
