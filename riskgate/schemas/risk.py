"""
Aggregated risk schema.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from riskgate.schemas.findings import Finding


class FactorContribution(BaseModel):
    """How a single source contributed to the overall score."""
    model_config = ConfigDict(frozen=True)

    source: str
    kind: Literal["signal", "pattern"]
    raw: float                   # 0-100 (fallback penalty when failed)
    weight: float
    points: float                # weight × raw / Σ weight
    fallback_applied: bool = False


class AggregatedRisk(BaseModel):
    """
    One explainable score for a request.

    Contains no timestamps or random ids: identical findings and policy
    serialize to identical JSON.
    """
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0, le=100)
    findings: tuple[Finding, ...] = ()
    factors: tuple[FactorContribution, ...] = ()
    explainability: dict[str, float] = Field(default_factory=dict)
    degraded: bool = False
    failed_sources: tuple[str, ...] = ()
    floor_source: Optional[str] = None
    # score from successful findings only; None when not computed
    observed_score: Optional[float] = Field(default=None, ge=0, le=100)
    policy_version: str = ""

    @property
    def primary_driver(self) -> Optional[str]:
        """The single source contributing the most points."""
        if not self.factors:
            return None
        return max(self.factors, key=lambda f: f.points).source
