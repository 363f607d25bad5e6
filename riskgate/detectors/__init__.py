"""
RiskGate Pattern Detectors — AML typologies over transfer history.

Components:
- layering: rapid fan-out to novel recipients
- circular: funds returning to origin
- velocity: amount / count / volume outliers
- geographic: high-risk and cross-border jurisdictions
- liquidation: rapid buy-sell cycles
"""

from typing import Optional

from riskgate.detectors.base import PatternDetector
from riskgate.detectors.circular import CircularTransferDetector
from riskgate.detectors.geographic import GeographicDetector
from riskgate.detectors.layering import LayeringDetector
from riskgate.detectors.liquidation import RapidLiquidationDetector
from riskgate.detectors.velocity import VelocityDetector
from riskgate.providers.base import PolicyProvider


def default_detectors(resolver: Optional[PolicyProvider] = None) -> list[PatternDetector]:
    """All five detectors in their canonical fold order."""
    return [
        LayeringDetector(),
        CircularTransferDetector(),
        VelocityDetector(),
        GeographicDetector(resolver=resolver),
        RapidLiquidationDetector(),
    ]


__all__ = [
    "CircularTransferDetector",
    "GeographicDetector",
    "LayeringDetector",
    "PatternDetector",
    "RapidLiquidationDetector",
    "VelocityDetector",
    "default_detectors",
]
