"""
Finding schemas — the scored output of one signal source.

A finding with ``contribution``/``probability`` set to None marks a failed
source. The aggregator substitutes the policy's fallback penalty for it.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


INSUFFICIENT_DATA = "insufficient_data"


class SignalFinding(BaseModel):
    """Output of one external Signal Provider."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["signal"] = "signal"
    source: str
    contribution: Optional[float] = Field(default=None, ge=0, le=100)
    confidence: float = Field(default=1.0, ge=0, le=1)
    detail: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.contribution is None

    @property
    def name(self) -> str:
        return self.source

    @property
    def raw_score(self) -> Optional[float]:
        return self.contribution

    @classmethod
    def unavailable(cls, source: str, error: str) -> "SignalFinding":
        return cls(source=source, contribution=None, confidence=0.0, error=error)


class PatternFinding(BaseModel):
    """Output of one Pattern Detector."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["pattern"] = "pattern"
    pattern: str
    probability: Optional[float] = Field(default=None, ge=0, le=1)
    severity: Severity = Severity.LOW
    features: dict[str, float] = Field(default_factory=dict)
    description: str = ""
    notes: tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.probability is None

    @property
    def name(self) -> str:
        return self.pattern

    @property
    def raw_score(self) -> Optional[float]:
        if self.probability is None:
            return None
        return self.probability * 100.0

    @classmethod
    def unavailable(cls, pattern: str, error: str) -> "PatternFinding":
        return cls(
            pattern=pattern,
            probability=None,
            description="Detector unavailable",
            error=error,
        )


Finding = Annotated[Union[SignalFinding, PatternFinding], Field(discriminator="kind")]
