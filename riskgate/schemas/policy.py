"""
Policy schemas — versioned, jurisdiction-specific weights and thresholds.

Every field carries a default so a partial policy document still yields a
complete snapshot. Detector constants are calibration inputs, not
requirements; they live here so each jurisdiction can override them.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


DEFAULT_WEIGHTS: dict[str, float] = {
    "kyc": 0.20,
    "aml": 0.25,
    "sanctions": 0.30,
    "layering": 0.25,
    "circular_transfer": 0.20,
    "velocity": 0.15,
    "geographic": 0.10,
    "rapid_liquidation": 0.20,
}

# FATF call-for-action list and jurisdictions under increased monitoring
DEFAULT_HIGH_RISK_JURISDICTIONS: tuple[str, ...] = ("IR", "KP", "SY", "CU", "SS")
DEFAULT_MEDIUM_RISK_JURISDICTIONS: tuple[str, ...] = ("PK", "BA")


class DecisionThresholds(BaseModel):
    """Score cut-offs, applied block → reject → escalate."""
    model_config = ConfigDict(frozen=True)

    escalate: float = Field(default=30.0, ge=0, le=100)
    reject: float = Field(default=70.0, ge=0, le=100)
    block: float = Field(default=90.0, ge=0, le=100)

    @model_validator(mode="after")
    def _ordered(self) -> "DecisionThresholds":
        if not (self.escalate <= self.reject <= self.block):
            raise ValueError("thresholds must satisfy escalate <= reject <= block")
        return self


class LayeringParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    window_minutes: float = 60.0
    lookback_hours: float = 24.0
    novelty_lookback_days: float = 30.0
    min_unique_recipients: int = 3
    reporting_threshold: float = 100_000.0
    burst_count: int = 5
    weight_rapid_succession: float = 0.4
    weight_fiat_conversion: float = 0.3
    weight_burst: float = 0.2


class CircularParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    lookback_days: float = 7.0


class VelocityParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    history_days: float = 30.0
    min_history: int = 2
    extreme_zscore: float = 3.0
    elevated_zscore: float = 2.0
    weight_extreme_zscore: float = 0.4
    weight_elevated_zscore: float = 0.2
    spike_multiple: float = 5.0
    spike_min_count: int = 3
    weight_count_spike: float = 0.3
    reporting_multiple: float = 20.0
    reporting_min_history: int = 5
    weight_volume_trigger: float = 0.3


class GeographicParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight_high_risk: float = 1.0
    weight_medium_risk: float = 0.5
    weight_cross_border: float = 0.2


class LiquidationParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    window_minutes: float = 60.0
    lookback_hours: float = 24.0
    min_amount_ratio: float = 0.8
    saturation_count: int = 5


class DetectorParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    layering: LayeringParameters = Field(default_factory=LayeringParameters)
    circular: CircularParameters = Field(default_factory=CircularParameters)
    velocity: VelocityParameters = Field(default_factory=VelocityParameters)
    geographic: GeographicParameters = Field(default_factory=GeographicParameters)
    liquidation: LiquidationParameters = Field(default_factory=LiquidationParameters)


class FieldRule(BaseModel):
    """Constraint on one field of a structural rule set."""
    model_config = ConfigDict(frozen=True)

    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    allowed: Optional[tuple[str, ...]] = None


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    violations: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


class PolicySnapshot(BaseModel):
    """
    Immutable view of one jurisdiction's policy at one version.

    floor_sources: a successful finding from one of these sources lifts the
    overall score to at least its own raw contribution (a confirmed
    sanctions hit cannot be diluted by otherwise clean signals).
    """
    model_config = ConfigDict(frozen=True)

    jurisdiction: str
    version: str = "1"
    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    default_weight: float = Field(default=0.1, ge=0)
    thresholds: DecisionThresholds = Field(default_factory=DecisionThresholds)
    fallback_penalty: float = Field(default=50.0, gt=0, le=100)
    fallback_penalties: dict[str, float] = Field(default_factory=dict)
    floor_sources: tuple[str, ...] = ("sanctions",)
    pattern_escalation_probability: float = Field(default=0.5, ge=0, le=1)
    detectors: DetectorParameters = Field(default_factory=DetectorParameters)
    high_risk_jurisdictions: tuple[str, ...] = DEFAULT_HIGH_RISK_JURISDICTIONS
    medium_risk_jurisdictions: tuple[str, ...] = DEFAULT_MEDIUM_RISK_JURISDICTIONS
    structural_rules: dict[str, dict[str, FieldRule]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_tables(self) -> "PolicySnapshot":
        for source, weight in self.weights.items():
            if weight < 0:
                raise ValueError(f"weight for '{source}' must be >= 0")
        for source, penalty in self.fallback_penalties.items():
            if not 0 < penalty <= 100:
                raise ValueError(f"fallback penalty for '{source}' must be in (0, 100]")
        return self

    def weight_for(self, source: str) -> float:
        return self.weights.get(source, self.default_weight)

    def penalty_for(self, source: str) -> float:
        return self.fallback_penalties.get(source, self.fallback_penalty)

    @classmethod
    def fallback(cls, jurisdiction: str) -> "PolicySnapshot":
        """Built-in defaults, used only to score a request whose policy is missing."""
        return cls(jurisdiction=jurisdiction, version="builtin-fallback")

    @classmethod
    def from_document(cls, jurisdiction: str, document: dict[str, Any]) -> "PolicySnapshot":
        """Build a snapshot from a loosely-typed policy document (e.g. parsed YAML)."""
        data = dict(document)
        data.setdefault("jurisdiction", jurisdiction)
        if "weights" in data:
            merged = dict(DEFAULT_WEIGHTS)
            merged.update(data["weights"] or {})
            data["weights"] = merged
        return cls.model_validate(data)
