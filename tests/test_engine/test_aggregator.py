"""
Risk Aggregator Tests.
"""

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from riskgate.engine.aggregator import RiskAggregator
from riskgate.schemas.findings import PatternFinding, Severity, SignalFinding
from riskgate.schemas.policy import PolicySnapshot

SOURCES = ["kyc", "aml", "sanctions", "layering", "velocity", "custom"]


def _signal(source: str, contribution):
    if contribution is None:
        return SignalFinding.unavailable(source, "timeout")
    return SignalFinding(source=source, contribution=contribution)


def _findings(contributions: list[float]):
    return [_signal(s, c) for s, c in zip(SOURCES, contributions)]


class TestRiskAggregator:
    def setup_method(self):
        self.aggregator = RiskAggregator()
        self.policy = PolicySnapshot(jurisdiction="US", version="7")

    def test_empty_findings(self):
        """No findings → score 0, not degraded."""
        risk = self.aggregator.aggregate([], self.policy)
        assert risk.score == 0.0
        assert not risk.degraded
        assert risk.policy_version == "7"

    def test_single_signal(self):
        risk = self.aggregator.aggregate([_signal("kyc", 42)], self.policy)
        assert risk.score == 42.0
        assert risk.primary_driver == "kyc"

    def test_weighted_average(self):
        """(0.20×20 + 0.25×40) / 0.45 = 31.11"""
        risk = self.aggregator.aggregate([_signal("kyc", 20), _signal("aml", 40)], self.policy)
        assert risk.score == 31.11
        assert [f.source for f in risk.factors] == ["kyc", "aml"]

    def test_failed_source_uses_fallback_penalty(self):
        risk = self.aggregator.aggregate([_signal("kyc", 20), _signal("aml", None)], self.policy)
        assert risk.degraded
        assert risk.failed_sources == ("aml",)
        assert risk.score == pytest.approx(36.67)
        assert risk.explainability["aml.fallback_penalty"] == pytest.approx(27.7778)
        assert risk.factors[1].fallback_applied
        assert risk.factors[1].raw == 50.0

    def test_per_source_penalty_override(self):
        policy = PolicySnapshot(jurisdiction="US", fallback_penalties={"sanctions": 80})
        risk = self.aggregator.aggregate([_signal("kyc", 0), _signal("sanctions", None)], policy)
        # failed floor sources do not lift the score
        assert risk.score == 48.0
        assert risk.floor_source is None

    def test_observed_score_ignores_failed_sources(self):
        """Fallback penalties raise the score but never the observed score."""
        policy = PolicySnapshot(jurisdiction="US", fallback_penalties={"sanctions": 80})
        risk = self.aggregator.aggregate([_signal("kyc", 20), _signal("sanctions", None)], policy)
        assert risk.score > 20
        assert risk.observed_score == 20.0

    def test_observed_score_keeps_floor(self):
        risk = self.aggregator.aggregate(
            [_signal("kyc", 0), _signal("aml", None), _signal("sanctions", 100)], self.policy
        )
        assert risk.observed_score == 100.0

    def test_observed_score_all_failed(self):
        risk = self.aggregator.aggregate([_signal("kyc", None), _signal("aml", None)], self.policy)
        assert risk.score == 50.0
        assert risk.observed_score == 0.0

    def test_floor_source_lifts_score(self):
        """Confirmed sanctions hit cannot be diluted by clean signals."""
        risk = self.aggregator.aggregate(
            [_signal("kyc", 0), _signal("aml", 0), _signal("sanctions", 100)], self.policy
        )
        assert risk.score == 100.0
        assert risk.floor_source == "sanctions"

    def test_unknown_source_uses_default_weight(self):
        risk = self.aggregator.aggregate([_signal("kyc", 0), _signal("custom", 50)], self.policy)
        assert risk.score == pytest.approx(16.67)

    def test_pattern_features_split_points(self):
        finding = PatternFinding(
            pattern="layering",
            probability=0.7,
            severity=Severity.HIGH,
            features={"rapid_succession": 0.4, "fiat_conversion": 0.3},
        )
        risk = self.aggregator.aggregate([finding], self.policy)
        assert risk.score == 70.0
        assert risk.explainability == {
            "layering.rapid_succession": pytest.approx(40.0),
            "layering.fiat_conversion": pytest.approx(30.0),
        }

    def test_explainability_sums_to_score_without_floor(self):
        risk = self.aggregator.aggregate(
            [_signal("kyc", 35), _signal("aml", 60), _signal("velocity", None)], self.policy
        )
        assert sum(risk.explainability.values()) == pytest.approx(risk.score, abs=0.01)

    def test_identical_inputs_identical_output(self):
        findings = [_signal("kyc", 12.5), _signal("aml", None), _signal("sanctions", 3)]
        first = self.aggregator.aggregate(findings, self.policy)
        second = self.aggregator.aggregate(list(findings), self.policy)
        assert first.model_dump_json() == second.model_dump_json()


class TestAggregatorProperties:
    contributions = st.lists(
        st.one_of(st.none(), st.floats(min_value=0, max_value=100, allow_nan=False)),
        min_size=1,
        max_size=len(SOURCES),
    )

    @given(values=contributions)
    @hyp_settings(max_examples=50)
    def test_score_bounded(self, values):
        """Score must be in [0, 100] for any mix of findings."""
        risk = RiskAggregator().aggregate(_findings(values), PolicySnapshot(jurisdiction="US"))
        assert 0.0 <= risk.score <= 100.0

    @given(
        values=st.lists(
            st.floats(min_value=0, max_value=100, allow_nan=False),
            min_size=1,
            max_size=len(SOURCES),
        ),
        index=st.integers(min_value=0, max_value=len(SOURCES) - 1),
        delta=st.floats(min_value=0, max_value=100, allow_nan=False),
    )
    @hyp_settings(max_examples=50)
    def test_monotone_in_each_contribution(self, values, index, delta):
        """Raising one contribution never lowers the score."""
        index = index % len(values)
        raised = list(values)
        raised[index] = min(100.0, raised[index] + delta)
        policy = PolicySnapshot(jurisdiction="US")
        aggregator = RiskAggregator()
        before = aggregator.aggregate(_findings(values), policy)
        after = aggregator.aggregate(_findings(raised), policy)
        assert after.score >= before.score

    @given(values=contributions)
    @hyp_settings(max_examples=30)
    def test_pure(self, values):
        policy = PolicySnapshot(jurisdiction="US")
        a = RiskAggregator().aggregate(_findings(values), policy)
        b = RiskAggregator().aggregate(_findings(values), policy)
        assert a == b
