"""
End-to-end compliance scenarios.

Full pipeline: providers + the five detectors + aggregation + decision +
audit + cache, wired through DecisionEngine.create().
"""

import time

import pytest

from riskgate.decisions.engine import DecisionEngine
from riskgate.providers.history import InMemoryHistoryStore
from riskgate.providers.policy import StaticPolicyProvider
from riskgate.schemas.decision import DecisionStatus, DecisionWarning
from riskgate.schemas.policy import PolicySnapshot
from riskgate.services.audit import AuditWriter, InMemoryAuditSink
from riskgate.services.resilience import CircuitBreakerRegistry


class TestComplianceScenarios:

    def setup_method(self):
        self.sink = InMemoryAuditSink()

    def _engine(self, policy_provider, providers, history, config, **kwargs):
        return DecisionEngine.create(
            policy_provider,
            providers=providers,
            history=history,
            audit=AuditWriter.from_settings(self.sink, config),
            config=config,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_low_risk_transfer_to_known_recipient(
        self, make_provider, make_request, make_transfer, policy_provider, fast_settings
    ):
        """Known recipient, low signals → APPROVED below escalate threshold."""
        history = InMemoryHistoryStore([
            make_transfer("h1", "alice", "bob", 900, minutes_ago=60 * 24 * 3),
            make_transfer("h2", "alice", "bob", 1_100, minutes_ago=60 * 24 * 2),
        ])
        providers = [make_provider("kyc", 5), make_provider("aml", 10), make_provider("sanctions", 0)]
        engine = self._engine(policy_provider, providers, history, fast_settings)

        decision = await engine.assess(make_request(amount=1_000))

        assert decision.status == DecisionStatus.APPROVED
        assert decision.score < 30
        assert decision.escalation_rules == ()
        assert not decision.degraded
        assert decision.policy_version == "test-1"

    @pytest.mark.asyncio
    async def test_sanctions_hit_blocks(
        self, make_provider, make_request, history, policy_provider, fast_settings
    ):
        """Sanctions contribution 100 → BLOCKED regardless of other signals."""
        providers = [make_provider("kyc", 0), make_provider("aml", 0), make_provider("sanctions", 100)]
        engine = self._engine(policy_provider, providers, history, fast_settings)

        decision = await engine.assess(make_request())

        assert decision.status == DecisionStatus.BLOCKED
        assert decision.score == 100
        assert "Floor applied from sanctions" in decision.reasoning
        assert "score floor applied from sanctions" in self.sink.records[0].notes

    @pytest.mark.asyncio
    async def test_layering_fan_out_escalates(
        self, make_provider, make_request, make_transfer, policy_provider, fast_settings
    ):
        """5 novel recipients in an hour, one above reporting threshold → ESCALATED."""
        history = InMemoryHistoryStore([
            make_transfer("t1", "alice", "r1", 5_000, minutes_ago=50),
            make_transfer("t2", "alice", "r2", 150_000, minutes_ago=40),
            make_transfer("t3", "alice", "r3", 5_000, minutes_ago=30),
            make_transfer("t4", "alice", "r4", 5_000, minutes_ago=20),
        ])
        providers = [make_provider("kyc", 5), make_provider("aml", 5), make_provider("sanctions", 0)]
        engine = self._engine(policy_provider, providers, history, fast_settings)

        decision = await engine.assess(make_request(recipient="r5", amount=2_000))

        assert decision.status == DecisionStatus.ESCALATED
        assert "high_risk_pattern" in decision.escalation_rules
        assert "layering=0.70" in decision.reasoning

    @pytest.mark.asyncio
    async def test_all_providers_time_out(
        self, make_provider, make_request, history, policy_provider, fast_settings
    ):
        """Every provider hangs → degraded, ESCALATED, audit notes degraded mode."""
        providers = [make_provider(name, hang=True) for name in ("kyc", "aml", "sanctions")]
        engine = self._engine(policy_provider, providers, history, fast_settings)

        started = time.monotonic()
        decision = await engine.assess(make_request())
        elapsed = time.monotonic() - started

        assert elapsed < 0.2 + 0.05 + 0.5
        assert decision.degraded
        assert decision.status == DecisionStatus.ESCALATED
        assert "degraded_evaluation" in decision.escalation_rules
        assert DecisionWarning.DEGRADED.value in decision.warnings
        notes = self.sink.records[0].notes
        assert any(n.startswith("degraded mode") for n in notes)
        assert "kyc, aml, sanctions" in notes[0]

    @pytest.mark.asyncio
    async def test_duplicate_request_served_from_cache(
        self, make_provider, make_request, history, policy_provider, fast_settings
    ):
        """Same idempotency key within TTL → cached decision, no new provider calls."""
        providers = [make_provider("kyc", 5), make_provider("aml", 10), make_provider("sanctions", 0)]
        engine = self._engine(policy_provider, providers, history, fast_settings)

        first = await engine.assess(make_request(idempotency_key="dup-1"))
        second = await engine.assess(make_request(idempotency_key="dup-1"))

        assert second.decision_id == first.decision_id
        assert all(p.calls == 1 for p in providers)
        assert len(self.sink.for_idempotency_key("dup-1")) == 1

    @pytest.mark.asyncio
    async def test_missing_policy_never_auto_decides(self, make_provider, make_request, history, fast_settings):
        """No policy for the jurisdiction → ESCALATED even with a sanctions hit."""
        providers = [make_provider("sanctions", 100)]
        engine = self._engine(StaticPolicyProvider(), providers, history, fast_settings)

        decision = await engine.assess(make_request(jurisdiction="ZZ"))

        assert decision.status == DecisionStatus.ESCALATED
        assert decision.score == 100
        assert decision.policy_version == "missing"
        assert DecisionWarning.POLICY_MISSING.value in decision.warnings
        assert self.sink.records[0].notes[0].startswith("policy missing")

    @pytest.mark.asyncio
    async def test_open_breaker_keeps_answering(
        self, make_provider, make_request, history, policy_provider, fast_settings, clock
    ):
        """A failing vendor trips its breaker; later requests skip it and escalate."""
        aml = make_provider("aml", error=ConnectionError("vendor 503"))
        providers = [make_provider("kyc", 5), aml]
        breakers = CircuitBreakerRegistry(failure_threshold=2, recovery_timeout=30, clock=clock)
        engine = self._engine(policy_provider, providers, history, fast_settings, breakers=breakers)

        for i in range(3):
            decision = await engine.assess(make_request(idempotency_key=f"brk-{i}"))
            assert decision.status == DecisionStatus.ESCALATED
            assert decision.degraded

        assert aml.calls == 2
        assert breakers.states()["aml"] == "open"

    @pytest.mark.asyncio
    async def test_sanctions_outage_escalates_instead_of_rejecting(
        self, make_provider, make_request, history, fast_settings
    ):
        """Sanctions vendor down with an 80 penalty → ESCALATED for review, not REJECTED."""
        policy = PolicySnapshot(jurisdiction="US", version="test-2", fallback_penalties={"sanctions": 80})
        providers = [make_provider("sanctions", hang=True)]
        engine = self._engine(StaticPolicyProvider([policy]), providers, history, fast_settings)

        decision = await engine.assess(make_request(checks=("sanctions",)))

        assert decision.score == 80
        assert decision.degraded
        assert decision.status == DecisionStatus.ESCALATED
        assert "Capped at ESCALATED" in decision.reasoning

    @pytest.mark.asyncio
    async def test_sanctions_hit_blocks_while_another_source_is_down(
        self, make_provider, make_request, history, policy_provider, fast_settings
    ):
        providers = [make_provider("kyc", hang=True), make_provider("sanctions", 100)]
        engine = self._engine(policy_provider, providers, history, fast_settings)

        decision = await engine.assess(make_request(checks=("kyc", "sanctions")))

        assert decision.degraded
        assert decision.status == DecisionStatus.BLOCKED
        assert "Capped" not in decision.reasoning
