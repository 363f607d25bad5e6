"""
RiskGate — Compliance Decision Engine.

Architecture:
    riskgate/
    ├── schemas/         # Pydantic models (request, findings, policy, decision, audit)
    ├── providers/       # Signal / policy / history contracts and reference impls
    ├── detectors/       # AML pattern detectors (layering, circular, velocity, ...)
    ├── engine/          # Risk aggregation
    ├── decisions/       # State machine, escalation rules, decision pipeline
    └── services/        # Orchestrator, resilience, cache, audit, events

Module Boundaries:
    - Vendors are SIGNAL SOURCES ONLY — adapters translate to SignalFinding
    - The aggregator is pure: same findings + policy → same score
    - Every fresh decision has an audit record
    - Only request validation errors reach the caller

Data Flow:
    Request → Validate → Cache → Orchestrator (policy + fan-out) → Aggregator
    → State Machine → Decision → Audit → Cache → Event

Version: 1.0.0
"""

__version__ = "1.0.0"
