"""
RiskGate Decision Support.

Components:
- state_machine: thresholds, escalation rules and the decision lifecycle
- engine: end-to-end pipeline from request to audited decision
"""
