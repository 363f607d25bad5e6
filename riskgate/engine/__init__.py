"""
RiskGate scoring engine.

Components:
- aggregator: weighted fusion of findings into an explainable score
"""
