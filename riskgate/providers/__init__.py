"""
RiskGate external collaborators.

Components:
- base: SignalProvider, PolicyProvider and HistoryStore contracts
- policy: static and YAML-backed policy providers
- history: in-memory transfer history
"""
