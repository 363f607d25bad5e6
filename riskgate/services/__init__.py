"""
RiskGate runtime services.

Components:
- resilience: retry with backoff, circuit breakers
- orchestrator: parallel fan-out to providers and detectors
- cache: decision result cache (in-memory, Redis)
- audit: append-only audit sink with a retrying writer
- events: decision-completed event bus
"""
