"""Infrastructure Package

Cross-cutting components used by the service layer: structured logging,
Prometheus metrics, resilience primitives and the tool registry.
"""
