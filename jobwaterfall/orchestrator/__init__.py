"""
Orchestrator Module

Waterfall coordination, resilience primitives and maintenance scheduling.

Components:
    - TimedCache: In-process TTL cache with background sweep
    - ResilientCaller: Retry with backoff and per-attempt timeouts
    - CircuitBreaker: Per-key fault tolerance
    - CostTracker: Budget and cost tracking for paid tiers
    - JobAggregator: Tiered job acquisition waterfall
    - MaintenanceScheduler: APScheduler-based cache and store maintenance
"""

__all__ = [
    "TimedCache",
    "ResilientCaller",
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitState",
    "CostTracker",
    "JobAggregator",
    "MaintenanceScheduler",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "TimedCache":
        from .timed_cache import TimedCache
        return TimedCache
    elif name in ("ResilientCaller", "RetryPolicy"):
        from . import resilient_caller
        return getattr(resilient_caller, name)
    elif name in ("CircuitBreaker", "CircuitState"):
        from . import circuit_breaker
        return getattr(circuit_breaker, name)
    elif name == "CostTracker":
        from .cost_tracker import CostTracker
        return CostTracker
    elif name == "JobAggregator":
        from .job_aggregator import JobAggregator
        return JobAggregator
    elif name == "MaintenanceScheduler":
        from .scheduler import MaintenanceScheduler
        return MaintenanceScheduler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
