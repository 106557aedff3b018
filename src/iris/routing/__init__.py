"""
IRIS Routing

- health_monitor: per-provider latency/success window and health score
- circuit_breaker: CLOSED / OPEN / HALF_OPEN state per provider
- failover: fallback chains filtered into ordered candidates
- orchestrator: the route() entry point (import from iris.routing.orchestrator)
"""

from iris.routing.circuit_breaker import CircuitBreaker, CircuitState
from iris.routing.failover import FailoverEngine
from iris.routing.health_monitor import HealthMonitor

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "FailoverEngine",
    "HealthMonitor",
]
