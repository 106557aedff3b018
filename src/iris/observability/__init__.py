"""
Observability Package
=====================

- health: provider probes aggregated into healthy / degraded / unhealthy
- metrics: Prometheus-compatible metrics

Example Usage:
--------------
from iris.observability import MetricsCollector
metrics = MetricsCollector()
orchestrator = build_orchestrator(settings, metrics=metrics)
print(metrics.render().decode())
"""

from .health import (
    HealthCheckProvider,
    HealthCheckResult,
    HealthCheckSystem,
    HealthStatus,
    ProviderHealthCheck,
)
from .metrics import MetricsCollector

__all__ = [
    'HealthCheckProvider',
    'HealthCheckResult',
    'HealthCheckSystem',
    'HealthStatus',
    'MetricsCollector',
    'ProviderHealthCheck',
]
