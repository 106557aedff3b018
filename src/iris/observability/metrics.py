"""Prometheus-compatible metrics for routing, caching, threat and provider outcomes."""

import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

logger = logging.getLogger(__name__)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsCollector:
    """Prometheus metrics collector for IRIS.

    Each collector owns its CollectorRegistry so several orchestrators (or
    tests) can coexist in one process without duplicate-metric errors.
    """

    def __init__(self, service_name: str = "iris", registry: CollectorRegistry | None = None) -> None:
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: dict[str, Any] = {}
        self._init_standard_metrics()
        logger.info("MetricsCollector initialized")

    def _init_standard_metrics(self) -> None:
        r = self.registry
        self._metrics["service_info"] = Info("iris_service", "Service information", registry=r)
        try:
            _version = _pkg_version("iris-router")
        except PackageNotFoundError:
            _version = "0.0.0-dev"
        self._metrics["service_info"].info({"service": self.service_name, "version": _version})
        self._metrics["routes_total"] = Counter(
            "iris_routes_total", "Routed requests by outcome", ["task_type", "outcome"], registry=r
        )
        self._metrics["route_duration_seconds"] = Histogram(
            "iris_route_duration_seconds", "End-to-end route duration", ["task_type"], registry=r
        )
        self._metrics["cache_lookups_total"] = Counter(
            "iris_cache_lookups_total", "Semantic cache lookups", ["task_type", "result"], registry=r
        )
        self._metrics["cache_memory_bytes"] = Gauge(
            "iris_cache_memory_bytes", "Bytes held by the semantic cache", registry=r
        )
        self._metrics["provider_attempts_total"] = Counter(
            "iris_provider_attempts_total", "Provider attempts by outcome", ["provider", "outcome"], registry=r
        )
        self._metrics["provider_latency_seconds"] = Histogram(
            "iris_provider_latency_seconds", "Provider attempt latency", ["provider"], registry=r
        )
        self._metrics["provider_health_score"] = Gauge(
            "iris_provider_health_score", "Provider health score (0-100)", ["provider"], registry=r
        )
        self._metrics["circuit_state"] = Gauge(
            "iris_circuit_state", "Circuit state (0=closed, 1=half_open, 2=open)", ["provider"], registry=r
        )
        self._metrics["threat_decisions_total"] = Counter(
            "iris_threat_decisions_total", "Threat classifier decisions", ["decision"], registry=r
        )
        self._metrics["errors_total"] = Counter(
            "iris_errors_total", "Total errors", ["type", "component"], registry=r
        )
        logger.info("Standard metrics initialized")

    def record_route(self, task_type: str, outcome: str, duration: float) -> None:
        self._metrics["routes_total"].labels(task_type=task_type, outcome=outcome).inc()
        self._metrics["route_duration_seconds"].labels(task_type=task_type).observe(duration)

    def record_cache_lookup(self, task_type: str, hit: bool) -> None:
        self._metrics["cache_lookups_total"].labels(
            task_type=task_type, result="hit" if hit else "miss"
        ).inc()

    def update_cache_memory(self, used_bytes: int) -> None:
        self._metrics["cache_memory_bytes"].set(used_bytes)

    def record_provider_attempt(self, provider: str, outcome: str, latency_seconds: float) -> None:
        self._metrics["provider_attempts_total"].labels(provider=provider, outcome=outcome).inc()
        self._metrics["provider_latency_seconds"].labels(provider=provider).observe(latency_seconds)

    def update_provider_state(self, provider: str, health_score: int, circuit_state: str) -> None:
        self._metrics["provider_health_score"].labels(provider=provider).set(health_score)
        self._metrics["circuit_state"].labels(provider=provider).set(
            _CIRCUIT_STATE_VALUES.get(circuit_state, 0)
        )

    def record_threat_decision(self, decision: str) -> None:
        self._metrics["threat_decisions_total"].labels(decision=decision).inc()

    def record_error(self, error_type: str, component: str) -> None:
        self._metrics["errors_total"].labels(type=error_type, component=component).inc()

    def get_sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Current value of a sample in this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})

    def render(self) -> bytes:
        """Prometheus text exposition of every metric in the registry."""
        return generate_latest(self.registry)

    content_type = CONTENT_TYPE_LATEST
