"""
Tests for iris.observability.metrics
====================================

MetricsCollector owns a private CollectorRegistry, so every test gets a
fresh collector and values start from zero.
"""

import pytest
from prometheus_client import CollectorRegistry

from iris.observability.metrics import MetricsCollector


@pytest.fixture
def collector():
    return MetricsCollector(service_name="iris-test")


class TestMetricsCollector:
    def test_collectors_do_not_collide(self):
        first = MetricsCollector()
        second = MetricsCollector()
        first.record_route("code", "success", 0.1)
        assert first.get_sample("iris_routes_total", {"task_type": "code", "outcome": "success"}) == 1.0
        assert second.get_sample("iris_routes_total", {"task_type": "code", "outcome": "success"}) is None

    def test_explicit_registry(self):
        registry = CollectorRegistry()
        collector = MetricsCollector(registry=registry)
        assert collector.registry is registry

    def test_service_info(self, collector):
        assert b'service="iris-test"' in collector.render()

    def test_record_route(self, collector):
        collector.record_route("fast", "cache_hit", 0.002)
        collector.record_route("fast", "cache_hit", 0.004)
        collector.record_route("fast", "exhausted", 1.5)
        assert collector.get_sample("iris_routes_total", {"task_type": "fast", "outcome": "cache_hit"}) == 2.0
        assert collector.get_sample("iris_routes_total", {"task_type": "fast", "outcome": "exhausted"}) == 1.0
        assert collector.get_sample("iris_route_duration_seconds_count", {"task_type": "fast"}) == 3.0

    def test_record_cache_lookup(self, collector):
        collector.record_cache_lookup("code", True)
        collector.record_cache_lookup("code", False)
        collector.record_cache_lookup("code", False)
        assert collector.get_sample("iris_cache_lookups_total", {"task_type": "code", "result": "hit"}) == 1.0
        assert collector.get_sample("iris_cache_lookups_total", {"task_type": "code", "result": "miss"}) == 2.0

    def test_cache_memory_gauge(self, collector):
        collector.update_cache_memory(4096)
        assert collector.get_sample("iris_cache_memory_bytes") == 4096.0

    def test_provider_attempts(self, collector):
        collector.record_provider_attempt("groq", "timeout", 20.0)
        assert collector.get_sample("iris_provider_attempts_total", {"provider": "groq", "outcome": "timeout"}) == 1.0
        assert collector.get_sample("iris_provider_latency_seconds_sum", {"provider": "groq"}) == 20.0

    @pytest.mark.parametrize("state,value", [("closed", 0.0), ("half_open", 1.0), ("open", 2.0)])
    def test_provider_state(self, collector, state, value):
        collector.update_provider_state("openai", 72, state)
        assert collector.get_sample("iris_provider_health_score", {"provider": "openai"}) == 72.0
        assert collector.get_sample("iris_circuit_state", {"provider": "openai"}) == value

    def test_threat_decisions(self, collector):
        collector.record_threat_decision("block")
        assert collector.get_sample("iris_threat_decisions_total", {"decision": "block"}) == 1.0

    def test_record_error(self, collector):
        collector.record_error("RuntimeError", "provider")
        assert collector.get_sample("iris_errors_total", {"type": "RuntimeError", "component": "provider"}) == 1.0

    def test_render_exposition(self, collector):
        collector.record_route("general", "success", 0.5)
        body = collector.render().decode()
        assert "# TYPE iris_routes counter" in body
        assert 'iris_routes_total{task_type="general",outcome="success"} 1.0' in body
        assert collector.content_type.startswith("text/plain")
