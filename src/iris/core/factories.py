"""Dependency factories for the Orchestrator: decouples creation from core logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

from iris.cache.embeddings import Embedder, create_embedder
from iris.cache.semantic_cache import SemanticCache
from iris.observability.metrics import MetricsCollector
from iris.providers.registry import ProviderRegistry
from iris.routing.circuit_breaker import CircuitBreaker
from iris.routing.failover import FailoverEngine
from iris.routing.health_monitor import HealthMonitor
from iris.routing.orchestrator import Orchestrator
from iris.security.rate_limiter import RequestRateTracker
from iris.security.threat_classifier import ThreatClassifier

from .structured_logger import get_logger

if TYPE_CHECKING:
    from iris.config.settings import Settings

logger = get_logger("Factories")


def create_provider_registry(settings: Settings) -> ProviderRegistry:
    """Return a ProviderRegistry holding every enabled provider."""
    registry = ProviderRegistry.from_settings(settings)
    logger.info("Created ProviderRegistry", providers=registry.ids())
    return registry


def create_health_monitor(settings: Settings) -> HealthMonitor:
    cfg = settings.health
    logger.info("Creating HealthMonitor", window_size=cfg.window_size, min_samples=cfg.min_samples)
    return HealthMonitor(
        window_size=cfg.window_size,
        min_samples=cfg.min_samples,
        anomaly_sigma=cfg.anomaly_sigma,
        success_weight=cfg.success_weight,
    )


def create_failover_engine(
    settings: Settings, registry: ProviderRegistry, health_monitor: HealthMonitor
) -> FailoverEngine:
    """Return a FailoverEngine with its circuit breaker and configured chains."""
    cfg = settings.failover
    logger.info(
        "Creating FailoverEngine",
        failure_threshold=cfg.failure_threshold,
        cooldown_seconds=cfg.cooldown_seconds,
        chains={t.value: c for t, c in cfg.chains.items()},
    )
    breaker = CircuitBreaker(
        failure_threshold=cfg.failure_threshold, recovery_timeout=cfg.cooldown_seconds
    )
    return FailoverEngine(
        registry,
        cfg.chains,
        circuit_breaker=breaker,
        health_monitor=health_monitor,
        min_health_score=cfg.min_health_score,
    )


def create_embedder_from_settings(settings: Settings) -> Embedder:
    cfg = settings.cache
    logger.info("Creating embedder", kind=cfg.embedder)
    return create_embedder(cfg.embedder, dim=cfg.embedding_dim, model_name=cfg.embedding_model)


def create_semantic_cache(settings: Settings, embedder: Embedder) -> SemanticCache | None:
    """Return a SemanticCache, or None when caching is disabled."""
    cfg = settings.cache
    if not cfg.enabled:
        logger.info("Semantic cache disabled")
        return None
    logger.info("Creating SemanticCache", memory_budget_bytes=cfg.memory_budget_bytes, ttl=cfg.ttl_seconds)
    return SemanticCache(
        embedder,
        memory_budget_bytes=cfg.memory_budget_bytes,
        similarity_thresholds=cfg.similarity_thresholds,
        ttl_seconds=cfg.ttl_seconds,
    )


def create_threat_classifier(settings: Settings, embedder: Embedder) -> ThreatClassifier | None:
    """Return a ThreatClassifier, or None when threat assessment is disabled."""
    cfg = settings.threat
    if not cfg.enabled:
        logger.warning("Threat classifier disabled; every request is allowed")
        return None
    logger.info(
        "Creating ThreatClassifier",
        low_watermark=cfg.low_watermark,
        high_watermark=cfg.high_watermark,
    )
    return ThreatClassifier(
        cfg,
        embedder=embedder,
        rate_tracker=RequestRateTracker(cfg.rate_window_seconds),
    )


def build_orchestrator(settings: Settings, metrics: MetricsCollector | None = None) -> Orchestrator:
    """Wire every component from validated settings."""
    registry = create_provider_registry(settings)
    health_monitor = create_health_monitor(settings)
    failover = create_failover_engine(settings, registry, health_monitor)
    embedder = create_embedder_from_settings(settings)
    orchestrator = Orchestrator(
        registry,
        failover,
        health_monitor,
        cache=create_semantic_cache(settings, embedder),
        threat_classifier=create_threat_classifier(settings, embedder),
        metrics=metrics or MetricsCollector(),
        attempt_timeout_seconds=settings.orchestrator.attempt_timeout_seconds,
        request_deadline_seconds=settings.orchestrator.request_deadline_seconds,
        recent_routes=settings.orchestrator.recent_routes,
    )
    logger.info("Orchestrator ready", providers=len(registry))
    return orchestrator
