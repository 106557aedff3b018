"""
Orchestrator: single entry point for routed requests.

    threat assessment -> semantic cache -> candidate chain -> sequential attempts

Every outcome comes back as a RoutingDecision; failures travel in
``final_error`` with the full attempt trail. Only caller cancellation
(asyncio.CancelledError) escapes route().
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from iris.cache.semantic_cache import SemanticCache
from iris.core.exceptions import (
    ChainExhaustedError,
    ErrorCode,
    IrisError,
    ProviderError,
    ProviderTimeoutError,
    RequestCancelledError,
    ThreatBlockedError,
    ValidationError,
)
from iris.core.structured_logger import TraceContext, get_logger
from iris.core.types import (
    AttemptOutcome,
    AttemptRecord,
    RoutingConstraints,
    RoutingDecision,
    TaskType,
)
from iris.observability.health import HealthCheckSystem, ProviderHealthCheck
from iris.observability.metrics import MetricsCollector
from iris.providers.registry import Provider, ProviderRegistry
from iris.security.threat_classifier import ThreatClassifier, ThreatDecision

from .failover import FailoverEngine
from .health_monitor import HealthMonitor

logger = get_logger('Orchestrator')


class _DeadlineExpired(Exception):
    """Raised inside the chain walk when the outer deadline cut an attempt short."""


class Orchestrator:
    """Routes a query through threat policy, cache and failover chain."""

    def __init__(
        self,
        registry: ProviderRegistry,
        failover: FailoverEngine,
        health_monitor: HealthMonitor,
        cache: SemanticCache | None = None,
        threat_classifier: ThreatClassifier | None = None,
        metrics: MetricsCollector | None = None,
        attempt_timeout_seconds: float = 20.0,
        request_deadline_seconds: float = 60.0,
        recent_routes: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.failover = failover
        self.health_monitor = health_monitor
        self.cache = cache
        self.threat_classifier = threat_classifier
        self.metrics = metrics
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.request_deadline_seconds = request_deadline_seconds
        self._clock = clock
        self._recent: deque[dict[str, Any]] = deque(maxlen=recent_routes)

    # ------------------------------------------------------------------
    # routing
    # ------------------------------------------------------------------

    async def route(
        self,
        query: str,
        task_type: TaskType | str,
        constraints: RoutingConstraints | None = None,
    ) -> RoutingDecision:
        """
        Route a query to a provider (or the cache).

        Raises:
            ValidationError: If the query is empty
            IrisError: If the task type is unknown (UNKNOWN_TASK_TYPE)
            asyncio.CancelledError: If the caller cancels the request
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        try:
            task_type = TaskType(task_type)
        except ValueError:
            raise IrisError(
                f"Unknown task type: {task_type}",
                ErrorCode.UNKNOWN_TASK_TYPE,
                {'task_type': str(task_type), 'valid': [t.value for t in TaskType]},
            ) from None
        constraints = constraints or RoutingConstraints()

        start = self._clock()
        with TraceContext() as trace_id:
            decision = RoutingDecision(task_type=task_type, trace_id=trace_id)
            try:
                await self._route(query, decision, constraints, start)
            finally:
                decision.elapsed_ms = (self._clock() - start) * 1000
                self._finish(decision)
        return decision

    async def _route(
        self,
        query: str,
        decision: RoutingDecision,
        constraints: RoutingConstraints,
        start: float,
    ) -> None:
        task_type = decision.task_type

        local_only = False
        if self.threat_classifier is not None:
            assessment = await asyncio.to_thread(self.threat_classifier.assess, query, constraints.identity)
            decision.threat = assessment
            if self.metrics:
                self.metrics.record_threat_decision(assessment.decision.value)
            if assessment.decision == ThreatDecision.BLOCK:
                decision.final_error = ThreatBlockedError(assessment)
                logger.warning(
                    "Request blocked by threat policy",
                    score=round(assessment.score, 3),
                    rules=sorted(assessment.triggered_rules),
                )
                return
            local_only = assessment.decision == ThreatDecision.RESTRICT_TO_LOCAL

        if self.cache is not None:
            entry = await asyncio.to_thread(self.cache.lookup, query, task_type)
            if self.metrics:
                self.metrics.record_cache_lookup(task_type.value, entry is not None)
            if entry is not None:
                decision.cache_hit = True
                decision.response = entry.response
                decision.selected_provider = entry.provider_id
                logger.info("Served from semantic cache", task_type=task_type.value, entry_id=entry.entry_id)
                return

        try:
            candidates = self.failover.build_candidates(task_type, local_only, constraints)
        except ChainExhaustedError as e:
            decision.final_error = e
            logger.warning("No eligible provider", task_type=task_type.value, local_only=local_only)
            return

        deadline = (
            constraints.deadline_seconds
            if constraints.deadline_seconds is not None
            else self.request_deadline_seconds
        )
        deadline_at = start + deadline

        for provider in candidates:
            remaining = deadline_at - self._clock()
            if remaining <= 0:
                decision.final_error = RequestCancelledError(
                    f"request deadline of {deadline:g}s exceeded", decision.attempts
                )
                return
            try:
                response = await self._attempt(provider, query, constraints, decision, remaining)
            except _DeadlineExpired:
                decision.final_error = RequestCancelledError(
                    f"request deadline of {deadline:g}s exceeded", decision.attempts
                )
                return
            if response is not None:
                decision.selected_provider = provider.provider_id
                decision.response = response
                if self.cache is not None:
                    await asyncio.to_thread(
                        self.cache.insert, query, task_type, response, provider.provider_id
                    )
                return

        decision.final_error = ChainExhaustedError(task_type.value, decision.attempts)

    async def _attempt(
        self,
        provider: Provider,
        query: str,
        constraints: RoutingConstraints,
        decision: RoutingDecision,
        remaining: float,
    ) -> str | None:
        """One provider call. Returns the response text, or None to advance the chain."""
        pid = provider.provider_id
        allowed, reason = self.failover.acquire(pid)
        if not allowed:
            decision.attempts.append(AttemptRecord(pid, AttemptOutcome.SKIPPED, error=reason))
            logger.debug("Circuit refused attempt", provider=pid, reason=reason)
            return None

        attempt_timeout = provider.timeout_seconds or self.attempt_timeout_seconds
        timeout = min(attempt_timeout, remaining)
        attempt_start = self._clock()
        try:
            result = await asyncio.wait_for(provider.backend.chat(query, constraints.options), timeout)
        except asyncio.CancelledError:
            self.failover.release(pid)
            decision.attempts.append(
                AttemptRecord(pid, AttemptOutcome.CANCELLED, self._ms_since(attempt_start), "cancelled by caller")
            )
            logger.info("Request cancelled during provider attempt", provider=pid)
            raise
        except TimeoutError:
            latency_ms = self._ms_since(attempt_start)
            if timeout < attempt_timeout:
                self.failover.release(pid)
                decision.attempts.append(
                    AttemptRecord(pid, AttemptOutcome.CANCELLED, latency_ms, "request deadline exceeded")
                )
                raise _DeadlineExpired() from None
            error = ProviderTimeoutError(pid, timeout)
            self._record_failure(pid, latency_ms, AttemptOutcome.TIMEOUT)
            decision.attempts.append(AttemptRecord(pid, AttemptOutcome.TIMEOUT, latency_ms, error.message))
            logger.warning("Provider attempt timed out", provider=pid, timeout_seconds=timeout)
            return None
        except ProviderError as e:
            latency_ms = self._ms_since(attempt_start)
            self._record_failure(pid, latency_ms)
            decision.attempts.append(AttemptRecord(pid, AttemptOutcome.ERROR, latency_ms, e.message))
            logger.warning("Provider attempt failed", provider=pid, error=e.message)
            return None
        except Exception as e:
            latency_ms = self._ms_since(attempt_start)
            self._record_failure(pid, latency_ms)
            decision.attempts.append(
                AttemptRecord(pid, AttemptOutcome.ERROR, latency_ms, f"{type(e).__name__}: {e}")
            )
            logger.exception("Provider raised unexpected error", provider=pid)
            if self.metrics:
                self.metrics.record_error(type(e).__name__, 'provider')
            return None

        latency_ms = self._ms_since(attempt_start)
        self.health_monitor.record(pid, latency_ms, success=True)
        self.failover.record_success(pid)
        self._observe_attempt(pid, AttemptOutcome.SUCCESS, latency_ms)
        decision.attempts.append(AttemptRecord(pid, AttemptOutcome.SUCCESS, latency_ms))
        logger.info("Provider attempt succeeded", provider=pid, latency_ms=round(latency_ms, 1))
        return result.text

    def _ms_since(self, started: float) -> float:
        return (self._clock() - started) * 1000

    def _record_failure(
        self, provider_id: str, latency_ms: float, outcome: AttemptOutcome = AttemptOutcome.ERROR
    ) -> None:
        self.health_monitor.record(provider_id, latency_ms, success=False)
        self.failover.record_failure(provider_id)
        self._observe_attempt(provider_id, outcome, latency_ms)

    def _observe_attempt(self, provider_id: str, outcome: AttemptOutcome, latency_ms: float) -> None:
        if not self.metrics:
            return
        self.metrics.record_provider_attempt(provider_id, outcome.value, latency_ms / 1000)
        self.metrics.update_provider_state(
            provider_id,
            self.health_monitor.score(provider_id),
            self.failover.circuit_state(provider_id).value,
        )

    @staticmethod
    def _outcome(decision: RoutingDecision) -> str:
        if decision.cache_hit:
            return "cache_hit"
        if decision.success:
            return "success"
        error = decision.final_error
        if isinstance(error, ThreatBlockedError):
            return "blocked"
        if isinstance(error, ChainExhaustedError):
            return "exhausted"
        if isinstance(error, RequestCancelledError):
            return "deadline"
        return "cancelled"

    def _finish(self, decision: RoutingDecision) -> None:
        outcome = self._outcome(decision)
        self._recent.append(
            {
                'trace_id': decision.trace_id,
                'task_type': decision.task_type.value,
                'outcome': outcome,
                'selected_provider': decision.selected_provider,
                'attempted_providers': decision.attempted_providers,
                'error_code': int(decision.final_error.error_code) if decision.final_error else None,
                'elapsed_ms': round(decision.elapsed_ms, 2),
            }
        )
        if self.metrics:
            self.metrics.record_route(decision.task_type.value, outcome, decision.elapsed_ms / 1000)
            if self.cache is not None:
                self.metrics.update_cache_memory(self.cache.memory_usage())
        logger.info(
            "Route finished",
            outcome=outcome,
            provider=decision.selected_provider,
            attempts=len(decision.attempts),
            elapsed_ms=round(decision.elapsed_ms, 1),
        )

    # ------------------------------------------------------------------
    # observability
    # ------------------------------------------------------------------

    def recent_routes(self) -> list[dict[str, Any]]:
        return list(self._recent)

    def status(self) -> dict[str, Any]:
        """Observability snapshot: providers, cache, threat counters, recent routes."""
        ids = self.registry.ids()
        health = self.health_monitor.report(ids)
        providers = {}
        for provider in self.registry.all():
            pid = provider.provider_id
            providers[pid] = {
                'available': provider.available,
                'local': provider.local,
                'cost_per_unit': provider.cost_per_unit,
                'health': health['providers'][pid],
                'circuit': self.failover.circuit_breaker.snapshot(pid),
            }
        return {
            'providers': providers,
            'system_health': health['system_health'],
            'chains': {t.value: c for t, c in self.failover.chains.items()},
            'cache': self.cache.stats() if self.cache is not None else None,
            'threat': self.threat_classifier.counters() if self.threat_classifier is not None else None,
            'recent_routes': self.recent_routes(),
        }

    async def probe_providers(self, update_availability: bool = False) -> dict[str, Any]:
        """
        Run every backend's health_check() concurrently.

        With ``update_availability`` unreachable providers are marked
        unavailable (and reachable ones available again).
        """
        system = HealthCheckSystem()
        for provider in self.registry.all():
            system.add_provider(provider.provider_id, ProviderHealthCheck(provider, self.failover))
        result = await system.check_health()
        if update_availability:
            for pid, check in result['checks'].items():
                self.registry.set_available(pid, check['status'] != 'unhealthy')
        return result

    async def close(self) -> None:
        await self.registry.close()
