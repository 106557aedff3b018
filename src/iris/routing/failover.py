"""Failover Engine: fallback chains filtered by circuit, health, cost and threat policy."""

import logging

from iris.core.exceptions import ChainExhaustedError
from iris.core.types import RoutingConstraints, TaskType
from iris.providers.registry import Provider, ProviderRegistry

from .circuit_breaker import CircuitBreaker, CircuitState
from .health_monitor import HealthMonitor

logger = logging.getLogger(__name__)


class FailoverEngine:
    """
    Owns the per-task-type fallback chains and the circuit breaker.

    Candidate building is a pure read (circuits are only peeked); the
    OPEN -> HALF_OPEN transition and the trial slot are claimed by acquire()
    when the orchestrator is about to call a provider. Health scores filter
    but never reorder: chain order is the configured preference.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        chains: dict[TaskType, list[str]],
        circuit_breaker: CircuitBreaker | None = None,
        health_monitor: HealthMonitor | None = None,
        min_health_score: int = 0,
    ):
        self.registry = registry
        self.chains = {TaskType(t): list(c) for t, c in chains.items()}
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.health_monitor = health_monitor or HealthMonitor()
        self.min_health_score = min_health_score

    def chain(self, task_type: TaskType) -> list[str]:
        """Configured chain for the task type, falling back to the general chain."""
        if task_type in self.chains:
            return list(self.chains[task_type])
        return list(self.chains.get(TaskType.GENERAL, []))

    def _exclusion_reason(
        self,
        provider: Provider | None,
        task_type: TaskType,
        local_only: bool,
        constraints: RoutingConstraints,
    ) -> str | None:
        if provider is None:
            return "not registered"
        if not provider.available:
            return "marked unavailable"
        if not provider.supports(task_type):
            return f"does not serve {task_type}"
        if local_only and not provider.local:
            return "remote provider under local-only policy"
        if constraints.max_cost is not None and provider.cost_per_unit > constraints.max_cost:
            return f"cost {provider.cost_per_unit} above max {constraints.max_cost}"
        if not self.circuit_breaker.is_available(provider.provider_id):
            return "circuit open"
        if (
            self.min_health_score > 0
            and self.circuit_breaker.get_state(provider.provider_id) == CircuitState.CLOSED
            and self.health_monitor.score(provider.provider_id) < self.min_health_score
        ):
            return f"health score below {self.min_health_score}"
        return None

    def build_candidates(
        self,
        task_type: TaskType,
        local_only: bool = False,
        constraints: RoutingConstraints | None = None,
    ) -> list[Provider]:
        """
        Ordered providers eligible to serve the request.

        Raises:
            ChainExhaustedError: If no provider passes the filters
        """
        constraints = constraints or RoutingConstraints()
        candidates: list[Provider] = []
        seen: set[str] = set()
        for provider_id in self.chain(task_type):
            if provider_id in seen:
                continue
            seen.add(provider_id)
            provider = self.registry.get(provider_id)
            reason = self._exclusion_reason(provider, task_type, local_only, constraints)
            if reason is not None:
                logger.debug("Skipping %s for %s: %s", provider_id, task_type, reason)
                continue
            candidates.append(provider)

        preferred = constraints.preferred_provider
        if preferred is not None:
            for i, provider in enumerate(candidates):
                if provider.provider_id == preferred:
                    candidates.insert(0, candidates.pop(i))
                    break
            else:
                logger.debug("Preferred provider %s is not an eligible candidate", preferred)

        if not candidates:
            raise ChainExhaustedError(str(task_type))
        return candidates

    def acquire(self, provider_id: str) -> tuple[bool, str]:
        return self.circuit_breaker.acquire(provider_id)

    def release(self, provider_id: str) -> None:
        self.circuit_breaker.release(provider_id)

    def record_success(self, provider_id: str) -> None:
        self.circuit_breaker.record_success(provider_id)

    def record_failure(self, provider_id: str) -> None:
        self.circuit_breaker.record_failure(provider_id)

    def circuit_state(self, provider_id: str) -> CircuitState:
        return self.circuit_breaker.get_state(provider_id)

    def status(self) -> dict:
        """Circuit snapshot per registered provider plus the configured chains."""
        return {
            'circuits': {pid: self.circuit_breaker.snapshot(pid) for pid in self.registry.ids()},
            'chains': {t.value: c for t, c in self.chains.items()},
            'thresholds': {
                'failure_threshold': self.circuit_breaker.failure_threshold,
                'recovery_timeout': self.circuit_breaker.recovery_timeout,
                'min_health_score': self.min_health_score,
            },
        }
