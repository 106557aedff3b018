"""Health check system: aggregates provider probes into one status."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from iris.providers.registry import Provider
from iris.routing.circuit_breaker import CircuitState
from iris.routing.failover import FailoverEngine

logger = logging.getLogger(__name__)


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    status: HealthStatus
    message: str
    timestamp: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'status': self.status.value,
            'message': self.message,
            'timestamp': self.timestamp,
            'details': self.details or {},
        }


class HealthCheckProvider:
    """Abstract health check provider: implement check() for custom checks."""

    async def check(self) -> HealthCheckResult:
        raise NotImplementedError


class HealthCheckSystem:
    """Runs every registered check concurrently and folds them into one status."""

    def __init__(self) -> None:
        self._providers: dict[str, HealthCheckProvider] = {}
        self._check_functions: dict[str, Callable[[], Awaitable[HealthCheckResult]]] = {}

    def add_provider(self, name: str, provider: HealthCheckProvider) -> None:
        self._providers[name] = provider
        logger.debug("Added health check provider: %s", name)

    def add_check(self, name: str, check_func: Callable[[], Awaitable[HealthCheckResult]]) -> None:
        self._check_functions[name] = check_func
        logger.debug("Added health check function: %s", name)

    async def _run_one(self, name: str, source: Any) -> dict[str, Any]:
        try:
            result = await (source.check() if isinstance(source, HealthCheckProvider) else source())
            return result.to_dict()
        except Exception as e:
            logger.exception("Health check failed for %s: %s", name, e)
            return {
                'status': HealthStatus.UNHEALTHY.value,
                'message': f"Check failed: {e}",
                'timestamp': datetime.now(tz=UTC).isoformat(),
                'details': {},
            }

    async def check_health(self) -> dict[str, Any]:
        all_checks: dict[str, Any] = {**self._providers, **self._check_functions}
        names = list(all_checks)
        results = await asyncio.gather(*(self._run_one(n, all_checks[n]) for n in names))
        checks = dict(zip(names, results))

        statuses = {c['status'] for c in checks.values()}
        if HealthStatus.UNHEALTHY.value in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED.value in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return {'status': overall.value, 'checks': checks, 'timestamp': datetime.now(tz=UTC).isoformat()}


class ProviderHealthCheck(HealthCheckProvider):
    """Probe one provider backend; a reachable provider with a tripped circuit is degraded."""

    def __init__(self, provider: Provider, failover: FailoverEngine | None = None) -> None:
        self.provider = provider
        self.failover = failover

    async def check(self) -> HealthCheckResult:
        status = await self.provider.backend.health_check()
        details = status.to_dict()
        now = datetime.now(tz=UTC).isoformat()
        if not status.healthy:
            return HealthCheckResult(
                HealthStatus.UNHEALTHY,
                f"{self.provider.provider_id} unreachable: {status.detail}",
                now,
                details=details,
            )
        if self.failover is not None:
            circuit = self.failover.circuit_state(self.provider.provider_id)
            details['circuit_state'] = circuit.value
            if circuit != CircuitState.CLOSED:
                return HealthCheckResult(
                    HealthStatus.DEGRADED,
                    f"{self.provider.provider_id} reachable but circuit is {circuit.value}",
                    now,
                    details=details,
                )
        return HealthCheckResult(
            HealthStatus.HEALTHY, f"{self.provider.provider_id} healthy", now, details=details
        )
