"""
Pytest configuration for all IRIS tests: shared fakes for providers and
clocks, plus marker registration.
"""

import asyncio
import sys
from typing import Any

import pytest

from iris.core.types import TaskType
from iris.providers.base import ChatResponse, ProviderBackend, ProviderCapabilities, ProviderStatus
from iris.providers.registry import Provider, ProviderRegistry

# =============================================================================
# FAKES
# =============================================================================


class FakeClock:
    """Manually advanced clock usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend(ProviderBackend):
    """
    Scripted backend. Each chat() pops the next script item: a string is
    returned as the response text, an exception instance is raised. With an
    empty script it answers ``"<provider_id>: <query>"``.
    """

    def __init__(
        self,
        provider_id: str,
        capabilities: ProviderCapabilities,
        script: list[Any] | None = None,
        delay: float = 0.0,
        healthy: bool = True,
    ) -> None:
        super().__init__(provider_id, capabilities)
        self.script = list(script or [])
        self.delay = delay
        self.healthy = healthy
        self.calls: list[str] = []
        self.closed = False

    async def chat(self, query: str, options: dict[str, Any] | None = None) -> ChatResponse:
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.script.pop(0) if self.script else None
        if isinstance(outcome, BaseException):
            raise outcome
        text = outcome if isinstance(outcome, str) else f"{self.provider_id}: {query}"
        return ChatResponse(text=text, provider_id=self.provider_id, model="fake")

    async def health_check(self) -> ProviderStatus:
        return ProviderStatus(
            provider_id=self.provider_id,
            healthy=self.healthy,
            latency_ms=1.0,
            detail=None if self.healthy else "connection refused",
        )

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# SHARED FIXTURES
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_provider():
    """Factory: make_provider("a", local=True, script=[...]) -> Provider with a FakeBackend."""

    def _make(
        provider_id: str,
        task_types: list[TaskType] | None = None,
        local: bool = False,
        cost: float = 0.0,
        script: list[Any] | None = None,
        delay: float = 0.0,
        healthy: bool = True,
        timeout_seconds: float | None = None,
    ) -> Provider:
        caps = ProviderCapabilities(
            task_types=frozenset(task_types or list(TaskType)),
            cost_per_unit=cost,
            local=local,
        )
        backend = FakeBackend(provider_id, caps, script=script, delay=delay, healthy=healthy)
        return Provider(provider_id=provider_id, backend=backend, timeout_seconds=timeout_seconds)

    return _make


@pytest.fixture
def make_registry(make_provider):
    """Factory: make_registry(provider, ...) or make_registry("a", "b") for default fakes."""

    def _make(*providers) -> ProviderRegistry:
        registry = ProviderRegistry()
        for p in providers:
            registry.register(make_provider(p) if isinstance(p, str) else p)
        return registry

    return _make


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Validate test environment and configure pytest with custom markers."""
    missing = []
    for mod in ("aiohttp", "numpy", "pydantic", "pydantic_settings", "prometheus_client", "click"):
        try:
            __import__(mod)
        except ImportError:
            missing.append(mod)

    if missing:
        print(
            "\n"
            "=" * 70 + "\n"
            " TEST ENVIRONMENT ERROR\n"
            "=" * 70 + "\n"
            f"\n"
            f" Missing dependencies: {', '.join(missing)}\n"
            f"\n"
            f" Run: pip install -e '.[dev]'\n"
            "=" * 70,
            file=sys.stderr,
        )
        raise SystemExit(1)

    config.addinivalue_line(
        "markers", "unit: Fast unit tests with no external dependencies"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds"
    )
