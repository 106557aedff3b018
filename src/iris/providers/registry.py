"""
Provider Registry - the set of backends known to the router, registered once
at startup. Providers are never removed; an outage only flips ``available``.
"""

import logging
import threading
from dataclasses import dataclass

from iris.config.settings import ProviderConfig, Settings
from iris.core.types import TaskType

from .backends import OllamaBackend, OpenAICompatibleBackend
from .base import ProviderBackend, ProviderCapabilities

logger = logging.getLogger(__name__)


@dataclass
class Provider:
    """Registered provider: identity, static metadata and its backend."""

    provider_id: str
    backend: ProviderBackend
    priority: int = 1
    available: bool = True
    timeout_seconds: float | None = None

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self.backend.get_capabilities()

    @property
    def local(self) -> bool:
        return self.capabilities.local

    @property
    def cost_per_unit(self) -> float:
        return self.capabilities.cost_per_unit

    def supports(self, task_type: TaskType) -> bool:
        return self.capabilities.supports(task_type)


def _build_ollama(provider_id: str, config: ProviderConfig, caps: ProviderCapabilities) -> ProviderBackend:
    return OllamaBackend(provider_id, caps, base_url=config.base_url, model=config.model)


def _build_openai_compatible(
    provider_id: str, config: ProviderConfig, caps: ProviderCapabilities
) -> ProviderBackend:
    return OpenAICompatibleBackend(
        provider_id,
        caps,
        base_url=config.base_url,
        model=config.model,
        api_key=config.resolve_api_key(),
    )


BACKEND_BUILDERS = {
    "ollama": _build_ollama,
    "openai_compatible": _build_openai_compatible,
}


def build_provider(provider_id: str, config: ProviderConfig) -> Provider:
    """Instantiate the backend variant named by ``config.kind``."""
    caps = ProviderCapabilities(
        task_types=frozenset(config.task_types),
        cost_per_unit=config.cost_per_unit,
        local=config.local,
    )
    backend = BACKEND_BUILDERS[config.kind](provider_id, config, caps)
    return Provider(
        provider_id=provider_id,
        backend=backend,
        priority=config.priority,
        timeout_seconds=config.timeout_seconds,
    )


class ProviderRegistry:
    """Registry of providers keyed by id"""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        registry = cls()
        for provider_id, config in settings.enabled_providers().items():
            registry.register(build_provider(provider_id, config))
        return registry

    def register(self, provider: Provider) -> None:
        """Register a provider; ids are unique for the lifetime of the process."""
        with self._lock:
            if provider.provider_id in self._providers:
                raise ValueError(f"Provider '{provider.provider_id}' is already registered")
            self._providers[provider.provider_id] = provider
        caps = provider.capabilities
        logger.info(
            "Registered provider %s (local=%s, cost=%s, tasks=%s)",
            provider.provider_id,
            caps.local,
            caps.cost_per_unit,
            sorted(t.value for t in caps.task_types),
        )

    def get(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def all(self) -> list[Provider]:
        return list(self._providers.values())

    def ids(self) -> list[str]:
        return list(self._providers)

    def providers_for(self, task_type: TaskType) -> list[Provider]:
        return [p for p in self._providers.values() if p.supports(task_type)]

    def set_available(self, provider_id: str, available: bool) -> None:
        """Mark a provider (un)available without unregistering it."""
        provider = self._providers.get(provider_id)
        if provider is None:
            logger.warning("Unknown provider: %s", provider_id)
            return
        if provider.available != available:
            provider.available = available
            logger.info("Provider %s marked %s", provider_id, "available" if available else "unavailable")

    async def close(self) -> None:
        """Close all backends"""
        for provider in self._providers.values():
            await provider.backend.close()
