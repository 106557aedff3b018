"""
Provider capability interface: the only contract the orchestration core
depends on. One subclass per backend; the registry picks the subclass from
configuration at startup.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from iris.core.types import TaskType


@dataclass(frozen=True)
class ProviderCapabilities:
    """What a provider can serve and what it costs."""

    task_types: frozenset[TaskType]
    cost_per_unit: float = 0.0
    local: bool = False

    def supports(self, task_type: TaskType) -> bool:
        return task_type in self.task_types


@dataclass
class ChatResponse:
    """Successful completion from a provider"""

    text: str
    provider_id: str
    model: str
    tokens_generated: int = 0
    raw: dict[str, Any] | None = field(default=None, repr=False)


@dataclass
class ProviderStatus:
    """Result of a provider health probe"""

    provider_id: str
    healthy: bool
    latency_ms: float = 0.0
    detail: str | None = None
    models: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'provider_id': self.provider_id,
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'detail': self.detail,
            'models': self.models,
        }


class ProviderBackend(ABC):
    """Abstract base class for provider backends"""

    def __init__(self, provider_id: str, capabilities: ProviderCapabilities) -> None:
        self.provider_id = provider_id
        self._capabilities = capabilities

    @abstractmethod
    async def chat(self, query: str, options: dict[str, Any] | None = None) -> ChatResponse:
        """Complete ``query``; raise ProviderError on a backend-reported failure."""

    @abstractmethod
    async def health_check(self) -> ProviderStatus:
        """Probe the backend without generating text."""

    def get_capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        return None
