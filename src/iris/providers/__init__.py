"""Provider backends and the registry that selects them from configuration."""

from .backends import BaseHTTPBackend, OllamaBackend, OpenAICompatibleBackend
from .base import ChatResponse, ProviderBackend, ProviderCapabilities, ProviderStatus
from .registry import Provider, ProviderRegistry, build_provider

__all__ = [
    "BaseHTTPBackend",
    "ChatResponse",
    "OllamaBackend",
    "OpenAICompatibleBackend",
    "Provider",
    "ProviderBackend",
    "ProviderCapabilities",
    "ProviderRegistry",
    "ProviderStatus",
    "build_provider",
]
