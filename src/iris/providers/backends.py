"""
Provider Backends - aiohttp adapters for Ollama and OpenAI-compatible APIs
(OpenAI, Groq, Gemini's OpenAI endpoint).
"""

import logging
import time
from typing import Any

import aiohttp

from iris.core.exceptions import ProviderError

from .base import ChatResponse, ProviderBackend, ProviderCapabilities, ProviderStatus

logger = logging.getLogger(__name__)


class BaseHTTPBackend(ProviderBackend):
    """Shared HTTP session management for HTTP-based provider backends."""

    def __init__(
        self,
        provider_id: str,
        capabilities: ProviderCapabilities,
        base_url: str,
        model: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(provider_id, capabilities)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._headers = headers or {}
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=120), headers=self._headers
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _post_json(self, endpoint: str, payload: dict) -> dict[str, Any]:
        """POST JSON payload to an endpoint and return the parsed body.

        Raises ProviderError on non-200 responses and transport errors.
        """
        session = await self._get_session()
        try:
            async with session.post(f"{self.base_url}{endpoint}", json=payload) as response:
                if response.status == 200:
                    return await response.json()
                body = await response.text()
                raise ProviderError(
                    self.provider_id, f"HTTP {response.status}: {body[:200]}", status=response.status
                )
        except aiohttp.ClientError as e:
            raise ProviderError(self.provider_id, f"{type(e).__name__}: {e}") from e

    async def _get_json(self, endpoint: str) -> tuple[int, Any]:
        session = await self._get_session()
        async with session.get(f"{self.base_url}{endpoint}") as response:
            if response.status == 200:
                return response.status, await response.json()
            return response.status, await response.text()

    @staticmethod
    def _build_chat_messages(query: str, options: dict[str, Any]) -> list[dict[str, Any]]:
        """Build a chat-messages list from the query, system prompt, and optional history."""
        system_prompt = options.get("system_prompt")
        messages = options.get("messages")
        if messages is not None:
            chat_messages: list[dict[str, Any]] = list(messages)
            if system_prompt and (not chat_messages or chat_messages[0].get("role") != "system"):
                chat_messages.insert(0, {"role": "system", "content": system_prompt})
            if not chat_messages or chat_messages[-1].get("content") != query:
                chat_messages.append({"role": "user", "content": query})
        else:
            chat_messages = []
            if system_prompt:
                chat_messages.append({"role": "system", "content": system_prompt})
            chat_messages.append({"role": "user", "content": query})
        return chat_messages

    async def _probe(self, endpoint: str, extract_models) -> ProviderStatus:
        start = time.perf_counter()
        try:
            status, data = await self._get_json(endpoint)
        except (aiohttp.ClientError, TimeoutError) as e:
            return ProviderStatus(
                provider_id=self.provider_id,
                healthy=False,
                latency_ms=(time.perf_counter() - start) * 1000,
                detail=f"{type(e).__name__}: {e}",
            )
        latency_ms = (time.perf_counter() - start) * 1000
        if status != 200:
            return ProviderStatus(
                provider_id=self.provider_id,
                healthy=False,
                latency_ms=latency_ms,
                detail=f"HTTP {status}",
            )
        return ProviderStatus(
            provider_id=self.provider_id,
            healthy=True,
            latency_ms=latency_ms,
            models=extract_models(data),
        )


class OllamaBackend(BaseHTTPBackend):
    """Ollama backend adapter (local models)"""

    async def chat(self, query: str, options: dict[str, Any] | None = None) -> ChatResponse:
        """Generate text using Ollama /api/chat."""
        options = options or {}
        payload = {
            "model": options.get("model", self.model),
            "messages": self._build_chat_messages(query, options),
            "stream": False,
            "options": {
                "num_predict": options.get("max_tokens", 2048),
                "temperature": options.get("temperature", 0.7),
            },
        }
        data = await self._post_json("/api/chat", payload)
        content = data.get("message", {}).get("content", "")
        if not content:
            raise ProviderError(self.provider_id, "Empty response from Ollama")
        return ChatResponse(
            text=content,
            provider_id=self.provider_id,
            model=payload["model"],
            tokens_generated=data.get("eval_count", 0),
            raw=data,
        )

    async def health_check(self) -> ProviderStatus:
        """Check Ollama via /api/tags"""
        return await self._probe(
            "/api/tags", lambda data: [m["name"] for m in data.get("models", []) if "name" in m]
        )


class OpenAICompatibleBackend(BaseHTTPBackend):
    """Adapter for any /chat/completions API (OpenAI, Groq, Gemini OpenAI endpoint)."""

    def __init__(
        self,
        provider_id: str,
        capabilities: ProviderCapabilities,
        base_url: str,
        model: str,
        api_key: str | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        super().__init__(provider_id, capabilities, base_url, model, headers=headers)

    async def chat(self, query: str, options: dict[str, Any] | None = None) -> ChatResponse:
        options = options or {}
        payload = {
            "model": options.get("model", self.model),
            "messages": self._build_chat_messages(query, options),
            "max_tokens": options.get("max_tokens", 2048),
            "temperature": options.get("temperature", 0.7),
        }
        data = await self._post_json("/chat/completions", payload)
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(self.provider_id, "Response contained no choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            raise ProviderError(self.provider_id, "Empty completion")
        usage = data.get("usage") or {}
        return ChatResponse(
            text=content,
            provider_id=self.provider_id,
            model=data.get("model", payload["model"]),
            tokens_generated=usage.get("completion_tokens", 0),
            raw=data,
        )

    async def health_check(self) -> ProviderStatus:
        """List models via /models; a 200 means the key and endpoint work."""
        return await self._probe(
            "/models", lambda data: [m["id"] for m in data.get("data", []) if "id" in m]
        )
