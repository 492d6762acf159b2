"""
LLM Client Infrastructure
==========================

Wrappers for the two text-generation endpoints (local Ollama, Groq cloud)
providing a clean interface for one chat round trip.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the application layer depends on
abstractions, not concrete implementations.

Clients never retry. Every failure is reported as a ``ProviderException``
tagged with one of the ``ProviderErrorKind`` values; fallback policy
belongs to the orchestrator.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from triage_relay.config import Settings
from triage_relay.core import ConfigurationException, ProviderErrorKind, ProviderException


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration of one inference endpoint."""
    name: str
    base_url: str
    model: str
    timeout_seconds: float
    temperature: float
    max_tokens: int = 1000
    api_key: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        try:
            url = httpx.URL(self.base_url)
        except httpx.InvalidURL as e:
            raise ConfigurationException(
                f"Provider '{self.name}' has a malformed base_url: {e}",
                {"provider": self.name}
            )
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationException(
                f"Provider '{self.name}' base_url must be an absolute http(s) URL (got {self.base_url!r})",
                {"provider": self.name}
            )
        if self.timeout_seconds <= 0:
            raise ConfigurationException(
                f"Provider '{self.name}' timeout must be positive (got {self.timeout_seconds})",
                {"provider": self.name}
            )

    @classmethod
    def local_from_settings(cls, settings: Settings) -> "ProviderConfig":
        """Primary provider: local Ollama, optionally behind Cloudflare Access."""
        headers = {}
        if settings.cf_access_client_id and settings.cf_access_client_secret:
            headers["CF-Access-Client-Id"] = settings.cf_access_client_id
            headers["CF-Access-Client-Secret"] = settings.cf_access_client_secret
        return cls(
            name="local",
            base_url=settings.local_llm_url,
            model=settings.local_llm_model,
            timeout_seconds=settings.local_llm_timeout_seconds,
            temperature=settings.local_llm_temperature,
            max_tokens=settings.llm_max_tokens,
            api_key=settings.local_llm_token,
            extra_headers=headers,
        )

    @classmethod
    def fallback_from_settings(cls, settings: Settings) -> "ProviderConfig":
        """Fallback provider: Groq OpenAI-compatible API."""
        return cls(
            name="fallback",
            base_url=settings.groq_base_url,
            model=settings.groq_model,
            timeout_seconds=settings.groq_timeout_seconds,
            temperature=settings.groq_temperature,
            max_tokens=settings.llm_max_tokens,
            api_key=settings.groq_api_key,
        )


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only the single chat round
    trip the triage pipeline needs is defined.
    """

    config: ProviderConfig

    @abstractmethod
    async def chat_completion(self, messages: List[dict]) -> ChatCompletionResult:
        """
        Generate one chat completion.

        Raises:
            ProviderException: On timeout, connection, HTTP or auth failure
        """

    async def close(self) -> None:
        """Release network resources."""


class OllamaLLMClient(ILLMClient):
    """
    Ollama chat client for the local (primary) model.

    Uses the native ``/api/chat`` endpoint with JSON output mode. The timeout
    is a hard budget for the whole round trip.
    """

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        headers = dict(config.extra_headers)
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._http_client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._headers = headers

    def _error(self, kind: ProviderErrorKind, message: str, status_code: Optional[int] = None) -> ProviderException:
        return ProviderException(self.config.name, kind, message, status_code)

    async def chat_completion(self, messages: List[dict]) -> ChatCompletionResult:
        """
        Generate chat completion using the local Ollama model.

        Args:
            messages: List of message dicts with 'role' and 'content'

        Returns:
            ChatCompletionResult with generated text

        Raises:
            ProviderException: If the round trip fails
        """
        url = f"{self.config.base_url.rstrip('/')}/api/chat"
        payload = {
            "model": self.config.model,
            "messages": messages,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }

        start_time = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._http_client.post(url, json=payload, headers=self._headers),
                timeout=self.config.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise self._error(
                ProviderErrorKind.TIMEOUT,
                f"no response within {self.config.timeout_seconds:g}s"
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise self._error(ProviderErrorKind.CONNECTION_FAILURE, f"request failed: {e}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        if response.status_code in (401, 403):
            raise self._error(
                ProviderErrorKind.AUTH_FAILURE,
                "credentials rejected",
                response.status_code
            )
        if response.status_code >= 400:
            raise self._error(
                ProviderErrorKind.HTTP_ERROR,
                f"unexpected status {response.status_code}",
                response.status_code
            )

        try:
            body = response.json()
            content = body["message"]["content"]
        except (ValueError, KeyError, TypeError, RecursionError):
            raise self._error(
                ProviderErrorKind.HTTP_ERROR,
                "response envelope has no message content",
                response.status_code
            )

        return ChatCompletionResult(
            content=content or "",
            model=body.get("model", self.config.model),
            prompt_tokens=int(body.get("prompt_eval_count") or 0),
            completion_tokens=int(body.get("eval_count") or 0),
            latency_ms=latency_ms
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self._http_client.aclose()


class GroqLLMClient(ILLMClient):
    """
    Groq client implementation for Llama models.

    Groq is OpenAI-compatible, so the OpenAI SDK is used with a custom base
    URL. SDK retries are disabled.
    """

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client: Optional[AsyncOpenAI] = None
        if config.api_key:
            self._client = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout_seconds,
                max_retries=0,
                http_client=http_client,
            )

    def _error(self, kind: ProviderErrorKind, message: str, status_code: Optional[int] = None) -> ProviderException:
        return ProviderException(self.config.name, kind, message, status_code)

    async def chat_completion(self, messages: List[dict]) -> ChatCompletionResult:
        """
        Generate chat completion using Groq.

        Args:
            messages: List of message dicts with 'role' and 'content'

        Returns:
            ChatCompletionResult with generated text

        Raises:
            ProviderException: If the round trip fails
        """
        if self._client is None:
            raise self._error(ProviderErrorKind.AUTH_FAILURE, "API key not configured")

        start_time = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.config.model,
                    messages=messages,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    response_format={"type": "json_object"},
                ),
                timeout=self.config.timeout_seconds,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError):
            raise self._error(
                ProviderErrorKind.TIMEOUT,
                f"no response within {self.config.timeout_seconds:g}s"
            )
        except openai.APIConnectionError as e:
            raise self._error(ProviderErrorKind.CONNECTION_FAILURE, f"request failed: {e}")
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise self._error(ProviderErrorKind.AUTH_FAILURE, "credentials rejected", e.status_code)
        except openai.APIStatusError as e:
            raise self._error(
                ProviderErrorKind.HTTP_ERROR,
                f"unexpected status {e.status_code}",
                e.status_code
            )
        except openai.APIError as e:
            raise self._error(ProviderErrorKind.HTTP_ERROR, f"malformed response: {e}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage

        return ChatCompletionResult(
            content=content or "",
            model=response.model or self.config.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms
        )

    async def close(self) -> None:
        """Close the SDK's HTTP client."""
        if self._client is not None:
            await self._client.close()
