"""Chat-completion client for Kindred.

One client covers every supported provider: Ollama, OpenAI and OpenRouter
all speak the OpenAI chat-completions API, so only the base URL and the key
differ.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx
from openai import APIConnectionError, APIError, AsyncOpenAI

from kindred.config import LLMConfig, ModelProvider

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from the completion client."""

    content: str
    model: str
    provider: str
    tokens_used: int | None = None
    latency_ms: int | None = None

    def __str__(self) -> str:
        return f"LLMResponse(provider={self.provider}, model={self.model}, content_length={len(self.content)})"


class ChatCompletionClient:
    """
    Client for OpenAI-compatible chat-completion endpoints.

    Implements ``CompletionClientProtocol``.
    """

    def __init__(
        self,
        provider: ModelProvider = ModelProvider.OLLAMA,
        model: str = "qwen3:8b",
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "",
        timeout: float = 120.0,
        default_temperature: float | None = None,
        default_max_tokens: int | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            provider: Which provider the endpoint belongs to.
            model: Model name to use.
            base_url: Base URL of the OpenAI-compatible API.
            api_key: API key. Ollama ignores it.
            timeout: Request timeout in seconds.
            default_temperature: Used when a call passes no temperature.
            default_max_tokens: Used when a call passes no token cap.
        """
        self.provider = provider
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

        # Create HTTP client with connection pooling
        self._http_client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or "ollama",
            http_client=self._http_client,
        )

    async def generate(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion.

        Args:
            system: System prompt, sent as the first message.
            messages: Chat messages with ``role`` and ``content``.
            temperature: Sampling temperature (0.0-2.0). None uses the client default.
            max_tokens: Maximum tokens to generate. None uses the client default.

        Returns:
            LLMResponse with generated content and metadata.

        Raises:
            APIConnectionError: If the endpoint cannot be reached.
            APIError: If the API request fails.
        """
        start_time = time.time()

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system}, *messages],
                temperature=temperature if temperature is not None else self.default_temperature,
                max_tokens=max_tokens if max_tokens is not None else self.default_max_tokens,
            )
        except APIConnectionError as e:
            logger.error(f"Failed to connect to {self.provider.value} at {self.base_url}: {e}")
            raise
        except APIError as e:
            logger.error(f"{self.provider.value} API error: {e}")
            raise

        latency_ms = int((time.time() - start_time) * 1000)

        content = ""
        if response.choices:
            message_content = response.choices[0].message.content
            if isinstance(message_content, str):
                content = message_content
        tokens_used = response.usage.total_tokens if response.usage else None

        logger.debug(
            f"{self.provider.value} response: model={self.model}, tokens={tokens_used}, latency={latency_ms}ms"
        )

        return LLMResponse(
            content=content,
            model=self.model,
            provider=self.provider.value,
            tokens_used=tokens_used,
            latency_ms=latency_ms,
        )

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion and return only its text."""
        response = await self.generate(system, messages, temperature=temperature, max_tokens=max_tokens)
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def __aenter__(self) -> ChatCompletionClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


def create_llm_client(config: LLMConfig) -> ChatCompletionClient:
    """Build a completion client from configuration."""
    logger.info(f"Using {config.provider.value} model {config.model} at {config.base_url}")
    return ChatCompletionClient(
        provider=config.provider,
        model=config.model,
        base_url=config.base_url,
        api_key=config.api_key,
        timeout=config.timeout,
        default_temperature=config.temperature,
        default_max_tokens=config.max_tokens,
    )
