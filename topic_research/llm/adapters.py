"""Adapter implementations for text-generation providers."""

import logging

import anthropic
from openai import AsyncOpenAI

from ..errors import ConfigurationError
from ..settings import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_DEFAULT_MODEL,
    LLM_TIMEOUT_SECONDS,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MODEL,
)
from .protocols import LLMProvider, Message, MessageRole

logger = logging.getLogger(__name__)


class OpenRouterAdapter(LLMProvider):
    """
    Adapter for OpenRouter or any other OpenAI-compatible endpoint.

    Usage:
        async with OpenRouterAdapter() as llm:
            text = await llm.complete("List the subtopics of photosynthesis")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        """
        Initialize the adapter.

        Args:
            api_key: API key. Defaults to OPENROUTER_API_KEY.
            model: Model to use. Defaults to OPENROUTER_DEFAULT_MODEL.
            base_url: API base URL. Defaults to the OpenRouter endpoint.
            timeout: Per-request timeout in seconds
        """
        self.api_key = api_key or OPENROUTER_API_KEY
        self.model = model or OPENROUTER_DEFAULT_MODEL
        self.base_url = base_url or OPENROUTER_BASE_URL
        self.timeout = timeout
        self._client: AsyncOpenAI | None = None

        if not self.api_key:
            raise ConfigurationError(
                "OpenRouter API key required. Set OPENROUTER_API_KEY in .env"
            )

        logger.info(f"OpenRouter adapter initialized with model: {self.model}")

    async def __aenter__(self) -> "OpenRouterAdapter":
        # Retries are owned by the pipeline's retry policy and breakers
        self._client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=2,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion for a simple prompt."""
        messages = []
        if system_prompt:
            messages.append(Message(role=MessageRole.SYSTEM, content=system_prompt))
        messages.append(Message(role=MessageRole.USER, content=prompt))

        logger.debug(f"Completing prompt ({len(prompt)} chars) with {self.model}")
        return await self.complete_messages(messages, temperature, max_tokens)

    async def complete_messages(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion for a conversation."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": m.role.value, "content": m.content} for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        result = response.choices[0].message.content or ""
        logger.debug(f"Completion received ({len(result)} chars), usage: {response.usage}")
        return result


class AnthropicAdapter(LLMProvider):
    """
    Adapter for the Anthropic API (direct).

    Usage:
        async with AnthropicAdapter() as llm:
            text = await llm.complete("List the subtopics of photosynthesis")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key or ANTHROPIC_API_KEY
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self.timeout = timeout
        self._client: anthropic.AsyncAnthropic | None = None

        if not self.api_key:
            raise ConfigurationError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY in .env"
            )

        logger.info(f"Anthropic adapter initialized with model: {self.model}")

    async def __aenter__(self) -> "AnthropicAdapter":
        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            max_retries=2,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion for a simple prompt."""
        messages = []
        if system_prompt:
            messages.append(Message(role=MessageRole.SYSTEM, content=system_prompt))
        messages.append(Message(role=MessageRole.USER, content=prompt))
        return await self.complete_messages(messages, temperature, max_tokens)

    async def complete_messages(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion for a conversation."""
        # Anthropic takes the system prompt separately
        system_prompt = ""
        formatted_messages = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_prompt = msg.content
            else:
                formatted_messages.append({"role": msg.role.value, "content": msg.content})

        message = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens or 4096,
            system=system_prompt,
            messages=formatted_messages,
            temperature=temperature,
        )

        result = "".join(block.text for block in message.content if block.type == "text")
        logger.debug(
            f"Completion received ({len(result)} chars), usage: "
            f"input={message.usage.input_tokens}, output={message.usage.output_tokens}"
        )
        return result
