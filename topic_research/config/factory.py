"""Factory functions to create backends and pipeline modules from configuration."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from ..engines.models import EngineId, SearchResult

if TYPE_CHECKING:
    from ..agents.communication import AgentCommunicationManager
    from ..engines.protocols import EngineClient
    from ..engines.searxng import SearxngClient
    from ..llm.protocols import LLMProvider
    from ..research.pipeline import ResearchPipeline
    from ..resilience.circuit_breaker import CircuitBreakerManager
    from ..resilience.retry import RetryOptions
    from .loader import (
        CircuitBreakerConfig,
        CommunicationConfig,
        EnginesConfig,
        LLMConfig,
        ProfileConfig,
        RetryConfig,
    )


class MockLLMProvider:
    """Mock LLM provider for testing.

    Its replies are not structured output, so every generation step that
    uses it lands on its deterministic fallback.
    """

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Return a mock completion."""
        return f"[Mock response to: {prompt[:50]}...]"

    async def complete_messages(
        self,
        messages: list,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Return a mock completion for messages."""
        return "[Mock response]"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class MockEngine:
    """Mock search engine returning deterministic results per query."""

    def __init__(self, engine_id: EngineId, results_per_query: int = 3):
        self.engine_id = engine_id
        self.results_per_query = results_per_query

    async def search(self, query: str) -> list[SearchResult]:
        """Return mock results derived from the query text."""
        results = []
        for position in range(self.results_per_query):
            digest = hashlib.sha1(
                f"{self.engine_id.value}:{query}:{position}".encode()
            ).hexdigest()[:12]
            results.append(
                SearchResult(
                    id=digest,
                    title=f"{query.title()} ({self.engine_id.value} result {position + 1})",
                    url=f"https://example.org/{self.engine_id.value}/{digest}",
                    snippet=(
                        f"A practical guide to {query} with examples and a tutorial "
                        f"for beginners."
                    ),
                    relevance_score=round(1.0 - 0.1 * position, 2),
                )
            )
        return results


def create_llm_provider(config: LLMConfig) -> LLMProvider | None:
    """Create a text-generation backend from configuration.

    Args:
        config: LLM configuration

    Returns:
        LLMProvider instance (OpenRouterAdapter, AnthropicAdapter, Mock), or
        None when generation is disabled

    Raises:
        ValueError: If backend type is not supported
        ConfigurationError: If the backend needs an API key that is missing
    """
    if config.backend == "openrouter":
        from ..llm import OpenRouterAdapter

        return OpenRouterAdapter(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout,
        )

    elif config.backend == "anthropic":
        from ..llm import AnthropicAdapter

        return AnthropicAdapter(
            api_key=config.api_key,
            model=config.model,
            timeout=config.timeout,
        )

    elif config.backend == "mock":
        return MockLLMProvider()

    elif config.backend == "none":
        return None

    else:
        raise ValueError(f"Unsupported LLM backend: {config.backend}")


def create_searxng_client(config: EnginesConfig) -> SearxngClient | None:
    """Create the shared SearXNG HTTP client, or None for mock engines.

    The client must be entered with ``async with`` before the engines use it.
    """
    if config.backend != "searxng":
        return None

    from ..engines.searxng import SearxngClient

    return SearxngClient(
        base_url=config.searxng_url,
        timeout=config.timeout,
        language=config.language,
    )


def create_engines(
    config: EnginesConfig,
    searxng_client: SearxngClient | None = None,
) -> dict[EngineId, EngineClient]:
    """Create one engine client per enabled engine.

    Args:
        config: Engines configuration
        searxng_client: Shared SearXNG client (required for the searxng backend)

    Raises:
        ValueError: If the backend is unsupported or the SearXNG client is missing
    """
    enabled = [EngineId(name) for name in config.enabled]

    if config.backend == "mock":
        return {engine_id: MockEngine(engine_id) for engine_id in enabled}

    if config.backend != "searxng":
        raise ValueError(f"Unsupported engines backend: {config.backend}")
    if searxng_client is None:
        raise ValueError("SearXNG backend requires a SearxngClient")

    from ..engines.arxiv_engine import ArxivEngine
    from ..engines.searxng import SearxngEngine

    engines: dict[EngineId, EngineClient] = {}
    for engine_id in enabled:
        if engine_id == EngineId.ACADEMIC and config.academic_backend == "arxiv":
            engines[engine_id] = ArxivEngine(
                rate_limit_seconds=config.arxiv_rate_limit,
                categories=config.arxiv_categories,
            )
        else:
            engines[engine_id] = SearxngEngine(searxng_client, engine_id)
    return engines


def create_retry_options(config: RetryConfig) -> RetryOptions:
    """Create engine retry options from configuration."""
    from ..resilience.retry import RetryOptions

    return RetryOptions(
        max_attempts=config.max_attempts,
        base_delay=config.base_delay,
        max_delay=config.max_delay,
        backoff_factor=config.backoff_factor,
        jitter=config.jitter,
    )


def create_breakers(config: CircuitBreakerConfig) -> CircuitBreakerManager:
    """Create the circuit breaker registry from configuration."""
    from ..resilience.circuit_breaker import CircuitBreakerManager

    return CircuitBreakerManager(
        failure_threshold=config.failure_threshold,
        reset_timeout=config.reset_timeout,
    )


def create_communication(config: CommunicationConfig) -> AgentCommunicationManager:
    """Create the agent communication manager from configuration."""
    from ..agents.communication import AgentCommunicationManager

    return AgentCommunicationManager(
        history_limit=config.history_limit,
        error_limit=config.error_limit,
        heartbeat_interval=config.heartbeat_interval,
        heartbeat_timeout=config.heartbeat_timeout,
        channel_size=config.channel_size,
    )


def create_pipeline(
    profile: ProfileConfig,
    llm: LLMProvider | None,
    engines: dict[EngineId, EngineClient],
) -> ResearchPipeline:
    """Create a complete ResearchPipeline from a profile.

    This is the main factory function. Backends are passed in already
    constructed so the caller owns their lifecycle.

    Args:
        profile: Profile configuration
        llm: Text-generation provider, or None to run fully on fallbacks
        engines: Engine clients keyed by engine identity

    Returns:
        ResearchPipeline instance
    """
    from ..research import (
        ResearchExecutionModule,
        ResearchPipeline,
        ResearchPlanningModule,
        SubtopicExtractor,
        SynthesisModule,
        TopicUnderstandingModule,
    )

    communication = create_communication(profile.communication)

    understanding = TopicUnderstandingModule(
        llm=llm,
        general_engine=engines.get(EngineId.GENERAL),
        timeout=profile.llm.timeout,
    )
    planner = ResearchPlanningModule(
        llm=llm,
        temperature=profile.planning.temperature,
        timeout=profile.llm.timeout,
        min_queries=profile.planning.min_queries,
        max_queries=profile.planning.max_queries,
    )
    executor = ResearchExecutionModule(
        engines=engines,
        breakers=create_breakers(profile.circuit_breaker),
        communication=communication,
        retry_options=create_retry_options(profile.retry),
        min_total_results=profile.execution.min_total_results,
        max_results=profile.execution.max_results,
        run_timeout=profile.execution.run_timeout,
        fallback_relevance_scale=profile.execution.fallback_relevance_scale,
    )
    synthesizer = SynthesisModule(
        llm=llm,
        temperature=profile.synthesis.temperature,
        context_size=profile.synthesis.context_size,
        max_insights=profile.synthesis.max_insights,
        max_themes=profile.synthesis.max_themes,
        timeout=profile.llm.timeout,
    )
    extractor = SubtopicExtractor(
        llm=llm,
        config=profile.subtopics,
        timeout=profile.llm.timeout,
    )

    return ResearchPipeline(
        understanding=understanding,
        planner=planner,
        executor=executor,
        synthesizer=synthesizer,
        extractor=extractor,
        communication=communication,
    )
