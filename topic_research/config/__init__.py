"""Configuration system for backends and the research pipeline."""

from .loader import (
    load_config,
    load_config_from_env,
    load_config_from_yaml,
    list_profiles,
    ProfileConfig,
    LLMConfig,
    EnginesConfig,
    RetryConfig,
    CircuitBreakerConfig,
    PlanningConfig,
    ExecutionConfig,
    SynthesisConfig,
    CommunicationConfig,
)
from .factory import (
    MockEngine,
    MockLLMProvider,
    create_llm_provider,
    create_searxng_client,
    create_engines,
    create_retry_options,
    create_breakers,
    create_communication,
    create_pipeline,
)

__all__ = [
    # Loader
    "load_config",
    "load_config_from_env",
    "load_config_from_yaml",
    "list_profiles",
    "ProfileConfig",
    "LLMConfig",
    "EnginesConfig",
    "RetryConfig",
    "CircuitBreakerConfig",
    "PlanningConfig",
    "ExecutionConfig",
    "SynthesisConfig",
    "CommunicationConfig",
    # Factory
    "MockEngine",
    "MockLLMProvider",
    "create_llm_provider",
    "create_searxng_client",
    "create_engines",
    "create_retry_options",
    "create_breakers",
    "create_communication",
    "create_pipeline",
]
