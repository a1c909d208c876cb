"""Configuration loader with Pydantic validation and env var expansion."""

import logging
import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ValidationError

from ..research.subtopics import SubtopicConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "profiles.yaml"
DEFAULT_PROFILE = "dev"


class LLMConfig(BaseModel):
    """Configuration for the text-generation backend."""

    backend: Literal["openrouter", "anthropic", "mock", "none"] = "openrouter"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    timeout: float = 60.0


class EnginesConfig(BaseModel):
    """Configuration for the search engine clients."""

    backend: Literal["searxng", "mock"] = "searxng"
    searxng_url: str = "http://localhost:8080"
    timeout: float = 15.0
    language: str = "en"
    # Engines to enable; general is required for a valid run
    enabled: list[Literal["general", "academic", "video", "community", "computational"]] = [
        "general", "academic", "video", "community", "computational",
    ]
    academic_backend: Literal["searxng", "arxiv"] = "searxng"
    arxiv_categories: list[str] | None = None  # e.g., ["cs.LG", "q-bio"]
    arxiv_rate_limit: float = 3.0  # Seconds between arXiv requests


class RetryConfig(BaseModel):
    """Retry policy for engine calls (seconds)."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: float = 1.0


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = 5
    reset_timeout: float = 60.0


class PlanningConfig(BaseModel):
    temperature: float = 0.6
    min_queries: int = 15
    max_queries: int = 20


class ExecutionConfig(BaseModel):
    min_total_results: int = 3
    max_results: int = 30
    run_timeout: float | None = 90.0
    fallback_relevance_scale: float = 0.8


class SynthesisConfig(BaseModel):
    temperature: float = 0.6
    context_size: int = 20
    max_insights: int = 5
    max_themes: int = 5


class CommunicationConfig(BaseModel):
    history_limit: int = 1000
    error_limit: int = 10
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 60.0
    channel_size: int = 100


class ProfileConfig(BaseModel):
    """Configuration profile containing all backend and pipeline configs."""

    llm: LLMConfig = LLMConfig()
    engines: EnginesConfig = EnginesConfig()
    retry: RetryConfig = RetryConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    planning: PlanningConfig = PlanningConfig()
    execution: ExecutionConfig = ExecutionConfig()
    synthesis: SynthesisConfig = SynthesisConfig()
    subtopics: SubtopicConfig = SubtopicConfig()
    communication: CommunicationConfig = CommunicationConfig()


class ConfigFile(BaseModel):
    """Root configuration file structure."""

    profiles: dict[str, ProfileConfig]


def expand_env_vars(value: str) -> str:
    """Expand ${VAR} references in a string; unknown variables are left as-is."""
    if not isinstance(value, str):
        return value

    def replacer(match):
        return os.environ.get(match.group(1), match.group(0))

    return re.sub(r"\$\{([^}]+)\}", replacer, value)


def expand_env_vars_recursive(data):
    """Recursively expand env vars in nested dict/list structures."""
    if isinstance(data, dict):
        return {k: expand_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return expand_env_vars(data)
    else:
        return data


_UNEXPANDED = re.compile(r"\$\{[^}]+\}")


def _is_unset(value) -> bool:
    return isinstance(value, str) and _UNEXPANDED.fullmatch(value) is not None


def _drop_unset(data):
    """Drop values still holding an unexpanded ``${VAR}`` so model defaults apply."""
    if isinstance(data, dict):
        return {k: _drop_unset(v) for k, v in data.items() if not _is_unset(v)}
    if isinstance(data, list):
        return [_drop_unset(item) for item in data if not _is_unset(item)]
    return data


def list_profiles(config_path: Path = DEFAULT_CONFIG_PATH) -> dict[str, ProfileConfig]:
    """Load every profile from a YAML file."""
    with open(config_path) as f:
        raw_data = yaml.safe_load(f) or {}

    expanded = _drop_unset(expand_env_vars_recursive(raw_data))
    return ConfigFile(**expanded).profiles


def load_config_from_yaml(config_path: Path, profile_name: str) -> ProfileConfig:
    """Load one profile from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
        KeyError: If profile doesn't exist
    """
    profiles = list_profiles(config_path)
    if profile_name not in profiles:
        available = ", ".join(profiles.keys())
        raise KeyError(f"Profile '{profile_name}' not found. Available profiles: {available}")
    return profiles[profile_name]


def load_config_from_env() -> ProfileConfig:
    """Build a profile from environment variables (fallback mode)."""
    if os.environ.get("OPENROUTER_API_KEY"):
        llm = LLMConfig(
            backend="openrouter",
            model=os.environ.get("OPENROUTER_DEFAULT_MODEL"),
            api_key=os.environ.get("OPENROUTER_API_KEY"),
            base_url=os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
        )
    elif os.environ.get("ANTHROPIC_API_KEY"):
        llm = LLMConfig(
            backend="anthropic",
            model=os.environ.get("ANTHROPIC_DEFAULT_MODEL"),
            api_key=os.environ.get("ANTHROPIC_API_KEY"),
        )
    else:
        # Every stage has a deterministic fallback without generation
        llm = LLMConfig(backend="none")

    engines = EnginesConfig(
        searxng_url=os.environ.get("SEARXNG_BASE_URL", "http://localhost:8080"),
    )
    return ProfileConfig(llm=llm, engines=engines)


def load_config(
    profile: str | None = None,
    config_path: Path | None = None,
) -> ProfileConfig:
    """Load configuration from the YAML profiles file or environment variables.

    Args:
        profile: Profile name. Defaults to RESEARCH_PROFILE env var, then "dev".
        config_path: Path to config file. Defaults to the bundled profiles.yaml.

    Raises:
        KeyError: If the requested profile doesn't exist in the file
    """
    if profile is None:
        profile = os.environ.get("RESEARCH_PROFILE", DEFAULT_PROFILE)
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, using environment variables")
        return load_config_from_env()

    try:
        return load_config_from_yaml(config_path, profile)
    except (yaml.YAMLError, ValidationError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Falling back to environment variables...")
        return load_config_from_env()
