"""Search engine clients and result models."""

from .models import (
    CRITICAL_ENGINES,
    SPECIALIZED_ENGINES,
    EngineId,
    SearchResult,
    SearchResultWithEngine,
    is_critical,
)
from .protocols import EngineClient
from .deduplication import deduplicate_results, normalize_title, normalize_url
from .searxng import ENGINE_PROFILES, EngineProfile, SearxngClient, SearxngEngine
from .arxiv_engine import ArxivEngine

__all__ = [
    # Models
    "CRITICAL_ENGINES",
    "SPECIALIZED_ENGINES",
    "EngineId",
    "SearchResult",
    "SearchResultWithEngine",
    "is_critical",
    # Protocols
    "EngineClient",
    # Deduplication
    "deduplicate_results",
    "normalize_title",
    "normalize_url",
    # Implementations
    "ENGINE_PROFILES",
    "EngineProfile",
    "SearxngClient",
    "SearxngEngine",
    "ArxivEngine",
]
