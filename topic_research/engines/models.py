"""Data models for search engine results."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EngineId(str, Enum):
    """Identifier of a search engine."""

    GENERAL = "general"
    ACADEMIC = "academic"
    VIDEO = "video"
    COMMUNITY = "community"
    COMPUTATIONAL = "computational"


# General web search is required for baseline coverage; the rest are best-effort
CRITICAL_ENGINES: frozenset[EngineId] = frozenset({EngineId.GENERAL})
SPECIALIZED_ENGINES: frozenset[EngineId] = frozenset(set(EngineId) - CRITICAL_ENGINES)


def is_critical(engine: EngineId) -> bool:
    return engine in CRITICAL_ENGINES


class SearchResult(BaseModel):
    """A single result returned by an engine client."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    title: str = "Untitled"
    url: str = "#"
    snippet: str = "No description"
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0, alias="relevanceScore")


class SearchResultWithEngine(SearchResult):
    """A search result tagged with the engine and query reasoning that produced it."""

    engine: EngineId
    reasoning: str = ""
    practical_weight: float | None = Field(default=None, alias="practicalWeight")

    @classmethod
    def from_result(
        cls,
        result: SearchResult,
        engine: EngineId,
        reasoning: str = "",
        relevance_scale: float = 1.0,
    ) -> "SearchResultWithEngine":
        """Tag an engine result, optionally scaling its relevance."""
        return cls(
            id=result.id,
            title=result.title,
            url=result.url,
            snippet=result.snippet,
            relevance_score=min(1.0, max(0.0, result.relevance_score * relevance_scale)),
            engine=engine,
            reasoning=reasoning,
        )

    @property
    def text(self) -> str:
        """Title and snippet, lower-cased, for keyword matching."""
        return f"{self.title} {self.snippet}".lower()
