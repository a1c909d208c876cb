"""Protocol definitions for search engine clients."""

from typing import Protocol, runtime_checkable

from .models import SearchResult


@runtime_checkable
class EngineClient(Protocol):
    """Protocol for search engine clients.

    Implement this protocol to add a new engine backend. Implementations
    raise on failure; retries and circuit breaking are applied by callers.
    """

    async def search(self, query: str) -> list[SearchResult]:
        """
        Search the engine.

        Args:
            query: Free-text query

        Returns:
            Results ordered by the engine's own ranking
        """
        ...
