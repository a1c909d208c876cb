"""Academic engine backed by the arXiv API."""

import asyncio
import logging
import time

import arxiv

from ..errors import EngineError
from ..settings import ARXIV_RATE_LIMIT_SECONDS
from .models import EngineId, SearchResult
from .protocols import EngineClient

logger = logging.getLogger(__name__)


class ArxivRateLimiter:
    """Rate limiter enforcing minimum delay between arXiv requests."""

    def __init__(self, min_interval: float = 3.0):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between requests (default: 3.0 per arXiv guidelines)
        """
        self._min_interval = min_interval
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire rate limit slot, waiting if necessary."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class ArxivEngine(EngineClient):
    """Academic engine client wrapping the synchronous arxiv library."""

    engine_id = EngineId.ACADEMIC

    def __init__(
        self,
        max_results: int = 10,
        rate_limit_seconds: float = ARXIV_RATE_LIMIT_SECONDS,
        categories: list[str] | None = None,
    ):
        """
        Initialize the arXiv engine.

        Args:
            max_results: Maximum results per query
            rate_limit_seconds: Minimum seconds between requests
            categories: Optional arXiv categories to filter (e.g., ["cs.LG"])
        """
        self.max_results = max_results
        self.categories = categories
        self._rate_limiter = ArxivRateLimiter(rate_limit_seconds)
        # Retries are applied by the caller's retry policy
        self._client = arxiv.Client(page_size=max_results, delay_seconds=0, num_retries=0)

    async def search(self, query: str) -> list[SearchResult]:
        if self.categories:
            cat_query = " OR ".join(f"cat:{cat}" for cat in self.categories)
            full_query = f"({query}) AND ({cat_query})"
        else:
            full_query = query

        search = arxiv.Search(
            query=full_query,
            max_results=self.max_results,
            sort_by=arxiv.SortCriterion.Relevance,
        )

        await self._rate_limiter.acquire()
        try:
            papers = await asyncio.to_thread(lambda: list(self._client.results(search)))
        except arxiv.HTTPError as e:
            raise EngineError(self.engine_id.value, str(e), status_code=e.status) from e
        except (arxiv.UnexpectedEmptyPageError, ConnectionError) as e:
            raise EngineError(self.engine_id.value, str(e), retryable=True) from e

        logger.debug(f"arXiv search '{query}' returned {len(papers)} results")

        results = []
        for position, paper in enumerate(papers):
            results.append(
                SearchResult(
                    id=paper.get_short_id(),
                    title=paper.title.strip(),
                    url=paper.entry_id,
                    snippet=" ".join(paper.summary.split()),
                    relevance_score=round(max(0.3, 1.0 - position * 0.07), 4),
                )
            )
        return results
