"""Async SearXNG client and per-engine adapters."""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..errors import EngineError
from ..settings import SEARXNG_BASE_URL, SEARXNG_TIMEOUT_SECONDS
from .models import EngineId, SearchResult
from .protocols import EngineClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineProfile:
    """How an engine maps onto SearXNG categories/engines and filters results."""

    categories: list[str]
    engines: list[str] = field(default_factory=list)
    safesearch: int = 1
    time_range: str | None = None
    max_results: int = 15
    min_content_length: int = 0
    score_threshold: float = 0.0


ENGINE_PROFILES: dict[EngineId, EngineProfile] = {
    EngineId.GENERAL: EngineProfile(
        categories=["general"],
        max_results=20,
        min_content_length=100,
        score_threshold=0.3,
    ),
    EngineId.ACADEMIC: EngineProfile(
        categories=["science", "it"],
        engines=["arxiv", "google scholar", "pubmed", "semantic scholar", "crossref"],
        safesearch=0,
        time_range="year",
        max_results=15,
        min_content_length=200,
        score_threshold=0.4,
    ),
    EngineId.COMPUTATIONAL: EngineProfile(
        categories=["science", "it"],
        engines=["wolframalpha", "wikipedia"],
        safesearch=0,
        max_results=10,
        min_content_length=50,
        score_threshold=0.5,
    ),
    EngineId.VIDEO: EngineProfile(
        categories=["videos"],
        engines=["youtube", "vimeo", "dailymotion"],
        time_range="year",
        max_results=12,
        min_content_length=0,
        score_threshold=0.3,
    ),
    EngineId.COMMUNITY: EngineProfile(
        categories=["social media"],
        engines=["reddit", "stackoverflow", "stackexchange"],
        time_range="year",
        max_results=15,
        min_content_length=100,
        score_threshold=0.2,
    ),
}


class SearxngClient:
    """Async client for a SearXNG instance's JSON search API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = SEARXNG_TIMEOUT_SECONDS,
        language: str = "en",
    ):
        self.base_url = (base_url or SEARXNG_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.language = language
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "SearxngClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Accept": "application/json"},
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    async def search(
        self,
        query: str,
        categories: list[str] | None = None,
        engines: list[str] | None = None,
        safesearch: int = 1,
        time_range: str | None = None,
        pageno: int = 1,
        engine_label: str = "searxng",
    ) -> dict[str, Any]:
        """
        Run a search against the /search endpoint.

        Args:
            query: Search query
            categories: SearXNG categories to search
            engines: Specific SearXNG engines to use
            safesearch: 0 (off), 1 (moderate) or 2 (strict)
            time_range: Optional day/month/year restriction
            pageno: Result page
            engine_label: Engine name used in raised errors

        Returns:
            Parsed JSON response

        Raises:
            EngineError: On HTTP, transport or decode failures
        """
        params: dict[str, Any] = {
            "q": query,
            "format": "json",
            "language": self.language,
            "safesearch": safesearch,
            "pageno": pageno,
        }
        if categories:
            params["categories"] = ",".join(categories)
        if engines:
            params["engines"] = ",".join(engines)
        if time_range:
            params["time_range"] = time_range

        logger.debug(f"SearXNG search: q='{query}', params={params}")

        try:
            response = await self.client.get("/search", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise EngineError(
                engine_label,
                f"HTTP {status}: {e.response.text[:200]}",
                status_code=status,
            ) from e
        except httpx.TimeoutException as e:
            raise EngineError(engine_label, f"Request timeout: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise EngineError(engine_label, f"Network error: {e}", retryable=True) from e

        try:
            data = response.json()
        except ValueError as e:
            # Instances with the JSON format disabled answer with HTML
            raise EngineError(
                engine_label, f"Invalid JSON response: {e}", retryable=False
            ) from e

        logger.debug(f"SearXNG returned {len(data.get('results', []))} raw results")
        return data


def _result_id(url: str, title: str) -> str:
    return hashlib.sha1(f"{url}|{title}".encode()).hexdigest()[:16]


class SearxngEngine(EngineClient):
    """
    Engine client backed by SearXNG, filtered by an engine profile.

    Usage:
        async with SearxngClient() as client:
            engine = SearxngEngine(client, EngineId.VIDEO)
            results = await engine.search("photosynthesis explained")
    """

    def __init__(
        self,
        client: SearxngClient,
        engine_id: EngineId,
        profile: EngineProfile | None = None,
    ):
        self._client = client
        self.engine_id = engine_id
        self.profile = profile or ENGINE_PROFILES[engine_id]

    async def search(self, query: str) -> list[SearchResult]:
        data = await self._client.search(
            query,
            categories=self.profile.categories,
            engines=self.profile.engines or None,
            safesearch=self.profile.safesearch,
            time_range=self.profile.time_range,
            engine_label=self.engine_id.value,
        )
        return self._convert(data.get("results", []))

    def _convert(self, raw_results: list[dict[str, Any]]) -> list[SearchResult]:
        """Normalize scores to [0, 1] and apply the profile's filters."""
        scores = [float(r.get("score") or 0.0) for r in raw_results]
        top_score = max(scores, default=0.0)

        results: list[SearchResult] = []
        for position, raw in enumerate(raw_results):
            content = (raw.get("content") or "").strip()
            if len(content) < self.profile.min_content_length:
                continue

            if top_score > 0:
                relevance = scores[position] / top_score
            else:
                relevance = max(0.1, 1.0 - position * 0.05)
            if relevance < self.profile.score_threshold:
                continue

            url = raw.get("url") or "#"
            title = (raw.get("title") or "").strip() or "Untitled"
            results.append(
                SearchResult(
                    id=_result_id(url, title),
                    title=title,
                    url=url,
                    snippet=content or "No description",
                    relevance_score=round(min(1.0, relevance), 4),
                )
            )
            if len(results) >= self.profile.max_results:
                break

        logger.info(f"[{self.engine_id.value}] {len(results)} results after filtering")
        return results
