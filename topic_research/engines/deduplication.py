"""Result deduplication for multi-engine search."""

import logging
import re

from .models import SearchResultWithEngine

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Normalize title for comparison."""
    return _WHITESPACE.sub(" ", title.lower().strip())


def normalize_url(url: str) -> str:
    """Normalize URL for comparison."""
    return url.strip().lower().rstrip("/")


def dedup_key(result: SearchResultWithEngine) -> tuple[str, str]:
    return normalize_title(result.title), normalize_url(result.url)


def deduplicate_results(
    results: list[SearchResultWithEngine],
) -> list[SearchResultWithEngine]:
    """
    Collapse results sharing a normalized (title, url) pair.

    On collision the entry with the higher relevance score wins; it takes the
    position where the pair was first seen.

    Args:
        results: Results from all engines

    Returns:
        Deduplicated results
    """
    positions: dict[tuple[str, str], int] = {}
    unique: list[SearchResultWithEngine] = []

    for result in results:
        key = dedup_key(result)
        index = positions.get(key)
        if index is None:
            positions[key] = len(unique)
            unique.append(result)
        elif result.relevance_score > unique[index].relevance_score:
            unique[index] = result

    if len(unique) < len(results):
        logger.info(f"Deduplicated {len(results)} results to {len(unique)}")

    return unique
