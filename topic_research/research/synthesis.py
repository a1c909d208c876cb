"""Synthesis of research results into insights, themes and quality scores."""

import logging
import re
from collections import Counter

from ..engines.models import EngineId, SearchResultWithEngine
from ..llm.protocols import LLMProvider
from ..llm.structured import generate
from ..settings import LLM_TIMEOUT_SECONDS
from .models import QualityLevel, SynthesisResult

logger = logging.getLogger(__name__)

ENGINE_WEIGHTS: dict[EngineId, float] = {
    EngineId.GENERAL: 1.3,
    EngineId.COMMUNITY: 1.2,
    EngineId.ACADEMIC: 1.1,
}

# Language that marks a source as practical when weighting
WEIGHTING_INDICATORS = (
    "practical", "application", "example", "use", "how to", "guide",
    "tutorial", "real world", "implementation", "benefits", "advantages",
)

# Language that marks an extracted line as a practical insight
INSIGHT_KEYWORDS = (
    "practical", "application", "use", "example", "real world",
    "implementation", "benefit", "advantage", "how", "when", "where",
)

# Language that counts toward the practical-focus score
FOCUS_KEYWORDS = (
    "practical", "application", "example", "tutorial", "guide", "how to",
    "real world", "implementation", "benefits", "use case",
)

PRACTICAL_THEME_TERMS = frozenset({
    "application", "practical", "example", "implementation", "benefit",
    "advantage", "solution", "method", "approach", "technique", "strategy",
})

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "about", "their", "there", "these", "those", "which", "where",
    "while", "would", "could", "should", "other", "using", "being", "through",
})

CREDIBLE_URL_MARKERS = (".edu", ".gov", "arxiv")

_LIST_ITEM = re.compile(r"^\s*(?:[•\-\*]|\d+[.)])\s+(.+?)\s*$", re.MULTILINE)
_WORD_SPLIT = re.compile(r"\W+")

ENGINE_COUNT = len(EngineId)


def practical_weight(result: SearchResultWithEngine) -> float:
    """Relevance adjusted toward accessible, applied sources, capped at 1.0."""
    weight = result.relevance_score * ENGINE_WEIGHTS.get(result.engine, 1.0)
    text = result.text
    matches = sum(1 for indicator in WEIGHTING_INDICATORS if indicator in text)
    if matches:
        weight *= 1 + 0.1 * matches
    return min(weight, 1.0)


def weight_sources(results: list[SearchResultWithEngine]) -> list[SearchResultWithEngine]:
    """Return weighted copies sorted by practical weight, highest first."""
    weighted = [r.model_copy(update={"practical_weight": practical_weight(r)}) for r in results]
    weighted.sort(key=lambda r: r.practical_weight or 0.0, reverse=True)
    return weighted


def extract_insights(text: str, limit: int = 5) -> list[str]:
    """Parse bullet/numbered lines, preferring those with practical markers."""
    items = [m.group(1).strip() for m in _LIST_ITEM.finditer(text)]
    items = [item for item in items if item]
    practical = [
        item for item in items if any(k in item.lower() for k in INSIGHT_KEYWORDS)
    ]
    return (practical or items)[:limit]


def extract_themes(text: str, limit: int = 5) -> list[str]:
    """Most frequent content words, with practical terms counted double."""
    words = [
        w for w in _WORD_SPLIT.split(text.lower())
        if len(w) > 4 and w not in STOP_WORDS and not w.isdigit()
    ]
    frequency = Counter(words)
    for term in PRACTICAL_THEME_TERMS & frequency.keys():
        frequency[term] *= 2
    # Ties keep first-seen order
    return [word for word, _ in frequency.most_common(limit)]


def assess_source_quality(results: list[SearchResultWithEngine]) -> QualityLevel:
    """Blend average relevance with a credibility/accessibility balance."""
    if not results:
        return QualityLevel.LOW

    total = len(results)
    avg_relevance = sum(r.relevance_score for r in results) / total
    credible = sum(
        1 for r in results
        if r.engine == EngineId.ACADEMIC
        or any(marker in r.url.lower() for marker in CREDIBLE_URL_MARKERS)
    )
    accessible = sum(
        1 for r in results if r.engine in (EngineId.GENERAL, EngineId.COMMUNITY)
    )
    balance = (credible / total + accessible / total) / 2

    if avg_relevance > 0.7 and balance > 0.4:
        return QualityLevel.HIGH
    if avg_relevance > 0.5 and balance > 0.25:
        return QualityLevel.MEDIUM
    return QualityLevel.LOW


def calculate_practical_comprehensiveness(results: list[SearchResultWithEngine]) -> float:
    """0.4 engine diversity + 0.4 source count + 0.2 general coverage."""
    if not results:
        return 0.0
    engine_diversity = len({r.engine for r in results}) / ENGINE_COUNT
    source_count = min(len(results) / 20, 1.0)
    general_count = sum(1 for r in results if r.engine == EngineId.GENERAL)
    general_coverage = min(general_count / 5, 1.0)
    return engine_diversity * 0.4 + source_count * 0.4 + general_coverage * 0.2


def assess_practical_focus(results: list[SearchResultWithEngine]) -> QualityLevel:
    if not results:
        return QualityLevel.LOW

    total = len(results)
    accessible_ratio = sum(
        1 for r in results if r.engine in (EngineId.GENERAL, EngineId.COMMUNITY)
    ) / total
    content_ratio = sum(
        1 for r in results if any(k in r.text for k in FOCUS_KEYWORDS)
    ) / total
    score = (accessible_ratio + content_ratio) / 2

    if score > 0.6:
        return QualityLevel.HIGH
    if score > 0.3:
        return QualityLevel.MEDIUM
    return QualityLevel.LOW


class SynthesisModule:
    """
    Synthesizes research results into a SynthesisResult.

    Never raises for empty input or generation failures: insights and themes
    then come from the weighted sources themselves.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        temperature: float = 0.6,
        context_size: int = 20,
        max_insights: int = 5,
        max_themes: int = 5,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.llm = llm
        self.temperature = temperature
        self.context_size = context_size
        self.max_insights = max_insights
        self.max_themes = max_themes
        self.timeout = timeout
        self.last_weighted: list[SearchResultWithEngine] = []

    async def synthesize(
        self, topic: str, results: list[SearchResultWithEngine]
    ) -> SynthesisResult:
        weighted = weight_sources(results)
        self.last_weighted = weighted
        context = weighted[: self.context_size]

        text = await self._generate_analysis(topic, context)
        insights = extract_insights(text, self.max_insights) if text else []
        themes = extract_themes(text, self.max_themes) if text else []

        if not insights:
            insights = self._fallback_insights(context)
        if not themes:
            themes = extract_themes(
                " ".join(f"{r.title} {r.snippet}" for r in context), self.max_themes
            )

        synthesis = SynthesisResult(
            key_insights=insights,
            content_themes=themes,
            source_quality=assess_source_quality(results),
            comprehensiveness=calculate_practical_comprehensiveness(results),
            practical_focus=assess_practical_focus(results),
        )
        logger.info(
            f"Synthesized {len(results)} results: quality={synthesis.source_quality.value}, "
            f"comprehensiveness={synthesis.comprehensiveness:.2f}, "
            f"practical_focus={synthesis.practical_focus.value}"
        )
        return synthesis

    async def _generate_analysis(
        self, topic: str, context: list[SearchResultWithEngine]
    ) -> str:
        if self.llm is None or not context:
            return ""
        try:
            return await generate(
                self.llm,
                self._build_prompt(topic, context),
                temperature=self.temperature,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning(f"Synthesis generation failed, deriving insights from sources: {e}")
            return ""

    def _fallback_insights(self, context: list[SearchResultWithEngine]) -> list[str]:
        insights = []
        for result in context:
            if result.snippet and result.snippet != "No description":
                sentence = result.snippet.split(". ")[0].strip().rstrip(".")
                insights.append(f"{result.title}: {sentence}")
            else:
                insights.append(result.title)
            if len(insights) >= self.max_insights:
                break
        return insights

    @staticmethod
    def _build_prompt(topic: str, context: list[SearchResultWithEngine]) -> str:
        sources = "\n\n".join(
            f"[{r.engine.value.upper()}] {r.title}\n{r.snippet}\nSource: {r.url}"
            for r in context
        )
        return f"""Synthesize what the sources below say about "{topic}", focusing on practical understanding and real-world applications.

SOURCES:
{sources}

Provide:
1. KEY INSIGHTS as bullet points ("- ..."), each about how {topic} works, is used or why it matters
2. MAIN THEMES: how it works in practice, problems it solves, real-world examples, limitations

Prefer actionable, concrete statements over theoretical complexity."""
