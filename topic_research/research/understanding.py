"""Topic understanding: classify a topic from a quick search before planning."""

import logging

from pydantic import BaseModel, ConfigDict, Field

from ..engines.models import EngineId, SearchResult
from ..engines.protocols import EngineClient
from ..llm.protocols import LLMProvider
from ..llm.structured import SchemaError, generate_structured
from ..settings import LLM_TIMEOUT_SECONDS
from .models import (
    Difficulty,
    ResearchApproach,
    TopicCategory,
    TopicUnderstanding,
    UserContext,
)

logger = logging.getLogger(__name__)


class UnderstandingDraft(BaseModel):
    """Schema for a generated topic understanding."""

    model_config = ConfigDict(populate_by_name=True)

    definition: str = Field(min_length=1)
    category: TopicCategory
    complexity: Difficulty
    relevant_domains: list[str] = Field(default_factory=list, alias="relevantDomains")
    recommended_engines: list[EngineId] = Field(default_factory=list, alias="recommendedEngines")
    research_approach: ResearchApproach = Field(alias="researchApproach")


def create_fallback_understanding(topic: str) -> TopicUnderstanding:
    return TopicUnderstanding(
        topic=topic,
        definition=f"A topic requiring research to understand: {topic}",
        category=TopicCategory.ACADEMIC,
        complexity=Difficulty.BEGINNER,
        relevant_domains=[topic],
        recommended_engines=[EngineId.ACADEMIC],
        research_approach=ResearchApproach.BROAD_OVERVIEW,
    )


class TopicUnderstandingModule:
    """Builds a TopicUnderstanding from a general search and the generation capability."""

    def __init__(
        self,
        llm: LLMProvider | None = None,
        general_engine: EngineClient | None = None,
        temperature: float = 0.3,
        context_results: int = 8,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.llm = llm
        self.general_engine = general_engine
        self.temperature = temperature
        self.context_results = context_results
        self.timeout = timeout

    async def understand(
        self, topic: str, user_context: UserContext | None = None
    ) -> TopicUnderstanding:
        """Classify a topic; returns the fallback understanding on any failure."""
        if self.llm is None:
            return create_fallback_understanding(topic)

        sources = await self._search_context(topic)
        result = await generate_structured(
            self.llm,
            self._build_prompt(topic, sources, user_context),
            UnderstandingDraft,
            temperature=self.temperature,
            timeout=self.timeout,
        )
        if isinstance(result, SchemaError):
            logger.warning(f"Topic understanding failed ({result.message}), using fallback")
            return create_fallback_understanding(topic)

        draft = result.value
        # General is always searched, so only specialized engines are recommendations
        recommended = [e for e in dict.fromkeys(draft.recommended_engines) if e != EngineId.GENERAL]
        understanding = TopicUnderstanding(
            topic=topic,
            definition=draft.definition,
            category=draft.category,
            complexity=draft.complexity,
            relevant_domains=draft.relevant_domains,
            recommended_engines=recommended,
            research_approach=draft.research_approach,
        )
        logger.info(
            f"Understood '{topic}' as {understanding.category.value}/"
            f"{understanding.complexity.value}, engines: "
            f"{[e.value for e in understanding.recommended_engines]}"
        )
        return understanding

    async def _search_context(self, topic: str) -> list[SearchResult]:
        if self.general_engine is None:
            return []
        try:
            results = await self.general_engine.search(f"what is {topic} overview definition")
        except Exception as e:
            logger.warning(f"Context search for '{topic}' failed: {e}")
            return []
        return results[: self.context_results]

    @staticmethod
    def _build_prompt(
        topic: str, sources: list[SearchResult], user_context: UserContext | None
    ) -> str:
        context = "\n".join(f"- {s.title}: {s.snippet[:300]}" for s in sources)
        level = ""
        if user_context is not None and user_context.level is not None:
            level = f"\nThe learner's level is {user_context.level.value}.\n"
        return f"""Classify the topic "{topic}" using ONLY the search findings below.

FINDINGS:
{context or "- no findings available"}
{level}
Return JSON:
{{
  "definition": "one or two sentences",
  "category": "academic|technical|creative|practical|theoretical",
  "complexity": "beginner|intermediate|advanced",
  "relevantDomains": ["..."],
  "recommendedEngines": ["academic", "video", "community", "computational"],
  "researchApproach": "broad-overview|deep-dive|practical-focus|academic-research"
}}"""
