"""Data models for research planning, synthesis and subtopic extraction."""

from collections import Counter
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..engines.models import EngineId, SearchResultWithEngine

# Every plan must carry at least this many queries for these engines
MANDATORY_MINIMUMS: dict[EngineId, int] = {
    EngineId.GENERAL: 5,
    EngineId.COMMUNITY: 5,
    EngineId.VIDEO: 5,
}


class TopicCategory(str, Enum):
    ACADEMIC = "academic"
    TECHNICAL = "technical"
    CREATIVE = "creative"
    PRACTICAL = "practical"
    THEORETICAL = "theoretical"


class Difficulty(str, Enum):
    """Complexity of a topic, or difficulty of a subtopic."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ResearchApproach(str, Enum):
    BROAD_OVERVIEW = "broad-overview"
    DEEP_DIVE = "deep-dive"
    PRACTICAL_FOCUS = "practical-focus"
    ACADEMIC_RESEARCH = "academic-research"


class QualityLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TopicUnderstanding(BaseModel):
    """Upstream classification of a topic, consumed by planning."""

    model_config = ConfigDict(populate_by_name=True)

    topic: str = ""
    definition: str
    category: TopicCategory = TopicCategory.ACADEMIC
    complexity: Difficulty = Difficulty.BEGINNER
    relevant_domains: list[str] = Field(default_factory=list, alias="relevantDomains")
    recommended_engines: list[EngineId] = Field(
        default_factory=list, alias="recommendedEngines"
    )
    research_approach: ResearchApproach = Field(
        default=ResearchApproach.BROAD_OVERVIEW, alias="researchApproach"
    )


class UserContext(BaseModel):
    """Optional learner context used to tailor planning and extraction."""

    model_config = ConfigDict(populate_by_name=True)

    level: Difficulty | None = None
    interests: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list, alias="focusAreas")
    exclude_areas: list[str] = Field(default_factory=list, alias="excludeAreas")


class ResearchQuery(BaseModel):
    """A planned (query, engine, reasoning) tuple. Immutable once planned."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1)
    engine: EngineId
    reasoning: str = ""


def count_engines(queries: list[ResearchQuery]) -> dict[EngineId, int]:
    return dict(Counter(q.engine for q in queries))


class ResearchPlan(BaseModel):
    """
    A validated research plan.

    Construction fails unless the mandatory per-engine minimums hold and
    ``engine_distribution`` matches the actual per-engine query counts, so
    every instance is a valid plan.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    research_queries: list[ResearchQuery] = Field(alias="researchQueries")
    research_strategy: str = Field(alias="researchStrategy")
    expected_outcomes: list[str] = Field(default_factory=list, alias="expectedOutcomes")
    engine_distribution: dict[EngineId, int] = Field(alias="engineDistribution")

    @model_validator(mode="after")
    def _check_invariants(self) -> "ResearchPlan":
        counts = count_engines(self.research_queries)
        declared = {engine: n for engine, n in self.engine_distribution.items() if n}
        if declared != counts:
            raise ValueError(
                f"engine_distribution {declared} does not match query counts {counts}"
            )
        for engine, minimum in MANDATORY_MINIMUMS.items():
            if counts.get(engine, 0) < minimum:
                raise ValueError(
                    f"plan has {counts.get(engine, 0)} {engine.value} queries, needs {minimum}"
                )
        return self

    @classmethod
    def build(
        cls,
        queries: list[ResearchQuery],
        strategy: str,
        expected_outcomes: list[str] | None = None,
    ) -> "ResearchPlan":
        """Build a plan, deriving the engine distribution from the queries."""
        return cls(
            research_queries=queries,
            research_strategy=strategy,
            expected_outcomes=expected_outcomes or [],
            engine_distribution=count_engines(queries),
        )

    def queries_for(self, engine: EngineId) -> list[ResearchQuery]:
        return [q for q in self.research_queries if q.engine == engine]


class DraftQuery(BaseModel):
    """A query as emitted by the generation capability."""

    query: str = Field(min_length=1)
    engine: EngineId
    reasoning: str = ""

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class PlanDraft(BaseModel):
    """Schema for a generated plan, before minimum enforcement."""

    model_config = ConfigDict(populate_by_name=True)

    research_queries: list[DraftQuery] = Field(alias="researchQueries", min_length=1)
    research_strategy: str = Field(alias="researchStrategy", min_length=1)
    expected_outcomes: list[str] = Field(default_factory=list, alias="expectedOutcomes")


class SynthesisResult(BaseModel):
    """Derived summary of one research run."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    key_insights: list[str] = Field(default_factory=list, alias="keyInsights")
    content_themes: list[str] = Field(default_factory=list, alias="contentThemes")
    source_quality: QualityLevel = Field(alias="sourceQuality")
    # Wire name keeps the historical spelling used by downstream consumers
    comprehensiveness: float = Field(ge=0.0, le=1.0, alias="comprehensivenesss")
    practical_focus: QualityLevel = Field(alias="practicalFocus")


class SubtopicMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    estimated_time_minutes: int = Field(default=30, alias="estimatedTimeMinutes")
    prerequisites: list[str] = Field(default_factory=list)
    related_concepts: list[str] = Field(default_factory=list, alias="relatedConcepts")
    source_agents: list[str] = Field(default_factory=list, alias="sourceAgents")
    key_terms: list[str] = Field(default_factory=list, alias="keyTerms")
    practical_applications: list[str] = Field(
        default_factory=list, alias="practicalApplications"
    )


class ExtractedSubtopic(BaseModel):
    """A node in the subtopic tree. Owned by its extraction result."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    level: int = Field(default=1, ge=1)
    parent_id: str | None = Field(default=None, alias="parentId")
    children: list["ExtractedSubtopic"] = Field(default_factory=list)
    metadata: SubtopicMetadata = Field(default_factory=SubtopicMetadata)


class CoverageMetrics(BaseModel):
    academic: float = 0.0
    practical: float = 0.0
    foundational: float = 0.0
    advanced: float = 0.0


class ExtractionMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_topics: int = Field(alias="totalTopics")
    topics_by_level: dict[int, int] = Field(default_factory=dict, alias="topicsByLevel")
    avg_confidence: float = Field(alias="avgConfidence")
    coverage: CoverageMetrics = Field(default_factory=CoverageMetrics)
    processing_time_ms: float = Field(default=0.0, alias="processingTimeMs")
    cycles: list[list[str]] = Field(default_factory=list)


class SubtopicExtractionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hierarchical_topics: list[ExtractedSubtopic] = Field(alias="hierarchicalTopics")
    flat_topics: list[ExtractedSubtopic] = Field(alias="flatTopics")
    metadata: ExtractionMetadata


class CandidateTopic(BaseModel):
    """A subtopic candidate as emitted by the generation capability."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    description: str = ""
    difficulty: Difficulty | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    estimated_time_minutes: int | None = Field(default=None, alias="estimatedTimeMinutes")
    prerequisites: list[str] = Field(default_factory=list)
    key_terms: list[str] = Field(default_factory=list, alias="keyTerms")
    practical_applications: list[str] = Field(
        default_factory=list, alias="practicalApplications"
    )

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return value.strip()


class CandidateList(BaseModel):
    """Schema for generated subtopic candidates."""

    subtopics: list[CandidateTopic] = Field(min_length=1)


class ResearchRunResult(BaseModel):
    """Everything one pipeline run produced."""

    model_config = ConfigDict(populate_by_name=True)

    topic: str
    understanding: TopicUnderstanding
    plan: ResearchPlan
    results: list[SearchResultWithEngine]
    synthesis: SynthesisResult
    subtopics: SubtopicExtractionResult
    system_health: dict[str, Any] = Field(default_factory=dict, alias="systemHealth")
    breaker_status: dict[str, Any] = Field(default_factory=dict, alias="breakerStatus")
