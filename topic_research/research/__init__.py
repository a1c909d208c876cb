"""Research planning, execution, synthesis and subtopic extraction."""

from .models import (
    MANDATORY_MINIMUMS,
    CandidateTopic,
    CoverageMetrics,
    Difficulty,
    ExtractedSubtopic,
    ExtractionMetadata,
    PlanDraft,
    QualityLevel,
    ResearchApproach,
    ResearchPlan,
    ResearchQuery,
    ResearchRunResult,
    SubtopicExtractionResult,
    SubtopicMetadata,
    SynthesisResult,
    TopicCategory,
    TopicUnderstanding,
    UserContext,
)
from .planning import ResearchPlanningModule
from .execution import ExecutionReport, ResearchExecutionModule, cap_results, simplify_query
from .synthesis import (
    SynthesisModule,
    assess_practical_focus,
    assess_source_quality,
    calculate_practical_comprehensiveness,
    weight_sources,
)
from .topic_graph import RelationshipType, TopicGraph
from .subtopics import SubtopicConfig, SubtopicExtractor, adjust_difficulty_for_user
from .understanding import TopicUnderstandingModule, create_fallback_understanding
from .pipeline import ResearchPipeline

__all__ = [
    # Models
    "MANDATORY_MINIMUMS",
    "CandidateTopic",
    "CoverageMetrics",
    "Difficulty",
    "ExtractedSubtopic",
    "ExtractionMetadata",
    "PlanDraft",
    "QualityLevel",
    "ResearchApproach",
    "ResearchPlan",
    "ResearchQuery",
    "ResearchRunResult",
    "SubtopicExtractionResult",
    "SubtopicMetadata",
    "SynthesisResult",
    "TopicCategory",
    "TopicUnderstanding",
    "UserContext",
    # Modules
    "ResearchPlanningModule",
    "ExecutionReport",
    "ResearchExecutionModule",
    "cap_results",
    "simplify_query",
    "SynthesisModule",
    "assess_practical_focus",
    "assess_source_quality",
    "calculate_practical_comprehensiveness",
    "weight_sources",
    "RelationshipType",
    "TopicGraph",
    "SubtopicConfig",
    "SubtopicExtractor",
    "adjust_difficulty_for_user",
    "TopicUnderstandingModule",
    "create_fallback_understanding",
    "ResearchPipeline",
]
