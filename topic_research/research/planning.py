"""Research planning: turn a topic understanding into a validated ResearchPlan.

Plans are drafted by the generation capability, then corrected against the
mandatory per-engine minimums using deterministic templates. When generation
is unavailable or its output cannot be decoded, the whole plan is built from
templates instead.
"""

import logging

from pydantic import ValidationError

from ..engines.models import EngineId
from ..errors import PlanningError
from ..llm.protocols import LLMProvider
from ..llm.structured import SchemaError, generate_structured
from ..settings import LLM_TIMEOUT_SECONDS
from .models import (
    MANDATORY_MINIMUMS,
    PlanDraft,
    ResearchPlan,
    ResearchQuery,
    TopicUnderstanding,
    UserContext,
    count_engines,
)

logger = logging.getLogger(__name__)

# (query template, reasoning) pairs, parameterized by topic
QUERY_TEMPLATES: dict[EngineId, list[tuple[str, str]]] = {
    EngineId.GENERAL: [
        ("{topic} overview introduction basics fundamentals",
         "Get accessible overview and basic understanding"),
        ("{topic} practical applications real world examples uses",
         "Find practical applications and real-world relevance"),
        ("{topic} beginner guide getting started simple explanation",
         "Find beginner-friendly explanations and guides"),
        ("{topic} benefits advantages importance why useful",
         "Understand value and importance from general perspective"),
        ("{topic} common questions frequently asked problems issues",
         "Address common questions and practical concerns"),
        ("{topic} explained simple terms easy understanding definition",
         "Get clear definitions and simple explanations"),
        ("{topic} different types categories variations kinds",
         "Understand different types and variations"),
        ("{topic} how it works process steps method",
         "Learn how it works in practical terms"),
        ("{topic} pros cons advantages disadvantages comparison",
         "Get balanced perspective on benefits and drawbacks"),
        ("{topic} history background development evolution",
         "Understand background and development"),
        ("{topic} tools resources materials needed requirements",
         "Find practical tools and resources"),
        ("{topic} tips advice best practices recommendations",
         "Get practical tips and best practices"),
    ],
    EngineId.COMMUNITY: [
        ("{topic} discussion forum community insights practical experience",
         "Find community discussions and practical experiences"),
        ("{topic} questions answers real experiences",
         "Learn from questions other learners have asked"),
        ("{topic} common mistakes lessons learned",
         "Surface pitfalls reported by practitioners"),
        ("{topic} help explanation community thread",
         "Find peer explanations of confusing points"),
        ("{topic} personal experience tips advice",
         "Collect first-hand practical advice"),
        ("{topic} recommendations what to learn first",
         "Find community-recommended learning paths"),
    ],
    EngineId.VIDEO: [
        ("{topic} tutorial explanation educational video",
         "Find educational video content and tutorials"),
        ("{topic} explained animation visual guide",
         "Find visual explanations of key mechanisms"),
        ("{topic} beginner course lesson",
         "Find structured introductory lessons"),
        ("{topic} step by step walkthrough",
         "Find guided walkthroughs of the process"),
        ("{topic} lecture introduction overview",
         "Find lecture-style overviews"),
        ("{topic} practical demonstration examples",
         "Find demonstrations of real-world use"),
    ],
    EngineId.ACADEMIC: [
        ("{topic} research studies academic papers scholarly analysis",
         "Find academic research and scholarly perspectives"),
        ("{topic} peer reviewed literature scientific findings",
         "Find peer-reviewed scientific research"),
    ],
    EngineId.COMPUTATIONAL: [
        ("{topic} computational analysis data algorithms technical",
         "Find computational and technical analysis"),
    ],
}

# Queries used for each recommended specialized engine in the fallback plan
FALLBACK_SPECIALIZED_COUNTS: dict[EngineId, int] = {
    EngineId.ACADEMIC: 2,
    EngineId.VIDEO: 1,
    EngineId.COMMUNITY: 1,
    EngineId.COMPUTATIONAL: 1,
}

ACCESSIBLE_MARKERS = ("basics", "introduction", "beginner", "simple", "explained")
SPECIALIZED_MARKERS = ("research", "technical", "academic", "analysis")

FALLBACK_OUTCOMES = [
    "Comprehensive understanding of {topic} from multiple perspectives",
    "Practical applications and real-world examples from accessible sources",
    "Key concepts and terminology explained accessibly",
    "Specialized knowledge from academic and technical sources",
    "Different viewpoints from general and specialized sources",
    "Foundation for deeper learning and exploration",
    "Diverse source types for comprehensive coverage",
]

ENGINE_DESCRIPTIONS = {
    EngineId.GENERAL: "Broad web search across multiple sources",
    EngineId.ACADEMIC: "Scientific papers, research, scholarly articles",
    EngineId.VIDEO: "Educational videos, tutorials, demonstrations",
    EngineId.COMMUNITY: "Forums, discussions, real-world experiences",
    EngineId.COMPUTATIONAL: "Mathematical, algorithmic, technical data",
}


class ResearchPlanningModule:
    """
    Creates research plans that always satisfy the mandatory engine minimums.

    Usage:
        planner = ResearchPlanningModule(llm)
        plan = await planner.plan_research("photosynthesis", understanding)
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        temperature: float = 0.6,
        timeout: float = LLM_TIMEOUT_SECONDS,
        min_queries: int = 15,
        max_queries: int = 20,
    ):
        """
        Initialize the planner.

        Args:
            llm: Text-generation provider. Without one, plans come from templates.
            temperature: Sampling temperature for plan generation
            timeout: Seconds to wait for the generation capability
            min_queries: Lower bound on plan size requested from the generator
            max_queries: Upper bound on plan size requested from the generator
        """
        self.llm = llm
        self.temperature = temperature
        self.timeout = timeout
        self.min_queries = min_queries
        self.max_queries = max_queries

    async def plan_research(
        self,
        topic: str,
        understanding: TopicUnderstanding,
        user_context: UserContext | None = None,
    ) -> ResearchPlan:
        """
        Plan the research for a topic.

        Returns:
            A valid ResearchPlan

        Raises:
            PlanningError: Only if the template pool cannot fill a minimum
        """
        if self.llm is None:
            logger.info("No generation capability configured, using template plan")
            return self.create_fallback_plan(topic, understanding)

        prompt = self._build_prompt(topic, understanding, user_context)
        result = await generate_structured(
            self.llm, prompt, PlanDraft, temperature=self.temperature, timeout=self.timeout
        )
        if isinstance(result, SchemaError):
            logger.warning(f"Plan generation failed ({result.message}), using template plan")
            return self.create_fallback_plan(topic, understanding)

        draft = result.value
        queries = [
            ResearchQuery(query=q.query, engine=q.engine, reasoning=q.reasoning)
            for q in draft.research_queries
        ]
        queries = self.enforce_minimums(topic, queries)

        try:
            plan = ResearchPlan.build(
                queries, draft.research_strategy, draft.expected_outcomes
            )
        except ValidationError as e:
            logger.warning(f"Corrected plan failed validation ({e.error_count()} errors), using template plan")
            return self.create_fallback_plan(topic, understanding)

        self.check_diversity(plan.research_queries)
        logger.info(
            f"Planned {len(plan.research_queries)} queries for '{topic}': "
            f"{self._format_distribution(plan)}"
        )
        return plan

    def enforce_minimums(
        self, topic: str, queries: list[ResearchQuery]
    ) -> list[ResearchQuery]:
        """
        Top up general/community/video queries to their minimums from templates.

        Template queries whose text already appears in the plan are skipped.

        Raises:
            PlanningError: If a template pool is exhausted before a minimum is met
        """
        queries = list(queries)
        seen = {q.query.lower() for q in queries}

        for engine, minimum in MANDATORY_MINIMUMS.items():
            shortfall = minimum - count_engines(queries).get(engine, 0)
            if shortfall <= 0:
                continue

            added = self._take_templates(topic, engine, shortfall, seen)
            queries.extend(added)
            logger.info(f"Added {len(added)} template {engine.value} queries to meet minimum")

            if len(added) < shortfall:
                raise PlanningError(
                    f"Template pool for '{engine.value}' exhausted: "
                    f"needed {shortfall} more queries, found {len(added)}"
                )

        return queries

    def _take_templates(
        self, topic: str, engine: EngineId, count: int, seen: set[str]
    ) -> list[ResearchQuery]:
        taken = []
        for template, reasoning in QUERY_TEMPLATES[engine]:
            if len(taken) >= count:
                break
            text = template.format(topic=topic)
            if text.lower() in seen:
                continue
            seen.add(text.lower())
            taken.append(ResearchQuery(query=text, engine=engine, reasoning=reasoning))
        return taken

    def create_fallback_plan(
        self, topic: str, understanding: TopicUnderstanding
    ) -> ResearchPlan:
        """Build a complete plan from templates without any generation call."""
        seen: set[str] = set()
        queries = self._take_templates(topic, EngineId.GENERAL, 5, seen)

        for engine, count in FALLBACK_SPECIALIZED_COUNTS.items():
            if engine in understanding.recommended_engines:
                queries.extend(self._take_templates(topic, engine, count, seen))

        queries = self.enforce_minimums(topic, queries)

        approach = understanding.research_approach.value
        plan = ResearchPlan.build(
            queries,
            strategy=(
                f"Fallback research strategy for {topic} focusing on {approach} approach "
                f"with balanced general and specialized sources"
            ),
            expected_outcomes=[o.format(topic=topic) for o in FALLBACK_OUTCOMES],
        )
        logger.info(
            f"Created fallback plan with {len(plan.research_queries)} queries: "
            f"{self._format_distribution(plan)}"
        )
        return plan

    @staticmethod
    def check_diversity(queries: list[ResearchQuery]) -> list[str]:
        """Warn (non-fatally) about missing accessible or specialized language."""
        warnings = []

        general_text = " ".join(q.query.lower() for q in queries if q.engine == EngineId.GENERAL)
        if not any(marker in general_text for marker in ACCESSIBLE_MARKERS):
            warnings.append("General queries lack accessible language (basics, introduction, beginner)")

        all_text = " ".join(q.query.lower() for q in queries)
        if not any(marker in all_text for marker in SPECIALIZED_MARKERS):
            warnings.append("No queries use specialized language (research, technical, academic)")

        for warning in warnings:
            logger.warning(f"Plan diversity: {warning}")
        return warnings

    @staticmethod
    def _format_distribution(plan: ResearchPlan) -> str:
        return ", ".join(f"{e.value}={n}" for e, n in plan.engine_distribution.items())

    def _build_prompt(
        self,
        topic: str,
        understanding: TopicUnderstanding,
        user_context: UserContext | None,
    ) -> str:
        engines = "\n".join(
            f"- {engine.value}: {description}"
            + (" (RECOMMENDED)" if engine in understanding.recommended_engines else "")
            for engine, description in ENGINE_DESCRIPTIONS.items()
        )
        context = ""
        if user_context is not None:
            level = user_context.level.value if user_context.level else "unspecified"
            context = (
                f"\nUser context: level={level}, "
                f"interests=[{', '.join(user_context.interests)}]\n"
            )
        domains = ", ".join(understanding.relevant_domains) or "unspecified"

        return f"""Create a research plan for the topic "{topic}" based ONLY on this understanding.

TOPIC UNDERSTANDING:
- Definition: {understanding.definition}
- Category: {understanding.category.value}
- Complexity: {understanding.complexity.value}
- Relevant domains: {domains}
- Research approach: {understanding.research_approach.value}

Available engines:
{engines}
{context}
REQUIREMENTS:
1. Emit {self.min_queries}-{self.max_queries} queries in total.
2. At least 5 queries for "general", at least 5 for "community", at least 5 for "video".
3. Up to 5 more queries for the RECOMMENDED specialized engines.
4. General queries should be accessible: overview, basics, practical applications, examples.
5. Build from basic to more detailed understanding.

Return JSON:
{{
  "researchQueries": [
    {{"query": "...", "engine": "general|academic|video|community|computational", "reasoning": "..."}}
  ],
  "researchStrategy": "one paragraph",
  "expectedOutcomes": ["..."]
}}"""
