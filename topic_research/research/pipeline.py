"""End-to-end research run: understand, plan, execute, synthesize, extract."""

import logging
import uuid

from ..agents.communication import AgentCommunicationManager
from .execution import ResearchExecutionModule
from .models import ResearchRunResult, TopicUnderstanding, UserContext
from .planning import ResearchPlanningModule
from .subtopics import SubtopicExtractor
from .synthesis import SynthesisModule
from .understanding import TopicUnderstandingModule

logger = logging.getLogger(__name__)


class ResearchPipeline:
    """
    Wires the research modules together.

    A run only fails outright when the general engine yields no coverage; a
    missing or failing generation capability degrades every step to its
    deterministic fallback instead.

    Usage:
        pipeline = create_pipeline(profile, llm, engines)
        async with pipeline:
            result = await pipeline.run("photosynthesis")
    """

    def __init__(
        self,
        understanding: TopicUnderstandingModule,
        planner: ResearchPlanningModule,
        executor: ResearchExecutionModule,
        synthesizer: SynthesisModule,
        extractor: SubtopicExtractor,
        communication: AgentCommunicationManager | None = None,
    ):
        self.understanding = understanding
        self.planner = planner
        self.executor = executor
        self.synthesizer = synthesizer
        self.extractor = extractor
        self.communication = communication

    async def __aenter__(self) -> "ResearchPipeline":
        if self.communication is not None:
            self.communication.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.communication is not None:
            await self.communication.shutdown()

    async def run(
        self,
        topic: str,
        user_context: UserContext | None = None,
        understanding: TopicUnderstanding | None = None,
    ) -> ResearchRunResult:
        """
        Research a topic end to end.

        Raises:
            CoverageError: If the general engine produced no usable coverage
        """
        session_id = uuid.uuid4().hex[:12]
        logger.info(f"Starting research run {session_id} for '{topic}'")

        if understanding is None:
            understanding = await self.understanding.understand(topic, user_context)

        plan = await self.planner.plan_research(topic, understanding, user_context)
        results = await self.executor.execute_research(plan, session_id=session_id)
        synthesis = await self.synthesizer.synthesize(topic, results)
        subtopics = await self.extractor.extract_subtopics(
            topic, results, synthesis, user_context
        )

        system_health = {}
        if self.communication is not None:
            system_health = self.communication.get_system_health().to_dict()
        breaker_status = {
            name: state.model_dump(mode="json")
            for name, state in self.executor.breakers.status().items()
        }

        engines_used = sorted({r.engine.value for r in results})
        logger.info(
            f"Run {session_id} complete: {len(results)} results from {engines_used}, "
            f"{subtopics.metadata.total_topics} subtopics"
        )
        return ResearchRunResult(
            topic=topic,
            understanding=understanding,
            plan=plan,
            results=results,
            synthesis=synthesis,
            subtopics=subtopics,
            system_health=system_health,
            breaker_status=breaker_status,
        )
