"""
Research Planning Tests

Tests for plan generation, minimum enforcement and the template fallback.
"""

import asyncio
import json

from dotenv import load_dotenv

load_dotenv()


class StubLLM:
    """Returns a canned response, or raises when given an exception."""

    def __init__(self, response):
        self.response = response
        self.calls = 0

    async def complete(self, prompt, system_prompt=None, temperature=0.7, max_tokens=None):
        self.calls += 1
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def complete_messages(self, messages, temperature=0.7, max_tokens=None):
        return await self.complete(messages[-1].content)


def _understanding(recommended=None):
    from topic_research.engines import EngineId
    from topic_research.research import TopicUnderstanding

    return TopicUnderstanding(
        topic="photosynthesis",
        definition="How plants convert light into chemical energy",
        recommended_engines=recommended if recommended is not None else [EngineId.ACADEMIC],
    )


def _draft(queries):
    return json.dumps({
        "researchQueries": [
            {"query": q, "engine": e, "reasoning": f"{e} angle"} for q, e in queries
        ],
        "researchStrategy": "Start broad, then go deep",
        "expectedOutcomes": ["Understand the light reactions"],
    })


def test_minimums_are_topped_up():
    """Test that a short generated plan is topped up from templates."""
    print("=" * 60)
    print("TEST 1: Minimum enforcement")
    print("=" * 60)

    from topic_research.engines import EngineId
    from topic_research.research import ResearchPlanningModule

    llm = StubLLM("Here is the plan:\n" + _draft([
        ("  photosynthesis light reactions basics  ", "general"),
        ("photosynthesis calvin cycle introduction", "general"),
        ("photosynthesis homework help thread", "community"),
        ("photosynthesis chlorophyll research", "academic"),
        ("photosynthesis quantum efficiency analysis", "academic"),
    ]))
    planner = ResearchPlanningModule(llm)
    plan = asyncio.run(planner.plan_research("photosynthesis", _understanding()))

    distribution = plan.engine_distribution
    print(f"\n  Distribution: { {e.value: n for e, n in distribution.items()} }")
    assert distribution[EngineId.GENERAL] == 5
    assert distribution[EngineId.COMMUNITY] == 5
    assert distribution[EngineId.VIDEO] == 5
    assert distribution[EngineId.ACADEMIC] == 2
    assert sum(distribution.values()) == len(plan.research_queries)
    assert plan.research_strategy == "Start broad, then go deep"

    # Generated queries are kept, in order, ahead of the template top-up
    general = [q.query for q in plan.queries_for(EngineId.GENERAL)]
    assert general[:2] == [
        "photosynthesis light reactions basics",
        "photosynthesis calvin cycle introduction",
    ]
    texts = [q.query.lower() for q in plan.research_queries]
    assert len(texts) == len(set(texts))
    print("\n[PASS] Plan topped up to mandatory minimums")


def test_generation_failure_uses_fallback():
    """Test that a failing provider produces the template plan."""
    print("\n" + "=" * 60)
    print("TEST 2: Fallback on generation failure")
    print("=" * 60)

    from topic_research.engines import EngineId
    from topic_research.research import ResearchPlanningModule

    llm = StubLLM(RuntimeError("provider unavailable"))
    planner = ResearchPlanningModule(llm)
    plan = asyncio.run(planner.plan_research("photosynthesis", _understanding()))

    distribution = plan.engine_distribution
    print(f"\n  Distribution: { {e.value: n for e, n in distribution.items()} }")
    print(f"  Strategy: {plan.research_strategy[:60]}...")
    assert llm.calls == 1
    assert distribution == {
        EngineId.GENERAL: 5,
        EngineId.ACADEMIC: 2,
        EngineId.COMMUNITY: 5,
        EngineId.VIDEO: 5,
    }
    assert plan.research_strategy.startswith("Fallback research strategy for photosynthesis")
    assert len(plan.expected_outcomes) == 7
    print("\n[PASS] Template plan produced without generation")


def test_malformed_output_uses_fallback():
    """Test that undecodable or off-schema output produces the template plan."""
    print("\n" + "=" * 60)
    print("TEST 3: Fallback on malformed output")
    print("=" * 60)

    from topic_research.engines import EngineId
    from topic_research.research import ResearchPlanningModule

    for response in (
        "I could not produce a plan, sorry.",
        '{"researchQueries": [',
        _draft([("photosynthesis podcast", "podcast")]),
        _draft([("   ", "general")]),
        _draft([("photosynthesis basics", "general"), ("\t", "video")]),
    ):
        plan = asyncio.run(
            ResearchPlanningModule(StubLLM(response)).plan_research("photosynthesis", _understanding())
        )
        assert plan.research_strategy.startswith("Fallback research strategy")
        assert plan.engine_distribution[EngineId.GENERAL] == 5
    print("\n[PASS] Malformed output falls back to templates")


def test_no_llm_uses_fallback():
    """Test planning without a generation capability."""
    print("\n" + "=" * 60)
    print("TEST 4: Planning without generation")
    print("=" * 60)

    from topic_research.engines import EngineId
    from topic_research.research import ResearchPlanningModule

    understanding = _understanding([EngineId.ACADEMIC, EngineId.COMPUTATIONAL])
    plan = asyncio.run(ResearchPlanningModule().plan_research("photosynthesis", understanding))
    print(f"\n  Queries: {len(plan.research_queries)}")
    assert plan.engine_distribution[EngineId.COMPUTATIONAL] == 1
    assert len(plan.research_queries) == 18
    print("\n[PASS] Recommended specialized engines included")


def test_exhausted_pool_raises():
    """Test that an unfillable minimum raises PlanningError."""
    print("\n" + "=" * 60)
    print("TEST 5: Exhausted template pool")
    print("=" * 60)

    from topic_research.errors import PlanningError
    from topic_research.research import ResearchPlanningModule
    from topic_research.research.planning import QUERY_TEMPLATES
    from topic_research.engines import EngineId

    # Every community template text is already used by general queries
    community_texts = [
        template.format(topic="photosynthesis")
        for template, _ in QUERY_TEMPLATES[EngineId.COMMUNITY]
    ]
    llm = StubLLM(_draft([(text, "general") for text in community_texts]))
    planner = ResearchPlanningModule(llm)

    try:
        asyncio.run(planner.plan_research("photosynthesis", _understanding()))
        raise AssertionError("Expected PlanningError")
    except PlanningError as e:
        print(f"\n  Raised: {e}")
    print("\n[PASS] PlanningError raised for exhausted community pool")


def test_plan_invariants_enforced():
    """Test that ResearchPlan rejects mismatched distributions and missing minimums."""
    print("\n" + "=" * 60)
    print("TEST 6: Plan construction invariants")
    print("=" * 60)

    from pydantic import ValidationError

    from topic_research.engines import EngineId
    from topic_research.research import ResearchPlan, ResearchQuery

    def queries(engine, n):
        return [ResearchQuery(query=f"{engine.value} q{i}", engine=engine) for i in range(n)]

    valid = queries(EngineId.GENERAL, 5) + queries(EngineId.COMMUNITY, 5) + queries(EngineId.VIDEO, 5)
    plan = ResearchPlan.build(valid, "strategy")
    assert sum(plan.engine_distribution.values()) == 15

    try:
        ResearchPlan(
            research_queries=valid,
            research_strategy="strategy",
            engine_distribution={EngineId.GENERAL: 6, EngineId.COMMUNITY: 5, EngineId.VIDEO: 5},
        )
        raise AssertionError("Expected ValidationError for mismatched distribution")
    except ValidationError:
        pass

    try:
        ResearchPlan.build(valid[:14], "strategy")
        raise AssertionError("Expected ValidationError for missing video minimum")
    except ValidationError:
        pass

    # Wire names are accepted too
    wire = plan.model_dump(mode="json", by_alias=True)
    assert "researchQueries" in wire and "engineDistribution" in wire
    assert ResearchPlan.model_validate(wire).engine_distribution == plan.engine_distribution
    print("\n[PASS] Invalid plans cannot be constructed")


def test_diversity_warnings():
    """Test the non-fatal diversity check."""
    print("\n" + "=" * 60)
    print("TEST 7: Diversity warnings")
    print("=" * 60)

    from topic_research.engines import EngineId
    from topic_research.research import ResearchPlanningModule, ResearchQuery

    bland = [
        ResearchQuery(query="photosynthesis facts", engine=EngineId.GENERAL),
        ResearchQuery(query="photosynthesis video", engine=EngineId.VIDEO),
    ]
    warnings = ResearchPlanningModule.check_diversity(bland)
    print(f"\n  Warnings: {warnings}")
    assert len(warnings) == 2

    varied = [
        ResearchQuery(query="photosynthesis basics", engine=EngineId.GENERAL),
        ResearchQuery(query="photosynthesis research", engine=EngineId.ACADEMIC),
    ]
    assert ResearchPlanningModule.check_diversity(varied) == []
    print("\n[PASS] Diversity warnings reported without failing")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("RESEARCH PLANNING TESTS")
    print("=" * 60)

    test_minimums_are_topped_up()
    test_generation_failure_uses_fallback()
    test_malformed_output_uses_fallback()
    test_no_llm_uses_fallback()
    test_exhausted_pool_raises()
    test_plan_invariants_enforced()
    test_diversity_warnings()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
