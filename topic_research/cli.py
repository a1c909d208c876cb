"""Command-line interface for topic research."""

import asyncio
import json
from contextlib import AsyncExitStack
from typing import Annotated

import typer

from .config.factory import (
    create_engines,
    create_llm_provider,
    create_pipeline,
    create_searxng_client,
)
from .config.loader import list_profiles, load_config
from .errors import TopicResearchError
from .research.models import (
    Difficulty,
    ExtractedSubtopic,
    ResearchRunResult,
    UserContext,
)

app = typer.Typer(
    name="topic-research",
    help="Research a topic across search engines and map its subtopics.",
    add_completion=False,
)


def build_user_context(
    level: str | None,
    focus: list[str] | None,
    exclude: list[str] | None,
) -> UserContext | None:
    """Build a UserContext from CLI args, or None when nothing was given."""
    if not level and not focus and not exclude:
        return None
    return UserContext(
        level=Difficulty(level) if level else None,
        focus_areas=focus or [],
        exclude_areas=exclude or [],
    )


@app.command()
def research(
    topic: Annotated[str, typer.Argument(help="Topic to research")],
    profile: Annotated[
        str,
        typer.Option("--profile", "-p", help="Configuration profile (default: RESEARCH_PROFILE or dev)"),
    ] = None,
    level: Annotated[
        str,
        typer.Option("--level", "-l", help="Learner level: beginner, intermediate or advanced"),
    ] = None,
    focus: Annotated[
        list[str],
        typer.Option("--focus", help="Focus area to keep (can specify multiple)"),
    ] = None,
    exclude: Annotated[
        list[str],
        typer.Option("--exclude", help="Area to exclude (can specify multiple)"),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: text or json"),
    ] = "text",
):
    """
    Research a topic end to end and print the subtopic map.

    Examples:

        # Research with the default profile
        topic-research research "photosynthesis"

        # Tailor the map to a beginner interested in experiments
        topic-research research "photosynthesis" -l beginner --focus experiment

        # Offline run against mock backends, as JSON
        topic-research research "photosynthesis" -p test --format json
    """
    if level and level not in {d.value for d in Difficulty}:
        typer.echo("Error: Level must be one of: beginner, intermediate, advanced", err=True)
        raise typer.Exit(1)
    if output_format not in ("text", "json"):
        typer.echo("Error: Format must be one of: text, json", err=True)
        raise typer.Exit(1)

    user_context = build_user_context(level, focus, exclude)
    try:
        result = asyncio.run(_research_async(topic, profile, user_context))
    except TopicResearchError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if output_format == "json":
        typer.echo(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    else:
        _print_result(result)


async def _research_async(
    topic: str,
    profile_name: str | None,
    user_context: UserContext | None,
) -> ResearchRunResult:
    """Async implementation of research."""
    profile = load_config(profile_name)

    async with AsyncExitStack() as stack:
        llm = create_llm_provider(profile.llm)
        if llm is not None:
            await stack.enter_async_context(llm)
        searxng_client = create_searxng_client(profile.engines)
        if searxng_client is not None:
            await stack.enter_async_context(searxng_client)

        engines = create_engines(profile.engines, searxng_client)
        pipeline = create_pipeline(profile, llm, engines)
        async with pipeline:
            return await pipeline.run(topic, user_context)


def _print_subtopic(node: ExtractedSubtopic, indent: int = 0) -> None:
    meta = node.metadata
    pad = "  " * indent
    typer.echo(
        f"{pad}- {node.title} [{meta.difficulty.value}, ~{meta.estimated_time_minutes} min, "
        f"confidence {meta.confidence:.2f}]"
    )
    for child in node.children:
        _print_subtopic(child, indent + 1)


def _print_result(result: ResearchRunResult) -> None:
    understanding = result.understanding
    typer.echo(f"Topic: {result.topic}")
    typer.echo(f"Definition: {understanding.definition}")
    typer.echo(
        f"Category: {understanding.category.value} | "
        f"Complexity: {understanding.complexity.value} | "
        f"Approach: {understanding.research_approach.value}"
    )
    typer.echo()

    distribution = ", ".join(
        f"{engine.value}={count}"
        for engine, count in sorted(
            result.plan.engine_distribution.items(), key=lambda item: item[0].value
        )
    )
    typer.echo(f"Plan: {len(result.plan.research_queries)} queries ({distribution})")
    typer.echo(f"Results: {len(result.results)} after deduplication")
    typer.echo()

    synthesis = result.synthesis
    typer.echo(
        f"Source quality: {synthesis.source_quality.value} | "
        f"Practical focus: {synthesis.practical_focus.value} | "
        f"Comprehensiveness: {synthesis.comprehensiveness:.2f}"
    )
    if synthesis.key_insights:
        typer.echo("Key insights:")
        for insight in synthesis.key_insights:
            typer.echo(f"  * {insight}")
    if synthesis.content_themes:
        typer.echo(f"Themes: {', '.join(synthesis.content_themes)}")
    typer.echo()

    metadata = result.subtopics.metadata
    typer.echo(f"Subtopics ({metadata.total_topics}):")
    for node in result.subtopics.hierarchical_topics:
        _print_subtopic(node, indent=1)
    if metadata.cycles:
        typer.echo()
        typer.echo("Circular prerequisites detected:")
        for cycle in metadata.cycles:
            typer.echo(f"  {' <-> '.join(cycle)}")

    health = result.system_health.get("overall_status")
    if health:
        typer.echo()
        typer.echo(f"System health: {health}")


@app.command()
def plan(
    topic: Annotated[str, typer.Argument(help="Topic to plan research for")],
    profile: Annotated[
        str,
        typer.Option("--profile", "-p", help="Configuration profile"),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: text or json"),
    ] = "text",
):
    """
    Print the research plan for a topic without executing it.

    Examples:

        topic-research plan "graph databases"
        topic-research plan "graph databases" -p test --format json
    """
    try:
        research_plan = asyncio.run(_plan_async(topic, profile))
    except TopicResearchError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if output_format == "json":
        typer.echo(json.dumps(research_plan.model_dump(mode="json", by_alias=True), indent=2))
        return

    typer.echo(f"Strategy: {research_plan.research_strategy}\n")
    for i, query in enumerate(research_plan.research_queries, 1):
        typer.echo(f"{i}. [{query.engine.value}] {query.query}")
        if query.reasoning:
            typer.echo(f"   {query.reasoning}")
    if research_plan.expected_outcomes:
        typer.echo("\nExpected outcomes:")
        for outcome in research_plan.expected_outcomes:
            typer.echo(f"  * {outcome}")


async def _plan_async(topic: str, profile_name: str | None):
    """Async implementation of plan."""
    profile = load_config(profile_name)

    async with AsyncExitStack() as stack:
        llm = create_llm_provider(profile.llm)
        if llm is not None:
            await stack.enter_async_context(llm)
        searxng_client = create_searxng_client(profile.engines)
        if searxng_client is not None:
            await stack.enter_async_context(searxng_client)

        engines = create_engines(profile.engines, searxng_client)
        pipeline = create_pipeline(profile, llm, engines)
        understanding = await pipeline.understanding.understand(topic)
        return await pipeline.planner.plan_research(topic, understanding)


@app.command()
def profiles():
    """List available configuration profiles."""
    typer.echo("Available profiles:\n")
    for name, profile in list_profiles().items():
        typer.echo(f"  {name}")
        typer.echo(f"    LLM: {profile.llm.backend} ({profile.llm.model or 'default model'})")
        typer.echo(
            f"    Engines: {profile.engines.backend} "
            f"(academic via {profile.engines.academic_backend})"
        )
        typer.echo()


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
