"""Subtopic extraction: a confidence-scored, leveled topic tree."""

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable

from pydantic import BaseModel

from ..engines.models import SearchResultWithEngine
from ..llm.protocols import LLMProvider
from ..llm.structured import SchemaError, generate_structured
from ..settings import LLM_TIMEOUT_SECONDS
from .models import (
    CandidateList,
    CandidateTopic,
    CoverageMetrics,
    Difficulty,
    ExtractedSubtopic,
    ExtractionMetadata,
    SubtopicExtractionResult,
    SubtopicMetadata,
    SynthesisResult,
    UserContext,
)
from .topic_graph import RelationshipType, TopicGraph

logger = logging.getLogger(__name__)

RELATIONSHIP_THRESHOLD = 0.3

DIFFICULTY_RANK = {
    Difficulty.BEGINNER: 1,
    Difficulty.INTERMEDIATE: 2,
    Difficulty.ADVANCED: 3,
}

DEFAULT_MINUTES = {
    Difficulty.BEGINNER: 15,
    Difficulty.INTERMEDIATE: 30,
    Difficulty.ADVANCED: 45,
}

# Difficulty assigned to theme-derived candidates by position
THEME_DIFFICULTIES = [
    Difficulty.BEGINNER,
    Difficulty.BEGINNER,
    Difficulty.INTERMEDIATE,
    Difficulty.INTERMEDIATE,
    Difficulty.ADVANCED,
]


class SubtopicConfig(BaseModel):
    """Tuning knobs for subtopic extraction."""

    max_subtopics: int = 24
    hierarchy_levels: int = 3
    min_confidence: float = 0.6
    include_prerequisites: bool = True
    include_difficulty: bool = True
    include_estimated_time: bool = True
    semantic_grouping: bool = True
    temperature: float = 0.4


@dataclass
class _Node:
    """Working state of one candidate while the tree is assembled."""

    title: str
    description: str
    confidence: float
    difficulty: Difficulty
    estimated_time_minutes: int
    prerequisites: list[str]
    key_terms: list[str]
    practical_applications: list[str]
    parent: int | None = None
    level: int = 1
    source_agents: list[str] = field(default_factory=list)
    related_concepts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}".lower()


def adjust_difficulty_for_user(difficulty: Difficulty, user_level: Difficulty) -> Difficulty:
    """Pull a difficulty toward the learner's level when it is two steps away."""
    original = DIFFICULTY_RANK[difficulty]
    user = DIFFICULTY_RANK[user_level]

    if original > user + 1:
        return Difficulty.BEGINNER if user_level == Difficulty.BEGINNER else Difficulty.INTERMEDIATE
    if original < user - 1:
        return Difficulty.INTERMEDIATE if user_level == Difficulty.ADVANCED else difficulty
    return difficulty


def analyze_relationship(graph: TopicGraph, nodes: list[_Node], i: int, j: int) -> None:
    """Add the strongest relationship between nodes i and j, if above threshold."""
    a, b = nodes[i], nodes[j]
    a_title, b_title = a.title.lower(), b.title.lower()

    if any(p.lower() in b.text or p.lower() == b_title for p in a.prerequisites if p):
        graph.add_edge(j, i, RelationshipType.PREREQUISITE, 0.8)
        return
    if any(p.lower() in a.text or p.lower() == a_title for p in b.prerequisites if p):
        graph.add_edge(i, j, RelationshipType.PREREQUISITE, 0.8)
        return

    # A title that contains another title names a component of it
    if a_title != b_title:
        if re.search(rf"\b{re.escape(a_title)}\b", b_title):
            graph.add_edge(i, j, RelationshipType.COMPONENT, 0.7)
            return
        if re.search(rf"\b{re.escape(b_title)}\b", a_title):
            graph.add_edge(j, i, RelationshipType.COMPONENT, 0.7)
            return

    if any(b_title in app.lower() for app in a.practical_applications):
        graph.add_edge(i, j, RelationshipType.APPLICATION, 0.6)
        return
    if any(a_title in app.lower() for app in b.practical_applications):
        graph.add_edge(j, i, RelationshipType.APPLICATION, 0.6)
        return

    shared = {t.lower() for t in a.key_terms} & {t.lower() for t in b.key_terms}
    strength = min(0.7, 0.2 * len(shared)) if shared else 0.1
    if strength > RELATIONSHIP_THRESHOLD:
        graph.add_edge(i, j, RelationshipType.RELATED, strength)


def _slug(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "topic"


class SubtopicExtractor:
    """
    Builds a hierarchical subtopic tree from research results and synthesis.

    Pipeline: candidates -> relationship graph -> hierarchy -> enrichment ->
    filtering -> coverage. Cycles among prerequisite/component edges are
    reported in the result metadata; edges inside a cycle are not used for
    attachment.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        config: SubtopicConfig | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.llm = llm
        self.config = config or SubtopicConfig()
        self.timeout = timeout
        self._clock = clock

    async def extract_subtopics(
        self,
        main_topic: str,
        results: list[SearchResultWithEngine],
        synthesis: SynthesisResult,
        user_context: UserContext | None = None,
    ) -> SubtopicExtractionResult:
        started = self._clock()

        candidates = await self.extract_candidates(main_topic, results, synthesis)
        nodes = [self._to_node(c, i) for i, c in enumerate(candidates)]
        logger.info(f"Extracted {len(nodes)} candidate subtopics for '{main_topic}'")

        graph = self.build_relationship_graph(nodes)
        cycles = self.assemble_hierarchy(graph, nodes)
        self.enrich(graph, nodes, results, user_context)
        alive = self.filter_nodes(nodes, user_context)

        hierarchical, flat = self._build_tree(nodes, alive)
        metadata = ExtractionMetadata(
            total_topics=len(flat),
            topics_by_level=dict(sorted(Counter(t.level for t in flat).items())),
            avg_confidence=(
                sum(t.metadata.confidence for t in flat) / len(flat) if flat else 0.0
            ),
            coverage=self.calculate_coverage(flat),
            processing_time_ms=(self._clock() - started) * 1000.0,
            cycles=[[nodes[i].title for i in cycle] for cycle in cycles],
        )
        logger.info(
            f"Subtopic tree: {metadata.total_topics} topics, levels {metadata.topics_by_level}, "
            f"avg confidence {metadata.avg_confidence:.2f}"
        )
        return SubtopicExtractionResult(
            hierarchical_topics=hierarchical, flat_topics=flat, metadata=metadata
        )

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    async def extract_candidates(
        self,
        main_topic: str,
        results: list[SearchResultWithEngine],
        synthesis: SynthesisResult,
    ) -> list[CandidateTopic]:
        """Merge generated candidates with theme-derived ones (generated win)."""
        generated: list[CandidateTopic] = []
        if self.llm is not None:
            outcome = await generate_structured(
                self.llm,
                self._build_prompt(main_topic, results, synthesis),
                CandidateList,
                temperature=self.config.temperature,
                timeout=self.timeout,
            )
            if isinstance(outcome, SchemaError):
                logger.warning(f"Subtopic generation failed ({outcome.message}), using themes only")
            else:
                generated = outcome.value.subtopics

        merged: dict[str, CandidateTopic] = {}
        main = main_topic.strip().lower()
        for candidate in generated + self.candidates_from_themes(results, synthesis):
            key = candidate.title.lower()
            if key and key != main and key not in merged:
                merged[key] = candidate
        return list(merged.values())

    @staticmethod
    def candidates_from_themes(
        results: list[SearchResultWithEngine], synthesis: SynthesisResult
    ) -> list[CandidateTopic]:
        candidates = []
        for index, theme in enumerate(synthesis.content_themes):
            term = theme.lower()
            mentions = sum(1 for r in results if term in r.text)
            description = next(
                (i for i in synthesis.key_insights if term in i.lower()),
                f"Key concepts and applications of {theme}",
            )
            difficulty = THEME_DIFFICULTIES[index % len(THEME_DIFFICULTIES)]
            candidates.append(
                CandidateTopic(
                    title=theme.strip().capitalize(),
                    description=description,
                    difficulty=difficulty,
                    confidence=min(0.95, 0.5 + 0.1 * min(mentions, 4)),
                    key_terms=[term],
                )
            )
        return candidates

    def _to_node(self, candidate: CandidateTopic, index: int) -> _Node:
        difficulty = candidate.difficulty or Difficulty.INTERMEDIATE
        minutes = candidate.estimated_time_minutes or DEFAULT_MINUTES[difficulty]
        return _Node(
            title=candidate.title,
            description=candidate.description,
            confidence=candidate.confidence if candidate.confidence is not None else 0.7,
            difficulty=difficulty,
            estimated_time_minutes=minutes,
            prerequisites=list(candidate.prerequisites),
            key_terms=list(candidate.key_terms),
            practical_applications=list(candidate.practical_applications),
        )

    # ------------------------------------------------------------------
    # Graph and hierarchy
    # ------------------------------------------------------------------

    def build_relationship_graph(self, nodes: list[_Node]) -> TopicGraph:
        graph = TopicGraph([n.title for n in nodes])
        if not self.config.semantic_grouping:
            return graph
        for i in range(len(nodes)):
            for j in range(i + 1, len(nodes)):
                analyze_relationship(graph, nodes, i, j)
        logger.debug(f"Relationship graph: {len(graph)} nodes, {len(graph.edges)} edges")
        return graph

    def assemble_hierarchy(self, graph: TopicGraph, nodes: list[_Node]) -> list[list[int]]:
        """Attach each node under its strongest usable parent; return cycles found."""
        usable, cycles = graph.acyclic_hierarchy_edges()
        if cycles:
            logger.warning(
                "Topic dependency cycles detected, not used for nesting: "
                + "; ".join(" <-> ".join(nodes[i].title for i in c) for c in cycles)
            )

        incoming: dict[int, list] = {}
        for edge in usable:
            incoming.setdefault(edge.child, []).append(edge)

        for node_index in graph.topological_order(usable):
            node = nodes[node_index]
            for edge in sorted(incoming.get(node_index, []), key=lambda e: (-e.strength, e.parent)):
                if nodes[edge.parent].level < self.config.hierarchy_levels:
                    node.parent = edge.parent
                    node.level = nodes[edge.parent].level + 1
                    break
        return cycles

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def enrich(
        self,
        graph: TopicGraph,
        nodes: list[_Node],
        results: list[SearchResultWithEngine],
        user_context: UserContext | None,
    ) -> None:
        related_kinds = frozenset({RelationshipType.RELATED, RelationshipType.APPLICATION})
        for index, node in enumerate(nodes):
            terms = [node.title.lower()] + [t.lower() for t in node.key_terms if t]
            node.source_agents = sorted({
                r.engine.value for r in results if any(term in r.text for term in terms)
            })
            node.related_concepts = [
                nodes[other].title for other, _ in graph.neighbors(index, related_kinds)
            ][:5]

            if not self.config.include_difficulty:
                node.difficulty = Difficulty.INTERMEDIATE
            elif user_context is not None and user_context.level is not None:
                node.difficulty = adjust_difficulty_for_user(node.difficulty, user_context.level)

            if not self.config.include_prerequisites:
                node.prerequisites = []

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def filter_nodes(
        self, nodes: list[_Node], user_context: UserContext | None
    ) -> set[int]:
        """Apply confidence/exclude/focus filters and the size cap; return survivors."""
        alive = set(range(len(nodes)))
        exclude = [a.lower() for a in (user_context.exclude_areas if user_context else []) if a]
        focus = [a.lower() for a in (user_context.focus_areas if user_context else []) if a]

        for index, node in enumerate(nodes):
            if node.confidence < self.config.min_confidence:
                self._remove(nodes, alive, index)
            elif any(area in node.text for area in exclude):
                self._remove(nodes, alive, index)

        if focus:
            for index in sorted(alive):
                node = nodes[index]
                if node.parent is None and not any(area in node.text for area in focus):
                    self._remove_subtree(nodes, alive, index)

        while len(alive) > self.config.max_subtopics:
            parents = {nodes[i].parent for i in alive}
            leaves = [i for i in alive if i not in parents]
            weakest = min(leaves, key=lambda i: (nodes[i].confidence, -i))
            logger.debug(f"Dropping low-confidence leaf '{nodes[weakest].title}'")
            self._remove(nodes, alive, weakest)

        return alive

    def _remove(self, nodes: list[_Node], alive: set[int], index: int) -> None:
        """Remove one node, moving its children up to its parent."""
        alive.discard(index)
        new_parent = nodes[index].parent
        for child in list(alive):
            if nodes[child].parent == index:
                nodes[child].parent = new_parent
        self._relevel(nodes, alive)

    def _remove_subtree(self, nodes: list[_Node], alive: set[int], index: int) -> None:
        doomed = {index}
        changed = True
        while changed:
            changed = False
            for i in list(alive):
                if i not in doomed and nodes[i].parent in doomed:
                    doomed.add(i)
                    changed = True
        alive.difference_update(doomed)

    @staticmethod
    def _relevel(nodes: list[_Node], alive: set[int]) -> None:
        def depth(i: int) -> int:
            level = 1
            parent = nodes[i].parent
            while parent is not None:
                level += 1
                parent = nodes[parent].parent
            return level

        for i in alive:
            nodes[i].level = depth(i)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _build_tree(
        self, nodes: list[_Node], alive: set[int]
    ) -> tuple[list[ExtractedSubtopic], list[ExtractedSubtopic]]:
        ids: dict[int, str] = {}
        used: Counter = Counter()
        for i in sorted(alive):
            slug = _slug(nodes[i].title)
            used[slug] += 1
            ids[i] = slug if used[slug] == 1 else f"{slug}-{used[slug]}"

        built: dict[int, ExtractedSubtopic] = {}
        for i in sorted(alive):
            node = nodes[i]
            built[i] = ExtractedSubtopic(
                id=ids[i],
                title=node.title,
                description=node.description,
                level=node.level,
                parent_id=ids.get(node.parent) if node.parent is not None else None,
                metadata=SubtopicMetadata(
                    confidence=node.confidence,
                    difficulty=node.difficulty,
                    estimated_time_minutes=(
                        node.estimated_time_minutes if self.config.include_estimated_time else 0
                    ),
                    prerequisites=node.prerequisites,
                    related_concepts=node.related_concepts,
                    source_agents=node.source_agents,
                    key_terms=node.key_terms,
                    practical_applications=node.practical_applications,
                ),
            )

        roots = []
        for i in sorted(alive):
            parent = nodes[i].parent
            if parent is None:
                roots.append(built[i])
            else:
                built[parent].children.append(built[i])

        flat: list[ExtractedSubtopic] = []

        def walk(topic: ExtractedSubtopic) -> None:
            flat.append(topic)
            for child in topic.children:
                walk(child)

        for root in roots:
            walk(root)
        return roots, flat

    @staticmethod
    def calculate_coverage(topics: list[ExtractedSubtopic]) -> CoverageMetrics:
        if not topics:
            return CoverageMetrics()
        total = len(topics)
        return CoverageMetrics(
            academic=sum(1 for t in topics if "academic" in t.metadata.source_agents) / total,
            practical=sum(1 for t in topics if t.metadata.practical_applications) / total,
            foundational=sum(
                1 for t in topics if t.metadata.difficulty == Difficulty.BEGINNER
            ) / total,
            advanced=sum(
                1 for t in topics if t.metadata.difficulty == Difficulty.ADVANCED
            ) / total,
        )

    def _build_prompt(
        self,
        main_topic: str,
        results: list[SearchResultWithEngine],
        synthesis: SynthesisResult,
    ) -> str:
        sources = "\n".join(
            f"- [{r.engine.value}] {r.title}: {r.snippet[:200]}" for r in results[:15]
        )
        return f"""Identify up to {self.config.max_subtopics} subtopics a learner needs to understand "{main_topic}".

KEY INSIGHTS:
{chr(10).join(f"- {i}" for i in synthesis.key_insights) or "- none"}

THEMES: {", ".join(synthesis.content_themes) or "none"}

SOURCES:
{sources or "- none"}

For each subtopic give a short title, a one-sentence description, difficulty
(beginner|intermediate|advanced), confidence (0-1), estimatedTimeMinutes,
prerequisites (titles of other subtopics), keyTerms and practicalApplications.

Return JSON:
{{"subtopics": [{{"title": "...", "description": "...", "difficulty": "beginner",
"confidence": 0.8, "estimatedTimeMinutes": 20, "prerequisites": [], "keyTerms": [],
"practicalApplications": []}}]}}"""
