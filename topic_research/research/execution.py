"""Concurrent execution of a research plan against the engine clients."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Callable

from ..agents.communication import AgentCommunicationManager
from ..agents.protocol import AgentMessageType
from ..engines.deduplication import deduplicate_results
from ..engines.models import EngineId, SearchResult, SearchResultWithEngine, is_critical
from ..engines.protocols import EngineClient
from ..errors import CoverageError
from ..resilience.circuit_breaker import CircuitBreakerManager
from ..resilience.retry import RETRY_PRESETS, RetryOptions, with_retry
from .models import ResearchPlan, ResearchQuery

logger = logging.getLogger(__name__)

_COMPLEX_TERMS = re.compile(r"\b(advanced|complex|technical)\b", re.IGNORECASE)


def simplify_query(query: str) -> str:
    """Broaden a query for a fallback attempt."""
    simplified = _COMPLEX_TERMS.sub("basic", query)
    if simplified != query:
        return simplified
    return f"{' '.join(query.split()[:3])} beginner guide overview"


def cap_results(
    results: list[SearchResultWithEngine], limit: int
) -> list[SearchResultWithEngine]:
    """
    Keep at most ``limit`` results, general results first, then by relevance.

    Survivors keep their original order; ties go to the earlier result.
    """
    if len(results) <= limit:
        return results
    if limit <= 0:
        return []

    ranked = sorted(
        range(len(results)),
        key=lambda i: (results[i].engine == EngineId.GENERAL, results[i].relevance_score),
        reverse=True,
    )
    kept = set(ranked[:limit])
    logger.info(f"Capped {len(results)} results to {len(kept)}")
    return [r for i, r in enumerate(results) if i in kept]


@dataclass
class QueryOutcome:
    """What happened to one planned query."""

    query: ResearchQuery
    results: list[SearchResultWithEngine] = field(default_factory=list)
    error: str | None = None
    used_fallback: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class ExecutionReport:
    """Per-run bookkeeping, kept for observability."""

    outcomes: list[QueryOutcome] = field(default_factory=list)
    timed_out: list[ResearchQuery] = field(default_factory=list)

    @property
    def failed(self) -> list[QueryOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def fallbacks(self) -> list[QueryOutcome]:
        return [o for o in self.outcomes if o.used_fallback]


class ResearchExecutionModule:
    """
    Executes plan queries concurrently with differentiated failure handling.

    The general engine is critical: a failed general query gets one
    simplified fallback attempt, and the run fails only if every general
    query fails. Specialized engines are best-effort and their failures are
    dropped. Every engine call is gated by that engine's circuit breaker and
    wrapped in the retry policy.
    """

    def __init__(
        self,
        engines: dict[EngineId, EngineClient],
        breakers: CircuitBreakerManager | None = None,
        communication: AgentCommunicationManager | None = None,
        retry_options: RetryOptions | None = None,
        min_total_results: int = 3,
        max_results: int = 30,
        run_timeout: float | None = 90.0,
        fallback_relevance_scale: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the execution module.

        Args:
            engines: Engine clients keyed by engine id
            breakers: Circuit breakers, one per engine
            communication: Optional agent bus for progress messages and health
            retry_options: Retry policy for engine calls
            min_total_results: Minimum deduplicated results for a valid run
            max_results: Maximum results returned
            run_timeout: Seconds before outstanding queries are cancelled
            fallback_relevance_scale: Relevance multiplier for fallback results
            clock: Monotonic time source
        """
        self.engines = engines
        self.breakers = breakers or CircuitBreakerManager(clock=clock)
        self.communication = communication
        self.retry_options = retry_options or replace(RETRY_PRESETS["engine_search"])
        self.min_total_results = min_total_results
        self.max_results = max_results
        self.run_timeout = run_timeout
        self.fallback_relevance_scale = fallback_relevance_scale
        self._clock = clock
        self.last_report: ExecutionReport | None = None

    async def execute_research(
        self, plan: ResearchPlan, session_id: str | None = None
    ) -> list[SearchResultWithEngine]:
        """
        Run every planned query and return deduplicated results.

        Raises:
            CoverageError: If all general queries fail, or the final result set
                lacks general results or the minimum number of results
        """
        report = ExecutionReport()
        self.last_report = report

        tasks = {
            asyncio.create_task(self._execute_query(query, session_id)): query
            for query in plan.research_queries
        }
        logger.info(f"Executing {len(tasks)} queries (deadline {self.run_timeout}s)")

        done, pending = await asyncio.wait(tasks, timeout=self.run_timeout)
        if pending:
            logger.warning(f"Run deadline reached, cancelling {len(pending)} outstanding queries")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        # Plan order keeps the output deterministic
        for task, query in tasks.items():
            if task in pending:
                report.timed_out.append(query)
                report.outcomes.append(QueryOutcome(query, error="cancelled at run deadline"))
            elif task.exception() is not None:
                report.outcomes.append(QueryOutcome(query, error=str(task.exception())))
            else:
                report.outcomes.append(task.result())

        general = [o for o in report.outcomes if o.query.engine == EngineId.GENERAL]
        if general and not any(o.succeeded for o in general):
            failures = [f"{o.query.query}: {o.error}" for o in general]
            logger.error(f"All {len(general)} general queries failed")
            raise CoverageError(
                "All general engine queries failed; no baseline coverage",
                failures=failures,
            )

        collected = [r for o in report.outcomes for r in o.results]
        results = deduplicate_results(collected)
        self.validate_results(results, report)
        results = cap_results(results, self.max_results)

        logger.info(
            f"Execution complete: {len(results)} results, "
            f"{len(report.failed)} failed queries, {len(report.fallbacks)} fallbacks"
        )
        return results

    def validate_results(
        self, results: list[SearchResultWithEngine], report: ExecutionReport | None = None
    ) -> None:
        """
        Assert minimum coverage of the deduplicated result set, before any cap.

        Raises:
            CoverageError: If there are no general results or too few results
        """
        general_count = sum(1 for r in results if r.engine == EngineId.GENERAL)
        failures = [f"{o.query.query}: {o.error}" for o in report.failed] if report else []

        if general_count == 0:
            logger.error("Result set contains no general engine results")
            raise CoverageError(
                "No results from the general engine",
                general_results=0,
                total_results=len(results),
                failures=failures,
            )
        if len(results) < self.min_total_results:
            logger.error(f"Only {len(results)} results, need {self.min_total_results}")
            raise CoverageError(
                f"Insufficient results: {len(results)} < {self.min_total_results}",
                general_results=general_count,
                total_results=len(results),
                failures=failures,
            )

    async def _execute_query(
        self, query: ResearchQuery, session_id: str | None
    ) -> QueryOutcome:
        engine = query.engine
        await self._notify(
            AgentMessageType.SEARCH_REQUEST,
            {"query": query.query, "reasoning": query.reasoning},
            engine,
            session_id,
        )

        client = self.engines.get(engine)
        if client is None:
            error = f"No client configured for engine '{engine.value}'"
            logger.warning(error)
            await self._notify(
                AgentMessageType.SEARCH_ERROR, {"query": query.query, "error": error}, engine, session_id
            )
            return QueryOutcome(query, error=error)

        try:
            raw = await self._search(engine, client, query.query, retry=True)
        except Exception as e:
            error = str(e)
            await self._notify(
                AgentMessageType.SEARCH_ERROR, {"query": query.query, "error": error}, engine, session_id
            )

            if not is_critical(engine):
                logger.warning(f"Dropping {engine.value} query '{query.query}': {e}")
                return QueryOutcome(query, error=error)

            if not self.retry_options.retry_condition(e):
                logger.warning(f"General query '{query.query}' failed permanently: {e}")
                return QueryOutcome(query, error=error)

            return await self._execute_fallback(query, error, session_id)

        results = [SearchResultWithEngine.from_result(r, engine, query.reasoning) for r in raw]
        await self._notify(
            AgentMessageType.SEARCH_RESULT,
            {"query": query.query, "result_count": len(results)},
            engine,
            session_id,
        )
        return QueryOutcome(query, results=results)

    async def _execute_fallback(
        self, query: ResearchQuery, original_error: str, session_id: str | None
    ) -> QueryOutcome:
        """One simplified attempt for a failed critical query, without retry."""
        engine = query.engine
        fallback_text = simplify_query(query.query)
        logger.warning(f"General query '{query.query}' failed, trying fallback '{fallback_text}'")

        try:
            raw = await self._search(engine, self.engines[engine], fallback_text, retry=False)
        except Exception as e:
            logger.warning(f"Fallback query '{fallback_text}' failed, dropping query: {e}")
            return QueryOutcome(query, error=f"{original_error}; fallback: {e}", used_fallback=True)

        reasoning = f"{query.reasoning} (fallback: {fallback_text})"
        results = [
            SearchResultWithEngine.from_result(
                r, engine, reasoning, relevance_scale=self.fallback_relevance_scale
            )
            for r in raw
        ]
        await self._notify(
            AgentMessageType.SEARCH_RESULT,
            {"query": fallback_text, "result_count": len(results), "fallback": True},
            engine,
            session_id,
        )
        return QueryOutcome(query, results=results, used_fallback=True)

    async def _search(
        self, engine: EngineId, client: EngineClient, text: str, retry: bool
    ) -> list[SearchResult]:
        """Call an engine through its breaker, reporting the outcome to the bus."""
        breaker = self.breakers.get(engine.value)
        started = self._clock()

        async def operation() -> list[SearchResult]:
            if retry:
                return await with_retry(lambda: client.search(text), self.retry_options)
            return await client.search(text)

        try:
            results = await breaker.call(operation)
        except Exception as e:
            self._record(engine, False, started, 0, str(e))
            raise

        self._record(engine, True, started, len(results))
        return results

    def _record(
        self,
        engine: EngineId,
        success: bool,
        started: float,
        result_count: int,
        error: str | None = None,
    ) -> None:
        if self.communication is None:
            return
        elapsed_ms = (self._clock() - started) * 1000.0
        self.communication.record_agent_execution(
            engine.value, success, elapsed_ms, result_count, error
        )

    async def _notify(
        self,
        message_type: AgentMessageType,
        payload: dict,
        engine: EngineId,
        session_id: str | None,
    ) -> None:
        if self.communication is None:
            return
        await self.communication.send_message(
            message_type, payload, agent_name=engine.value, session_id=session_id
        )
