"""Exception hierarchy for the research pipeline.

Every error carries a ``retryable`` flag that the default retry predicate
consults. Transient errors are absorbed by retries and circuit breakers;
validation errors surface only when no deterministic fallback exists.
"""


class TopicResearchError(Exception):
    """Base class for all research pipeline errors."""

    retryable: bool = False


class ConfigurationError(TopicResearchError):
    """Invalid or missing configuration (API keys, unknown engines, ...)."""


class TransientError(TopicResearchError):
    """A temporary failure that is safe to retry."""

    retryable = True


class EngineError(TopicResearchError):
    """A search engine call failed.

    Args:
        engine: Engine identifier that failed
        message: Human readable description
        status_code: HTTP status code, when the failure came from a response
        retryable: Whether retrying could succeed. Defaults to a classification
            from ``status_code`` (429 and 5xx are retryable, other 4xx are not).
    """

    def __init__(
        self,
        engine: str,
        message: str,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(f"[{engine}] {message}")
        self.engine = engine
        self.status_code = status_code
        if retryable is None:
            retryable = status_code is None or status_code == 429 or status_code >= 500
        self.retryable = retryable


class CircuitOpenError(TopicResearchError):
    """A call was refused because the service's circuit breaker is open."""

    def __init__(self, service: str):
        super().__init__(f"Circuit breaker open for service '{service}'")
        self.service = service


class PlanningError(TopicResearchError):
    """A research plan could not satisfy its mandatory engine minimums.

    This signals an exhausted template pool, not a transient condition.
    """


class CoverageError(TopicResearchError):
    """Executed research does not meet minimum coverage.

    Raised when every general query failed or the final result set lacks
    general-engine results or the configured minimum number of results.
    """

    def __init__(
        self,
        message: str,
        general_results: int = 0,
        total_results: int = 0,
        failures: list[str] | None = None,
    ):
        super().__init__(message)
        self.general_results = general_results
        self.total_results = total_results
        self.failures = failures or []


class TopicCycleError(TopicResearchError):
    """A set of topics depend on each other in a cycle.

    Args:
        cycles: Each cycle as a list of topic titles
    """

    def __init__(self, cycles: list[list[str]]):
        rendered = "; ".join(" -> ".join(cycle) for cycle in cycles)
        super().__init__(f"Topic dependency cycle(s): {rendered}")
        self.cycles = cycles
