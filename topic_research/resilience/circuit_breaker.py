"""Per-service circuit breakers with CLOSED/OPEN/HALF_OPEN states."""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from pydantic import BaseModel

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """State of a circuit breaker."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerState(BaseModel):
    """Read-only snapshot of a breaker."""

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float | None = None
    next_attempt_time: float | None = None


class CircuitBreaker:
    """
    Failure-threshold circuit breaker with a cool-down timer.

    Callers consult ``can_attempt()`` before invoking the protected operation
    and report the outcome with ``record_success()`` / ``record_failure()``.
    After the cool-down, exactly one trial is admitted (HALF_OPEN); its
    outcome closes or re-opens the breaker.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize a circuit breaker.

        Args:
            name: Service name (used in logs)
            failure_threshold: Consecutive failures before opening
            reset_timeout: Seconds to stay open before allowing a trial
            clock: Monotonic time source, injectable for tests
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._next_attempt_time: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    def is_open(self) -> bool:
        """Whether the breaker is currently refusing calls."""
        return self._state == CircuitState.OPEN

    def can_attempt(self) -> bool:
        """Admission check; transitions OPEN -> HALF_OPEN once the cool-down elapsed."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._next_attempt_time is not None and self._clock() >= self._next_attempt_time:
                    self._state = CircuitState.HALF_OPEN
                    self._trial_in_flight = True
                    logger.info(f"Circuit '{self.name}' half-open, allowing trial request")
                    return True
                return False

            # HALF_OPEN: only the single trial is admitted
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info(f"Circuit '{self.name}' closed after successful trial")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._next_attempt_time = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failure_count += 1
            self._last_failure_time = now
            self._trial_in_flight = False

            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        f"Circuit '{self.name}' opened after {self._failure_count} failure(s), "
                        f"retry in {self.reset_timeout}s"
                    )
                self._state = CircuitState.OPEN
                self._next_attempt_time = now + self.reset_timeout

    def record_cancellation(self) -> None:
        """Settle a call that was cancelled before it finished.

        A cancelled half-open trial counts as a failed trial, so the breaker
        re-opens with a fresh cool-down. Cancellations while CLOSED are not
        counted.
        """
        with self._lock:
            was_trial = self._state == CircuitState.HALF_OPEN
            self._trial_in_flight = False
        if was_trial:
            self.record_failure()

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._next_attempt_time = None
            self._trial_in_flight = False

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                failure_count=self._failure_count,
                last_failure_time=self._last_failure_time,
                next_attempt_time=self._next_attempt_time,
            )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation through the breaker, recording its outcome.

        Raises:
            CircuitOpenError: If the breaker refuses admission
        """
        if not self.can_attempt():
            raise CircuitOpenError(self.name)
        try:
            result = await operation()
        except asyncio.CancelledError:
            self.record_cancellation()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


# (failure_threshold, reset_timeout seconds) for known services
BREAKER_PRESETS: dict[str, tuple[int, float]] = {
    "searxng": (5, 60.0),
    "agents": (3, 45.0),
    "llm": (3, 30.0),
}


class CircuitBreakerManager:
    """Holds one breaker per service name, created on first use."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        overrides: dict[str, tuple[int, float]] | None = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._overrides = {**BREAKER_PRESETS, **(overrides or {})}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._registry_lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for a service, creating it lazily."""
        breaker = self._breakers.get(name)
        if breaker is not None:
            return breaker

        with self._registry_lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                threshold, timeout = self._overrides.get(
                    name, (self.failure_threshold, self.reset_timeout)
                )
                breaker = CircuitBreaker(name, threshold, timeout, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def can_attempt(self, name: str) -> bool:
        return self.get(name).can_attempt()

    def record_success(self, name: str) -> None:
        self.get(name).record_success()

    def record_failure(self, name: str) -> None:
        self.get(name).record_failure()

    def is_open(self, name: str) -> bool:
        return self.get(name).is_open()

    def status(self) -> dict[str, CircuitBreakerState]:
        """Snapshot of every known breaker."""
        return {name: breaker.snapshot() for name, breaker in list(self._breakers.items())}

    def reset(self, name: str | None = None) -> None:
        """Reset one breaker, or all of them when no name is given."""
        if name is not None:
            self.get(name).reset()
            return
        for breaker in list(self._breakers.values()):
            breaker.reset()
