"""Retry and circuit-breaker primitives shared by engines and generation calls."""

from .retry import RETRY_PRESETS, RetryOptions, is_retryable_error, with_retry
from .circuit_breaker import (
    BREAKER_PRESETS,
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitBreakerState,
    CircuitState,
)

__all__ = [
    # Retry
    "RetryOptions",
    "RETRY_PRESETS",
    "is_retryable_error",
    "with_retry",
    # Circuit breakers
    "BREAKER_PRESETS",
    "CircuitBreaker",
    "CircuitBreakerManager",
    "CircuitBreakerState",
    "CircuitState",
]
