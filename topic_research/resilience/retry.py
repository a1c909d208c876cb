"""Bounded retry with exponential backoff and jitter."""

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import httpx

from ..errors import TopicResearchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_STATUS = {400, 401, 403, 404}

_RETRYABLE_PATTERNS = re.compile(
    r"network|timeout|timed out|fetch|\b5\d\d\b|rate limit|temporarily unavailable"
    r"|econnreset|enotfound|etimedout|connection reset",
    re.IGNORECASE,
)


def is_retryable_error(error: BaseException) -> bool:
    """Default retryability predicate.

    Auth/permission failures and malformed requests are never retried.
    Network errors, timeouts, 5xx and rate limiting are.
    """
    if isinstance(error, TopicResearchError):
        return error.retryable

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in NON_RETRYABLE_STATUS:
            return False
        return status == 429 or status >= 500

    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return True

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        if status in NON_RETRYABLE_STATUS:
            return False
        return status == 429 or status >= 500

    return bool(_RETRYABLE_PATTERNS.search(str(error)))


@dataclass
class RetryOptions:
    """Options for :func:`with_retry`. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: float = 1.0
    retry_condition: Callable[[BaseException], bool] = is_retryable_error
    on_retry: Callable[[int, BaseException], None] | None = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def delay_for_attempt(self, attempt: int) -> float:
        """Backoff delay (without jitter) after the given failed attempt (1-based)."""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


# Presets for the call sites in the pipeline
RETRY_PRESETS: dict[str, RetryOptions] = {
    "engine_search": RetryOptions(max_attempts=3, base_delay=1.0, max_delay=10.0),
}


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> T:
    """
    Run an async operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument callable returning an awaitable
        options: Retry options (defaults to RetryOptions())

    Returns:
        The operation's result

    Raises:
        The last error raised by the operation once attempts are exhausted,
        or immediately when the error is not retryable.
    """
    options = options or RetryOptions()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if attempt >= options.max_attempts or not options.retry_condition(e):
                if attempt > 1:
                    logger.warning(f"Giving up after {attempt} attempt(s): {e}")
                raise

            delay = options.delay_for_attempt(attempt)
            if options.jitter > 0:
                delay += random.uniform(0, options.jitter)

            logger.debug(
                f"Attempt {attempt}/{options.max_attempts} failed ({e}), retrying in {delay:.2f}s"
            )
            if options.on_retry is not None:
                options.on_retry(attempt, e)

            await options.sleep(delay)
