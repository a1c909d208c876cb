"""
Resilience Tests

Tests for retry with backoff and the circuit breakers.
"""

import asyncio

from dotenv import load_dotenv

load_dotenv()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_retry_exhausts_retryable_errors():
    """Test that retryable errors are attempted max_attempts times."""
    print("=" * 60)
    print("TEST 1: Retry exhausts retryable errors")
    print("=" * 60)

    from topic_research.errors import EngineError
    from topic_research.resilience import RetryOptions, with_retry

    calls = []
    delays = []

    async def failing():
        calls.append(1)
        raise EngineError("general", "Service unavailable", status_code=503)

    async def fake_sleep(delay):
        delays.append(delay)

    options = RetryOptions(max_attempts=3, base_delay=1.0, backoff_factor=2.0, jitter=0, sleep=fake_sleep)
    try:
        asyncio.run(with_retry(failing, options))
        raise AssertionError("Expected EngineError")
    except EngineError as e:
        print(f"\nFinal error: {e}")

    print(f"  Attempts: {len(calls)}")
    print(f"  Delays: {delays}")
    assert len(calls) == 3
    assert delays == [1.0, 2.0]
    print("\n[PASS] Operation invoked exactly 3 times with growing delays")


def test_retry_stops_on_non_retryable():
    """Test that non-retryable errors are raised after one attempt."""
    print("\n" + "=" * 60)
    print("TEST 2: Non-retryable errors are not retried")
    print("=" * 60)

    from topic_research.errors import EngineError
    from topic_research.resilience import RetryOptions, with_retry

    calls = []

    async def unauthorized():
        calls.append(1)
        raise EngineError("general", "Unauthorized", status_code=401)

    options = RetryOptions(max_attempts=3, base_delay=0, jitter=0)
    try:
        asyncio.run(with_retry(unauthorized, options))
        raise AssertionError("Expected EngineError")
    except EngineError:
        pass

    print(f"\n  Attempts: {len(calls)}")
    assert len(calls) == 1
    print("\n[PASS] 401 raised after a single attempt")


def test_retry_recovers():
    """Test that a transient failure followed by success returns the result."""
    print("\n" + "=" * 60)
    print("TEST 3: Retry recovers after transient failure")
    print("=" * 60)

    from topic_research.errors import TransientError
    from topic_research.resilience import RetryOptions, with_retry

    calls = []
    retried = []

    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise TransientError("connection reset")
        return "ok"

    options = RetryOptions(
        base_delay=0, jitter=0, on_retry=lambda attempt, e: retried.append(attempt)
    )
    result = asyncio.run(with_retry(flaky, options))

    assert result == "ok"
    assert len(calls) == 2
    assert retried == [1]
    print("\n[PASS] Second attempt succeeded, on_retry called once")


def test_delay_schedule():
    """Test that backoff delays are non-decreasing and capped."""
    print("\n" + "=" * 60)
    print("TEST 4: Backoff delay schedule")
    print("=" * 60)

    from topic_research.resilience import RetryOptions

    options = RetryOptions(max_attempts=8, base_delay=1.0, max_delay=10.0, backoff_factor=2.0)
    delays = [options.delay_for_attempt(n) for n in range(1, 8)]
    print(f"\n  Delays: {delays}")

    assert delays == sorted(delays)
    assert max(delays) == 10.0
    assert delays[:4] == [1.0, 2.0, 4.0, 8.0]
    print("\n[PASS] Delays grow exponentially up to max_delay")


def test_retryable_classification():
    """Test the default retryability predicate."""
    print("\n" + "=" * 60)
    print("TEST 5: Retryable error classification")
    print("=" * 60)

    import httpx

    from topic_research.errors import CircuitOpenError, ConfigurationError, EngineError
    from topic_research.resilience import is_retryable_error

    request = httpx.Request("GET", "http://localhost:8080/search")

    def status_error(code):
        response = httpx.Response(code, request=request)
        return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)

    assert is_retryable_error(status_error(503))
    assert is_retryable_error(status_error(429))
    assert not is_retryable_error(status_error(404))
    assert not is_retryable_error(status_error(403))
    assert is_retryable_error(httpx.ConnectError("refused", request=request))
    assert is_retryable_error(asyncio.TimeoutError())
    assert is_retryable_error(EngineError("video", "timeout"))
    assert not is_retryable_error(EngineError("video", "bad query", status_code=400))
    assert not is_retryable_error(ConfigurationError("missing key"))
    assert not is_retryable_error(CircuitOpenError("general"))
    assert is_retryable_error(RuntimeError("network unreachable"))
    assert not is_retryable_error(ValueError("malformed input"))
    print("\n[PASS] Errors classified correctly")


def test_circuit_breaker_transitions():
    """Test CLOSED -> OPEN -> HALF_OPEN -> CLOSED/OPEN with a fake clock."""
    print("\n" + "=" * 60)
    print("TEST 6: Circuit breaker transitions")
    print("=" * 60)

    from topic_research.resilience import CircuitBreaker, CircuitState

    clock = FakeClock()
    breaker = CircuitBreaker("general", failure_threshold=3, reset_timeout=60.0, clock=clock)

    for _ in range(2):
        assert breaker.can_attempt()
        breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    breaker.record_failure()
    print(f"\n  After 3 failures: {breaker.state.value}")
    assert breaker.state == CircuitState.OPEN
    assert not breaker.can_attempt()

    clock.advance(59.0)
    assert not breaker.can_attempt()
    clock.advance(1.0)

    # Exactly one trial is admitted once the cool-down elapsed
    assert breaker.can_attempt()
    assert breaker.state == CircuitState.HALF_OPEN
    assert not breaker.can_attempt()
    print(f"  After cool-down: {breaker.state.value} (single trial admitted)")

    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    snapshot = breaker.snapshot()
    assert snapshot.next_attempt_time == clock.now + 60.0
    print(f"  Failed trial: {breaker.state.value}")

    clock.advance(60.0)
    assert breaker.can_attempt()
    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.snapshot().failure_count == 0
    print(f"  Successful trial: {breaker.state.value}")
    print("\n[PASS] Breaker state machine behaves correctly")


def test_circuit_breaker_call():
    """Test that an open breaker refuses calls without invoking the operation."""
    print("\n" + "=" * 60)
    print("TEST 7: Circuit breaker call wrapper")
    print("=" * 60)

    from topic_research.errors import CircuitOpenError
    from topic_research.resilience import CircuitBreaker

    clock = FakeClock()
    breaker = CircuitBreaker("video", failure_threshold=1, reset_timeout=30.0, clock=clock)
    calls = []

    async def failing():
        calls.append(1)
        raise RuntimeError("boom")

    async def run():
        try:
            await breaker.call(failing)
        except RuntimeError:
            pass
        try:
            await breaker.call(failing)
            raise AssertionError("Expected CircuitOpenError")
        except CircuitOpenError as e:
            print(f"\n  Refused: {e}")

    asyncio.run(run())
    assert len(calls) == 1
    print("\n[PASS] Open breaker refuses without calling the operation")


def test_breaker_manager():
    """Test lazy per-service breakers, presets and reset."""
    print("\n" + "=" * 60)
    print("TEST 8: Circuit breaker manager")
    print("=" * 60)

    from topic_research.resilience import CircuitBreakerManager, CircuitState

    clock = FakeClock()
    manager = CircuitBreakerManager(failure_threshold=2, reset_timeout=10.0, clock=clock)

    assert manager.get("general") is manager.get("general")
    assert manager.get("llm").failure_threshold == 3
    assert manager.get("general").failure_threshold == 2

    manager.record_failure("general")
    manager.record_failure("general")
    assert manager.is_open("general")
    assert manager.can_attempt("academic")

    status = manager.status()
    print(f"\n  Status: { {k: v.state.value for k, v in status.items()} }")
    assert status["general"].state == CircuitState.OPEN

    manager.reset("general")
    assert not manager.is_open("general")
    manager.record_failure("academic")
    manager.reset()
    assert manager.status()["academic"].failure_count == 0
    print("\n[PASS] Manager tracks breakers per service")


def test_cancelled_half_open_trial():
    """Test that a cancelled half-open trial re-opens the breaker."""
    print("\n" + "=" * 60)
    print("TEST 9: Cancelled half-open trial")
    print("=" * 60)

    from topic_research.resilience import CircuitBreaker, CircuitState

    clock = FakeClock()
    breaker = CircuitBreaker("general", failure_threshold=1, reset_timeout=30.0, clock=clock)
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    clock.advance(30.0)

    async def slow():
        await asyncio.sleep(10)
        return []

    async def run():
        task = asyncio.create_task(breaker.call(slow))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN
        task.cancel()
        try:
            await task
            raise AssertionError("Expected CancelledError")
        except asyncio.CancelledError:
            pass

    asyncio.run(run())
    print(f"\n  After cancel: {breaker.state.value}")
    assert breaker.state == CircuitState.OPEN
    assert breaker.snapshot().next_attempt_time == clock.now + 30.0
    assert not breaker.can_attempt()

    clock.advance(30.0)
    assert breaker.can_attempt()
    assert breaker.state == CircuitState.HALF_OPEN
    print(f"  After cool-down: {breaker.state.value}")

    # Cancellation while closed is not counted as a failure
    closed = CircuitBreaker("video", failure_threshold=1, reset_timeout=30.0, clock=clock)

    async def run_closed():
        task = asyncio.create_task(closed.call(slow))
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run_closed())
    assert closed.state == CircuitState.CLOSED
    assert closed.snapshot().failure_count == 0
    print("\n[PASS] Cancelled trial releases the breaker")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("RESILIENCE TESTS")
    print("=" * 60)

    test_retry_exhausts_retryable_errors()
    test_retry_stops_on_non_retryable()
    test_retry_recovers()
    test_delay_schedule()
    test_retryable_classification()
    test_circuit_breaker_transitions()
    test_circuit_breaker_call()
    test_breaker_manager()
    test_cancelled_half_open_trial()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
