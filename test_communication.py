"""
Agent Communication Tests

Tests for the message bus, health tracking and heartbeat lifecycle.
"""

import asyncio

from dotenv import load_dotenv

load_dotenv()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_history_is_bounded():
    """Test that history evicts the oldest messages and filters work."""
    print("=" * 60)
    print("TEST 1: Bounded message history")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, AgentMessageType

    async def run():
        comms = AgentCommunicationManager(history_limit=5)
        for i in range(8):
            agent = "general" if i % 2 == 0 else "video"
            await comms.send_message(
                AgentMessageType.SEARCH_REQUEST, {"n": i}, agent_name=agent, session_id="s1"
            )
        await comms.send_message(AgentMessageType.SEARCH_RESULT, {"n": 99}, agent_name="general")
        return comms

    comms = asyncio.run(run())
    history = comms.get_message_history()
    print(f"\n  History size: {len(history)}")
    assert len(history) == 5
    assert [m.payload["n"] for m in history] == [4, 5, 6, 7, 99]

    requests = comms.get_message_history(message_type=AgentMessageType.SEARCH_REQUEST)
    assert len(requests) == 4
    general = comms.get_message_history(agent_name="general", session_id="s1")
    assert [m.payload["n"] for m in general] == [4, 6]
    assert [m.payload["n"] for m in comms.get_message_history(limit=2)] == [7, 99]
    print("\n[PASS] History bounded and filterable")


def test_handler_isolation():
    """Test that a failing handler does not affect the others."""
    print("\n" + "=" * 60)
    print("TEST 2: Handler failure isolation")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, AgentMessageType

    received = []

    def broken(message):
        raise RuntimeError("handler exploded")

    async def recorder(message):
        received.append(message.payload["query"])

    def sync_recorder(message):
        received.append(f"sync:{message.payload['query']}")

    async def run():
        comms = AgentCommunicationManager()
        comms.on_message(AgentMessageType.SEARCH_RESULT, broken)
        comms.on_message(AgentMessageType.SEARCH_RESULT, recorder)
        comms.on_message(AgentMessageType.SEARCH_RESULT, sync_recorder)
        message = await comms.send_message(
            AgentMessageType.SEARCH_RESULT, {"query": "photosynthesis"}, agent_name="general"
        )
        return message

    message = asyncio.run(run())
    print(f"\n  Received: {received}")
    assert sorted(received) == ["photosynthesis", "sync:photosynthesis"]
    assert message.agent_name == "general"
    assert message.session_id == "default"
    print("\n[PASS] Healthy handlers ran despite a failing one")


def test_channel_drops_oldest():
    """Test that a full subscriber channel drops its oldest message."""
    print("\n" + "=" * 60)
    print("TEST 3: Bounded subscriber channels")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, AgentMessageType

    async def run():
        comms = AgentCommunicationManager()
        channel = comms.subscribe(AgentMessageType.SEARCH_ERROR, maxsize=2)
        for i in range(3):
            await comms.send_message(AgentMessageType.SEARCH_ERROR, {"n": i})
        first = channel.get_nowait()
        second = channel.get_nowait()
        await comms.shutdown()
        closed = channel.get_nowait()
        return first, second, closed

    first, second, closed = asyncio.run(run())
    print(f"\n  Channel contents: {first.payload['n']}, {second.payload['n']}, {closed}")
    assert first.payload["n"] == 1
    assert second.payload["n"] == 2
    assert closed is None
    print("\n[PASS] Oldest message dropped, shutdown sentinel delivered")


def test_execution_metrics_and_status():
    """Test rolling metrics, error list cap and status classification."""
    print("\n" + "=" * 60)
    print("TEST 4: Agent execution metrics")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, HealthState

    comms = AgentCommunicationManager(error_limit=3)
    record = comms.record_agent_execution("general", True, 200.0, result_count=5)
    assert record.status == HealthState.HEALTHY
    assert comms.is_agent_healthy("general")

    for _ in range(3):
        record = comms.record_agent_execution("general", False, 200.0, error="503")
    print(f"\n  success_rate after 3 failures: {record.metrics.success_rate:.3f}")
    print(f"  status: {record.status.value}")
    assert abs(record.metrics.error_rate - (1.0 - record.metrics.success_rate)) < 1e-9
    assert record.status == HealthState.DEGRADED

    for _ in range(5):
        record = comms.record_agent_execution("general", False, 200.0, error="503")
    assert record.status == HealthState.UNHEALTHY
    assert len(record.errors) == 3
    assert not comms.is_agent_healthy("general")
    assert comms.get_agent_health("missing") is None
    print("\n[PASS] Metrics roll and errors are capped")


def test_system_health_aggregation():
    """Test the overall status rules."""
    print("\n" + "=" * 60)
    print("TEST 5: System health aggregation")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, HealthState

    comms = AgentCommunicationManager()
    assert comms.get_system_health().overall_status == HealthState.HEALTHY

    for name in ("general", "academic", "video", "community"):
        comms.update_agent_health(name, HealthState.HEALTHY)
    comms.update_agent_health("video", HealthState.UNHEALTHY)
    health = comms.get_system_health()
    print(f"\n  1 of 4 unhealthy: {health.overall_status.value}")
    assert health.overall_status == HealthState.DEGRADED

    comms.update_agent_health("community", HealthState.DEGRADED)
    comms.update_agent_health("academic", HealthState.DEGRADED)
    health = comms.get_system_health()
    print(f"  1 unhealthy + 2 degraded of 4: {health.overall_status.value}")
    assert health.overall_status == HealthState.UNHEALTHY
    assert health.to_dict()["agent_count"] == 4

    comms.update_agent_health("general", metrics={"response_time_ms": 100.0})
    assert comms.get_agent_health("general").metrics.response_time_ms == 100.0
    assert comms.get_agent_health("general").metrics.success_rate == 1.0
    print("\n[PASS] Overall status follows the aggregation rules")


def test_heartbeat_marks_offline():
    """Test that silent agents are marked offline and counted unhealthy."""
    print("\n" + "=" * 60)
    print("TEST 6: Heartbeat offline detection")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, AgentMessageType, HealthState

    clock = FakeClock()
    comms = AgentCommunicationManager(heartbeat_timeout=60.0, clock=clock)
    comms.update_agent_health("general", HealthState.HEALTHY)
    clock.advance(30.0)
    comms.update_agent_health("academic", HealthState.HEALTHY)
    clock.advance(45.0)

    health = asyncio.run(comms.perform_health_checks())
    print(f"\n  general: {comms.get_agent_health('general').status.value}")
    print(f"  academic: {comms.get_agent_health('academic').status.value}")
    assert comms.get_agent_health("general").status == HealthState.OFFLINE
    assert comms.get_agent_health("academic").status == HealthState.HEALTHY
    assert health.unhealthy_agents == 1
    assert health.overall_status == HealthState.DEGRADED

    sync = comms.get_message_history(message_type=AgentMessageType.COORDINATION_SYNC)
    assert len(sync) == 1
    assert sync[0].payload["system_health"]["unhealthy_agents"] == 1
    print("\n[PASS] Silent agent marked offline and broadcast sent")


def test_lifecycle():
    """Test heartbeat start and idempotent shutdown."""
    print("\n" + "=" * 60)
    print("TEST 7: Lifecycle")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager, AgentMessageType

    received = []

    async def run():
        comms = AgentCommunicationManager(heartbeat_interval=0.01)
        comms.on_message(AgentMessageType.COORDINATION_SYNC, lambda m: received.append(m))
        async with comms:
            assert comms.running
            await asyncio.sleep(0.05)
        assert not comms.running
        await comms.shutdown()
        return comms

    comms = asyncio.run(run())
    print(f"\n  Heartbeat broadcasts: {len(received)}")
    assert len(received) >= 1
    assert not comms.running
    print("\n[PASS] Heartbeat ran and shutdown is idempotent")


def test_result_confidence():
    """Test the agent response confidence heuristic."""
    print("\n" + "=" * 60)
    print("TEST 8: Result confidence")
    print("=" * 60)

    from topic_research.agents import AgentCommunicationManager
    from topic_research.engines import SearchResult

    calc = AgentCommunicationManager.calculate_result_confidence
    assert calc([]) == 0.0

    short = [SearchResult(id="1", snippet="short")]
    assert calc(short) == 0.5

    long_snippet = "x" * 80
    many = [SearchResult(id=str(i), snippet=long_snippet) for i in range(12)]
    assert abs(calc(many, summary="s" * 150) - 1.0) < 1e-9

    response = AgentCommunicationManager().create_agent_response("video", short, 120.0)
    assert response.confidence == 0.5
    assert response.agent_name == "video"
    print("\n[PASS] Confidence heuristic behaves as expected")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("AGENT COMMUNICATION TESTS")
    print("=" * 60)

    test_history_is_bounded()
    test_handler_isolation()
    test_channel_drops_oldest()
    test_execution_metrics_and_status()
    test_system_health_aggregation()
    test_heartbeat_marks_offline()
    test_lifecycle()
    test_result_confidence()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
