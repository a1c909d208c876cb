"""Typed message bus and health tracking for research agents."""

import asyncio
import inspect
import logging
import time
import uuid
from collections import deque
from dataclasses import replace
from typing import Any, Awaitable, Callable

from .protocol import (
    AgentCapabilities,
    AgentHealthStatus,
    AgentMessage,
    AgentMessageType,
    AgentResponse,
    HealthMetrics,
    HealthState,
    RecentError,
    ResourceUsage,
    SystemHealth,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[AgentMessage], Awaitable[None] | None]

DEGRADED_ERROR_RATE = 0.2
UNHEALTHY_ERROR_RATE = 0.5
DEGRADED_RESPONSE_TIME_MS = 30000.0


class AgentCommunicationManager:
    """
    Decouples research agents through typed messages and aggregates their health.

    Every message type has its own fan-out: registered handlers run
    concurrently (a failing handler is logged and does not affect the others)
    and subscriber channels receive the message on a bounded queue. A
    heartbeat worker periodically marks silent agents offline.

    Health records are mutated only inside synchronous methods, so each
    per-agent update is atomic on the event loop.

    Usage:
        async with AgentCommunicationManager() as comms:
            comms.on_message(AgentMessageType.SEARCH_RESULT, handler)
            await comms.send_message(AgentMessageType.SEARCH_REQUEST, {...}, "general")
    """

    def __init__(
        self,
        history_limit: int = 1000,
        error_limit: int = 10,
        heartbeat_interval: float = 30.0,
        heartbeat_timeout: float = 60.0,
        channel_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the manager.

        Args:
            history_limit: Maximum messages kept in history (oldest evicted)
            error_limit: Maximum recent errors kept per agent
            heartbeat_interval: Seconds between heartbeat sweeps
            heartbeat_timeout: Seconds of silence before an agent is offline
            channel_size: Default capacity of subscriber channels
            clock: Monotonic time source, injectable for tests
        """
        self.error_limit = error_limit
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self.channel_size = channel_size
        self._clock = clock

        self._history: deque[AgentMessage] = deque(maxlen=history_limit)
        self._handlers: dict[AgentMessageType, list[MessageHandler]] = {}
        self._channels: dict[AgentMessageType, list[asyncio.Queue]] = {}
        self._health: dict[str, AgentHealthStatus] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._closed = False

    async def __aenter__(self) -> "AgentCommunicationManager":
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def on_message(self, message_type: AgentMessageType, handler: MessageHandler) -> None:
        """Register a handler (sync or async) for a message type."""
        self._handlers.setdefault(message_type, []).append(handler)

    def subscribe(
        self, message_type: AgentMessageType, maxsize: int | None = None
    ) -> asyncio.Queue:
        """
        Open a channel receiving every message of a type.

        When the channel is full the oldest queued message is dropped. A
        ``None`` item signals that the manager shut down.
        """
        channel: asyncio.Queue = asyncio.Queue(maxsize=maxsize or self.channel_size)
        self._channels.setdefault(message_type, []).append(channel)
        return channel

    async def send_message(
        self,
        message_type: AgentMessageType,
        payload: dict[str, Any],
        agent_name: str = "coordinator",
        target_agent: str | None = None,
        session_id: str | None = None,
    ) -> AgentMessage:
        """
        Record a message in history and fan it out to handlers and channels.

        Returns:
            The constructed message
        """
        message = AgentMessage(
            id=uuid.uuid4().hex,
            type=message_type,
            agent_name=agent_name,
            session_id=session_id or "default",
            payload=payload,
            target_agent=target_agent,
        )
        self._history.append(message)

        for channel in self._channels.get(message_type, []):
            self._offer(channel, message)

        handlers = list(self._handlers.get(message_type, []))
        if handlers:
            outcomes = await asyncio.gather(
                *(self._invoke(handler, message) for handler in handlers),
                return_exceptions=True,
            )
            for handler, outcome in zip(handlers, outcomes):
                if isinstance(outcome, Exception):
                    name = getattr(handler, "__name__", repr(handler))
                    logger.error(f"Handler {name} failed for {message_type.value}: {outcome}")

        return message

    @staticmethod
    async def _invoke(handler: MessageHandler, message: AgentMessage) -> None:
        result = handler(message)
        if inspect.isawaitable(result):
            await result

    @staticmethod
    def _offer(channel: asyncio.Queue, item: AgentMessage | None) -> None:
        if channel.full():
            channel.get_nowait()
        channel.put_nowait(item)

    def get_message_history(
        self,
        message_type: AgentMessageType | None = None,
        agent_name: str | None = None,
        session_id: str | None = None,
        limit: int | None = None,
    ) -> list[AgentMessage]:
        """Return history (oldest first), optionally filtered, newest ``limit`` only."""
        messages = [
            m
            for m in self._history
            if (message_type is None or m.type == message_type)
            and (agent_name is None or m.agent_name == agent_name)
            and (session_id is None or m.session_id == session_id)
        ]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _get_or_create(self, agent_name: str) -> AgentHealthStatus:
        status = self._health.get(agent_name)
        if status is None:
            status = AgentHealthStatus(agent_name=agent_name, last_heartbeat=self._clock())
            self._health[agent_name] = status
        return status

    def update_agent_health(
        self,
        agent_name: str,
        status: HealthState | None = None,
        metrics: dict[str, float] | None = None,
        capabilities: dict[str, Any] | None = None,
        resource_usage: dict[str, float] | None = None,
    ) -> AgentHealthStatus:
        """Merge a partial health update into an agent's record."""
        record = self._get_or_create(agent_name)
        if status is not None:
            record.status = status
        if metrics:
            record.metrics = replace(record.metrics, **metrics)
        if capabilities:
            record.capabilities = replace(record.capabilities, **capabilities)
        if resource_usage:
            record.resource_usage = replace(record.resource_usage, **resource_usage)
        record.last_heartbeat = self._clock()
        return record

    def record_agent_execution(
        self,
        agent_name: str,
        success: bool,
        response_time_ms: float,
        result_count: int = 0,
        error: str | None = None,
    ) -> AgentHealthStatus:
        """Fold one execution outcome into the agent's rolling metrics."""
        record = self._get_or_create(agent_name)
        metrics = record.metrics

        metrics.response_time_ms = metrics.response_time_ms * 0.8 + response_time_ms * 0.2
        metrics.success_rate = metrics.success_rate * 0.9 + (1.0 if success else 0.0) * 0.1
        metrics.error_rate = 1.0 - metrics.success_rate
        seconds = max(response_time_ms / 1000.0, 0.001)
        metrics.throughput = metrics.throughput * 0.8 + (result_count / seconds) * 0.2

        if not success:
            record.errors.append(
                RecentError(code="EXECUTION_FAILED", message=error or "Unknown error")
            )
            del record.errors[: -self.error_limit]

        record.status = self._classify(metrics)
        record.last_heartbeat = self._clock()
        return record

    @staticmethod
    def _classify(metrics: HealthMetrics) -> HealthState:
        if metrics.error_rate > UNHEALTHY_ERROR_RATE:
            return HealthState.UNHEALTHY
        if (
            metrics.error_rate > DEGRADED_ERROR_RATE
            or metrics.response_time_ms > DEGRADED_RESPONSE_TIME_MS
        ):
            return HealthState.DEGRADED
        return HealthState.HEALTHY

    def get_agent_health(self, agent_name: str) -> AgentHealthStatus | None:
        return self._health.get(agent_name)

    def is_agent_healthy(self, agent_name: str) -> bool:
        record = self._health.get(agent_name)
        return record is not None and record.status == HealthState.HEALTHY

    def get_system_health(self) -> SystemHealth:
        """Aggregate per-agent statuses; offline agents count as unhealthy."""
        records = list(self._health.values())
        healthy = sum(1 for r in records if r.status == HealthState.HEALTHY)
        degraded = sum(1 for r in records if r.status == HealthState.DEGRADED)
        unhealthy = sum(
            1 for r in records if r.status in (HealthState.UNHEALTHY, HealthState.OFFLINE)
        )
        total = len(records)

        if unhealthy > 0 and (degraded + unhealthy) > total / 2:
            overall = HealthState.UNHEALTHY
        elif degraded > 0 or unhealthy > 0:
            overall = HealthState.DEGRADED
        else:
            overall = HealthState.HEALTHY

        if total:
            avg_response = sum(r.metrics.response_time_ms for r in records) / total
            load = sum(
                min(
                    1.0,
                    r.resource_usage.active_connections
                    / max(r.capabilities.max_concurrent_requests, 1),
                )
                for r in records
            ) / total
        else:
            avg_response = 0.0
            load = 0.0

        return SystemHealth(
            overall_status=overall,
            agent_count=total,
            healthy_agents=healthy,
            degraded_agents=degraded,
            unhealthy_agents=unhealthy,
            average_response_time=avg_response,
            system_load=load,
        )

    async def perform_health_checks(self) -> SystemHealth:
        """Mark silent agents offline and broadcast the system health."""
        now = self._clock()
        for record in self._health.values():
            silent_for = now - record.last_heartbeat
            if silent_for > self.heartbeat_timeout and record.status != HealthState.OFFLINE:
                logger.warning(
                    f"Agent '{record.agent_name}' silent for {silent_for:.0f}s, marking offline"
                )
                record.status = HealthState.OFFLINE

        health = self.get_system_health()
        await self.send_message(
            AgentMessageType.COORDINATION_SYNC,
            {"system_health": health.to_dict()},
            agent_name="coordinator",
        )
        return health

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_result_confidence(results: list[Any], summary: str | None = None) -> float:
        """Heuristic confidence in an agent's result set."""
        if not results:
            return 0.0

        confidence = 0.5
        if len(results) > 5:
            confidence += 0.2
        if len(results) > 10:
            confidence += 0.1
        snippet = getattr(results[0], "snippet", None) or ""
        if len(snippet) > 50:
            confidence += 0.1
        if summary and len(summary) > 100:
            confidence += 0.1
        return min(confidence, 1.0)

    def create_agent_response(
        self,
        agent_name: str,
        results: list[Any],
        processing_time_ms: float,
        session_id: str = "default",
        summary: str | None = None,
        error: str | None = None,
    ) -> AgentResponse:
        return AgentResponse(
            agent_name=agent_name,
            session_id=session_id,
            results=results,
            confidence=self.calculate_result_confidence(results, summary),
            processing_time_ms=processing_time_ms,
            summary=summary,
            error=error,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the heartbeat worker. Requires a running event loop."""
        if self._closed or self._heartbeat_task is not None:
            return
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())
        logger.info(f"Heartbeat started (every {self.heartbeat_interval}s)")

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.perform_health_checks()
            except Exception as e:
                logger.error(f"Heartbeat sweep failed: {e}")

    @property
    def running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    async def shutdown(self) -> None:
        """Stop the heartbeat, drop handlers and close channels. Idempotent."""
        if self._closed:
            return
        self._closed = True

        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._handlers.clear()
        for channels in self._channels.values():
            for channel in channels:
                self._offer(channel, None)
        self._channels.clear()
        logger.info("Agent communication shut down")
