"""Message and health types exchanged between research agents."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AgentMessageType(str, Enum):
    """Type of a message on the agent bus."""

    HEALTH_CHECK = "health_check"
    SEARCH_REQUEST = "search_request"
    SEARCH_PROGRESS = "search_progress"
    SEARCH_RESULT = "search_result"
    SEARCH_ERROR = "search_error"
    RESOURCE_SHARING = "resource_sharing"
    COORDINATION_SYNC = "coordination_sync"


class HealthState(str, Enum):
    """Health classification of an agent or of the whole system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    OFFLINE = "offline"


@dataclass
class AgentMessage:
    """A message sent on the agent bus. Transient, never persisted."""

    id: str
    type: AgentMessageType
    agent_name: str
    session_id: str
    payload: dict[str, Any]
    target_agent: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class HealthMetrics:
    response_time_ms: float = 5000.0
    success_rate: float = 1.0
    error_rate: float = 0.0
    throughput: float = 10.0  # results per second


@dataclass
class AgentCapabilities:
    max_concurrent_requests: int = 5
    supported_formats: list[str] = field(default_factory=lambda: ["text", "json"])
    rate_limit_per_minute: int = 60


@dataclass
class ResourceUsage:
    memory_mb: float = 0.0
    cpu_percent: float = 0.0
    active_connections: int = 0


@dataclass
class RecentError:
    """An execution failure kept in an agent's bounded error list."""

    code: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AgentHealthStatus:
    """Mutable health record for one agent.

    Created on first health update, refreshed on every execution report and
    aged by the heartbeat worker. ``last_heartbeat`` uses the manager's clock.
    """

    agent_name: str
    last_heartbeat: float
    status: HealthState = HealthState.HEALTHY
    metrics: HealthMetrics = field(default_factory=HealthMetrics)
    capabilities: AgentCapabilities = field(default_factory=AgentCapabilities)
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)
    errors: list[RecentError] = field(default_factory=list)


@dataclass(frozen=True)
class SystemHealth:
    """Aggregated health across all known agents."""

    overall_status: HealthState
    agent_count: int
    healthy_agents: int
    degraded_agents: int
    unhealthy_agents: int
    average_response_time: float
    system_load: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_status": self.overall_status.value,
            "agent_count": self.agent_count,
            "healthy_agents": self.healthy_agents,
            "degraded_agents": self.degraded_agents,
            "unhealthy_agents": self.unhealthy_agents,
            "average_response_time": self.average_response_time,
            "system_load": self.system_load,
        }


@dataclass
class AgentResponse:
    """Summary of one agent's contribution to a search session."""

    agent_name: str
    session_id: str
    results: list[Any]
    confidence: float
    processing_time_ms: float
    summary: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
