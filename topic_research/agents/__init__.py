"""Agent communication bus and health tracking."""

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
from .communication import AgentCommunicationManager

__all__ = [
    "AgentCapabilities",
    "AgentCommunicationManager",
    "AgentHealthStatus",
    "AgentMessage",
    "AgentMessageType",
    "AgentResponse",
    "HealthMetrics",
    "HealthState",
    "RecentError",
    "ResourceUsage",
    "SystemHealth",
]
