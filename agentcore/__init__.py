"""
agentcore - execution core for an interactive AI coding assistant

Drives model-call -> tool-call cycles against remote language-model providers,
coordinating per-session concurrency, cancellation, retries and persisted
conversation state.
"""

from .agent.events import AgentEvent, AgentEventType
from .agent.errors import (
    AgentError,
    PermissionDeniedError,
    RequestCancelledError,
    SessionBusyError,
)
from .services.agent_service import AgentService

__version__ = "0.1.0"

__all__ = [
    "AgentEvent",
    "AgentEventType",
    "AgentError",
    "AgentService",
    "PermissionDeniedError",
    "RequestCancelledError",
    "SessionBusyError",
]
