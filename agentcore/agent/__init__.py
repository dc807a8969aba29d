"""
Agent domain model: messages, sessions, events, errors and the collaborator
interfaces the runtime depends on
"""

from .errors import (
    AgentError,
    PermissionDeniedError,
    RequestCancelledError,
    SessionBusyError,
    ToolNotFoundError,
)
from .events import AgentEvent, AgentEventType
from .message import (
    Attachment,
    BinaryContent,
    CreateMessageParams,
    Finish,
    FinishReason,
    Message,
    MessageRole,
    ReasoningContent,
    TextContent,
    ToolCall,
    ToolResult,
)
from .session import Session

__all__ = [
    "AgentError",
    "AgentEvent",
    "AgentEventType",
    "Attachment",
    "BinaryContent",
    "CreateMessageParams",
    "Finish",
    "FinishReason",
    "Message",
    "MessageRole",
    "PermissionDeniedError",
    "ReasoningContent",
    "RequestCancelledError",
    "Session",
    "SessionBusyError",
    "TextContent",
    "ToolCall",
    "ToolNotFoundError",
    "ToolResult",
]
