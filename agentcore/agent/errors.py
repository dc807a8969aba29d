"""
Agent-level error taxonomy
"""


class AgentError(Exception):
    """Base class for errors raised by the agent runtime."""


class SessionBusyError(AgentError):
    """Raised when a session already has an active request."""

    def __init__(self, message: str = "session is currently processing another request"):
        super().__init__(message)


class RequestCancelledError(AgentError):
    """Terminal result of a request canceled by the user.

    Kept distinct from asyncio.CancelledError so callers can render it softly.
    """

    def __init__(self, message: str = "request canceled by user"):
        super().__init__(message)


class PermissionDeniedError(AgentError):
    """Raised when the user denies a tool permission request."""

    def __init__(self, message: str = "permission denied"):
        super().__init__(message)


class ToolNotFoundError(AgentError):
    """A tool call referenced a tool missing from the registry."""

    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name
