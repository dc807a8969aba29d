"""
Tool interfaces used by the agent runtime
"""

from .base_tool import (
    BaseTool,
    FunctionTool,
    PermissionDetails,
    ToolCallRequest,
    ToolInfo,
    ToolResponse,
    error_response,
    get_context_values,
    text_response,
    with_metadata,
)
from .tool_registry import ToolRegistry

__all__ = [
    "BaseTool",
    "FunctionTool",
    "PermissionDetails",
    "ToolCallRequest",
    "ToolInfo",
    "ToolResponse",
    "ToolRegistry",
    "error_response",
    "get_context_values",
    "text_response",
    "with_metadata",
]
