"""
Base tool interface for agent tools
"""

import contextvars
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Set by the dispatcher for the duration of one tool call
session_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("agent_session_id", default="")
message_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("agent_message_id", default="")


def get_context_values() -> Tuple[str, str]:
    """Return (session_id, message_id) of the tool call being executed"""
    session_id = session_id_var.get()
    if not session_id:
        return "", ""
    return session_id, message_id_var.get()


@dataclass
class ToolInfo:
    """Schema advertised to the model"""
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)

    def json_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": self.parameters,
            "required": list(self.required),
        }


@dataclass
class ToolCallRequest:
    """What a tool receives: the call id, its name and the raw JSON input"""
    id: str
    name: str
    input: str = ""

    def arguments(self) -> Dict[str, Any]:
        """Parse the input as a JSON object; empty input yields {}"""
        if not self.input.strip():
            return {}
        parsed = json.loads(self.input)
        if not isinstance(parsed, dict):
            raise ValueError("tool input must be a JSON object")
        return parsed


@dataclass
class ToolResponse:
    """Result of tool execution"""
    content: str = ""
    metadata: str = ""
    is_error: bool = False
    type: str = "text"


def text_response(content: str) -> ToolResponse:
    return ToolResponse(content=content)


def error_response(content: str) -> ToolResponse:
    return ToolResponse(content=content, is_error=True)


def with_metadata(response: ToolResponse, metadata: Any) -> ToolResponse:
    """Attach JSON encoded metadata; unserializable metadata is ignored"""
    if metadata is None:
        return response
    try:
        response.metadata = json.dumps(metadata)
    except (TypeError, ValueError):
        return response
    return response


@dataclass
class PermissionDetails:
    """What the permission prompt shows for a call"""
    path: str = ""
    action: str = "execute"
    description: str = ""


class BaseTool(ABC):
    """Base class for all agent tools"""

    def __init__(self):
        """Initialize tool with required properties"""
        self.name: str = ""
        self.description: str = ""
        self.parameters: Dict[str, Any] = {}
        self.required: List[str] = []
        self.requires_permission: bool = True

    @abstractmethod
    async def run(self, call: ToolCallRequest) -> ToolResponse:
        """Execute the tool for one call"""
        pass

    def info(self) -> ToolInfo:
        return ToolInfo(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            required=self.required,
        )

    def permission_details(self, call: ToolCallRequest, working_dir: str) -> PermissionDetails:
        """Describe the call for a permission request. Override for richer prompts."""
        return PermissionDetails(
            path=working_dir,
            action="execute",
            description=f"Run {self.name}",
        )

    def to_openai_function(self) -> Dict[str, Any]:
        """Convert tool to OpenAI function calling format"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.info().json_schema(),
            },
        }

    def to_anthropic_tool(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.info().json_schema(),
        }


class FunctionTool(BaseTool):
    """Wraps an async callable taking the parsed arguments as keywords."""

    def __init__(self, name: str, description: str, func, parameters: Optional[Dict[str, Any]] = None,
                 required: Optional[List[str]] = None, requires_permission: bool = True):
        super().__init__()
        self.name = name
        self.description = description
        self.parameters = parameters or {}
        self.required = required or []
        self.requires_permission = requires_permission
        self._func = func

    async def run(self, call: ToolCallRequest) -> ToolResponse:
        try:
            arguments = call.arguments()
        except ValueError as e:
            return error_response(f"invalid parameters: {e}")
        result = await self._func(**arguments)
        if isinstance(result, ToolResponse):
            return result
        return text_response("" if result is None else str(result))
