from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class MessageRole(str, Enum):
    system = "system"
    user = "user"
    assistant = "assistant"
    tool = "tool"


class FinishReason(str, Enum):
    """Normalized terminal status of an assistant turn."""
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    PERMISSION_DENIED = "permission_denied"
    CANCELED = "canceled"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass
class TextContent:
    text: str = ""


@dataclass
class ReasoningContent:
    thinking: str = ""
    signature: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0


@dataclass
class BinaryContent:
    path: str
    mime_type: str
    data: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass
class ToolCall:
    id: str
    name: str
    input: str = ""
    type: str = "function"
    finished: bool = False


@dataclass
class ToolResult:
    tool_call_id: str
    name: str = ""
    content: str = ""
    metadata: str = ""
    is_error: bool = False


@dataclass
class Finish:
    reason: FinishReason
    time: float = field(default_factory=time.time)
    message: str = ""
    details: str = ""


ContentPart = Union[TextContent, ReasoningContent, BinaryContent, ToolCall, ToolResult, Finish]


@dataclass
class Attachment:
    """A file the user attached to a request."""
    file_path: str
    mime_type: str
    content: bytes

    def to_part(self) -> BinaryContent:
        return BinaryContent(path=self.file_path, mime_type=self.mime_type, data=self.content)


@dataclass
class CreateMessageParams:
    role: MessageRole
    parts: List[ContentPart] = field(default_factory=list)
    model: str = ""
    provider: str = ""


@dataclass
class Message:
    """A conversation message made of ordered content parts.

    An in-flight assistant message is owned by the single task streaming it, so
    the mutation helpers below take no locks. Text and reasoning only grow.
    """
    role: MessageRole
    parts: List[ContentPart] = field(default_factory=list)
    id: str = ""
    session_id: str = ""
    model: str = ""
    provider: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    # Accessors

    def content(self) -> Optional[TextContent]:
        for part in self.parts:
            if isinstance(part, TextContent):
                return part
        return None

    def text(self) -> str:
        content = self.content()
        return content.text if content else ""

    def reasoning_content(self) -> Optional[ReasoningContent]:
        for part in self.parts:
            if isinstance(part, ReasoningContent):
                return part
        return None

    def binary_content(self) -> List[BinaryContent]:
        return [p for p in self.parts if isinstance(p, BinaryContent)]

    def tool_calls(self) -> List[ToolCall]:
        return [p for p in self.parts if isinstance(p, ToolCall)]

    def tool_results(self) -> List[ToolResult]:
        return [p for p in self.parts if isinstance(p, ToolResult)]

    def finish_part(self) -> Optional[Finish]:
        for part in self.parts:
            if isinstance(part, Finish):
                return part
        return None

    def finish_reason(self) -> Optional[FinishReason]:
        finish = self.finish_part()
        return finish.reason if finish else None

    def is_finished(self) -> bool:
        return self.finish_part() is not None

    # Mutation helpers

    def append_content(self, delta: str) -> None:
        content = self.content()
        if content is None:
            self.parts.append(TextContent(text=delta))
        else:
            content.text += delta

    def append_reasoning_content(self, delta: str) -> None:
        reasoning = self.reasoning_content()
        if reasoning is None:
            self.parts.append(ReasoningContent(thinking=delta, started_at=time.time()))
        else:
            reasoning.thinking += delta

    def append_reasoning_signature(self, signature: str) -> None:
        reasoning = self.reasoning_content()
        if reasoning is None:
            self.parts.append(ReasoningContent(signature=signature, started_at=time.time()))
        else:
            reasoning.signature += signature

    def finish_thinking(self) -> None:
        reasoning = self.reasoning_content()
        if reasoning is None or reasoning.finished_at:
            return
        reasoning.finished_at = time.time()

    def add_tool_call(self, call: ToolCall) -> None:
        for i, part in enumerate(self.parts):
            if isinstance(part, ToolCall) and part.id == call.id:
                self.parts[i] = call
                return
        self.parts.append(call)

    def append_tool_call_input(self, tool_call_id: str, delta: str) -> None:
        for part in self.parts:
            if isinstance(part, ToolCall) and part.id == tool_call_id:
                part.input += delta
                return

    def finish_tool_call(self, tool_call_id: str) -> None:
        for part in self.parts:
            if isinstance(part, ToolCall) and part.id == tool_call_id and not part.finished:
                part.finished = True
                return

    def set_tool_calls(self, calls: List[ToolCall]) -> None:
        self.parts = [p for p in self.parts if not isinstance(p, ToolCall)]
        self.parts.extend(calls)

    def add_finish(self, reason: FinishReason, message: str = "", details: str = "") -> None:
        self.parts = [p for p in self.parts if not isinstance(p, Finish)]
        self.parts.append(Finish(reason=reason, message=message, details=details))
