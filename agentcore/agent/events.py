from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .message import Message


class AgentEventType(str, Enum):
    ERROR = "error"
    RESPONSE = "response"
    SUMMARIZE = "summarize"


@dataclass
class AgentEvent:
    """Progress or terminal notification emitted by the agent.

    Run produces exactly one terminal event per request: a RESPONSE carrying
    the final assistant message or an ERROR. Summarize emits SUMMARIZE progress
    events and ends with one event where `done` is set.
    """
    type: AgentEventType
    message: Optional[Message] = None
    error: Optional[BaseException] = None
    session_id: str = ""
    progress: str = ""
    done: bool = False

    @classmethod
    def from_error(cls, error: BaseException, session_id: str = "", done: bool = True) -> "AgentEvent":
        return cls(type=AgentEventType.ERROR, error=error, session_id=session_id, done=done)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'message_id': self.message.id if self.message else None,
            'error': str(self.error) if self.error else None,
            'session_id': self.session_id,
            'progress': self.progress,
            'done': self.done,
        }
