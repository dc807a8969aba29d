"""
Collaborator interfaces consumed by the agent runtime

The agent never owns persistence or permission prompts; it talks to these
narrow async interfaces. In-memory implementations are provided for embedding
and for tests.
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .message import CreateMessageParams, Message
from .session import Session

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Persistence for conversation messages."""

    @abstractmethod
    async def list(self, session_id: str) -> List[Message]:
        raise NotImplementedError

    @abstractmethod
    async def create(self, session_id: str, params: CreateMessageParams) -> Message:
        raise NotImplementedError

    @abstractmethod
    async def update(self, message: Message) -> None:
        raise NotImplementedError


class SessionStore(ABC):
    """Persistence for sessions."""

    @abstractmethod
    async def get(self, session_id: str) -> Session:
        raise NotImplementedError

    @abstractmethod
    async def save(self, session: Session) -> Session:
        raise NotImplementedError


@dataclass
class CreatePermissionRequest:
    session_id: str
    tool_call_id: str
    tool_name: str
    description: str
    action: str
    params: str
    path: str


class PermissionService(ABC):
    """Asks the user whether a tool call may proceed."""

    @abstractmethod
    async def request(self, request: CreatePermissionRequest) -> bool:
        raise NotImplementedError


class InMemoryMessageStore(MessageStore):
    """Dict-backed message store.

    Messages are copied on the way in and out so callers never share state
    with the store; writes to distinct messages never interfere.
    """

    def __init__(self, sessions: Optional["InMemorySessionStore"] = None):
        self._messages: Dict[str, List[Message]] = {}
        self._sessions = sessions

    async def list(self, session_id: str) -> List[Message]:
        return [copy.deepcopy(m) for m in self._messages.get(session_id, [])]

    async def create(self, session_id: str, params: CreateMessageParams) -> Message:
        now = time.time()
        message = Message(
            role=params.role,
            parts=copy.deepcopy(params.parts),
            id=str(uuid.uuid4()),
            session_id=session_id,
            model=params.model,
            provider=params.provider,
            created_at=now,
            updated_at=now,
        )
        self._messages.setdefault(session_id, []).append(message)
        if self._sessions is not None:
            self._sessions.increment_message_count(session_id)
        return copy.deepcopy(message)

    async def update(self, message: Message) -> None:
        stored = self._messages.get(message.session_id, [])
        for i, existing in enumerate(stored):
            if existing.id == message.id:
                updated = copy.deepcopy(message)
                updated.updated_at = time.time()
                stored[i] = updated
                return
        raise LookupError(f"message {message.id} not found")

    def get(self, message_id: str) -> Optional[Message]:
        """Synchronous lookup, mostly for assertions."""
        for messages in self._messages.values():
            for message in messages:
                if message.id == message_id:
                    return copy.deepcopy(message)
        return None


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    async def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise LookupError(f"session {session_id} not found")
        return copy.deepcopy(session)

    async def save(self, session: Session) -> Session:
        if session.id not in self._sessions:
            raise LookupError(f"session {session.id} not found")
        stored = copy.deepcopy(session)
        stored.updated_at = time.time()
        self._sessions[session.id] = stored
        return copy.deepcopy(stored)

    async def create(self, title: str, parent_session_id: Optional[str] = None) -> Session:
        session = Session(id=str(uuid.uuid4()), title=title, parent_session_id=parent_session_id)
        self._sessions[session.id] = session
        return copy.deepcopy(session)

    def increment_message_count(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.message_count += 1


class StaticPermissionService(PermissionService):
    """Grants every request except those for denied tools.

    Every request is recorded in `requests` in arrival order.
    """

    def __init__(self, denied_tools: Optional[Set[str]] = None, allow: bool = True):
        self.denied_tools = set(denied_tools or ())
        self.allow = allow
        self.requests: List[CreatePermissionRequest] = []

    async def request(self, request: CreatePermissionRequest) -> bool:
        self.requests.append(request)
        granted = self.allow and request.tool_name not in self.denied_tools
        if not granted:
            logger.info(f"Permission denied for tool {request.tool_name} ({request.tool_call_id})")
        return granted
