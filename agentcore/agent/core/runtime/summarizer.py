from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Callable, Optional

from ...errors import AgentError
from ...events import AgentEvent, AgentEventType
from ...message import CreateMessageParams, Finish, FinishReason, Message, MessageRole, TextContent
from ...prompts import SUMMARIZE_INSTRUCTION, WORKING_DIRECTORY_NOTE
from ...services import MessageStore, SessionStore
from ..llm.base import EventType, ProviderResponse
from .accountant import compute_cost
from .models import ModelBinding

logger = logging.getLogger(__name__)

STARTING = "Starting summarization..."
ANALYZING = "Analyzing conversation..."
GENERATING = "Generating summary..."
CREATING_SESSION = "Creating new session..."
COMPLETE = "Summary complete"


class Summarizer:
    """Collapses a session's history into one assistant message.

    Every stage publishes a SUMMARIZE progress event. The flow ends with either
    a SUMMARIZE event with `done` set or an ERROR event with `done` set; a
    failed stage stops the flow.
    """

    def __init__(
        self,
        messages: MessageStore,
        sessions: SessionStore,
        binding: ModelBinding,
        publish: Callable[[AgentEvent], None],
        working_dir: str = "",
    ):
        self.messages = messages
        self.sessions = sessions
        self.binding = binding
        self.publish = publish
        self.working_dir = working_dir

    def _progress(self, session_id: str, progress: str, done: bool = False) -> None:
        self.publish(AgentEvent(
            type=AgentEventType.SUMMARIZE,
            session_id=session_id,
            progress=progress,
            done=done,
        ))

    def _fail(self, session_id: str, error: BaseException) -> None:
        logger.error(f"Summarize failed for {session_id}: {error}")
        self.publish(AgentEvent.from_error(error, session_id=session_id, done=True))

    async def summarize(self, session_id: str) -> None:
        self._progress(session_id, STARTING)

        try:
            history = await self.messages.list(session_id)
        except Exception as e:
            self._fail(session_id, AgentError(f"failed to list messages: {e}"))
            return
        if not history:
            self._fail(session_id, AgentError("no messages to summarize"))
            return

        self._progress(session_id, ANALYZING)
        history.append(Message(role=MessageRole.user, parts=[TextContent(text=SUMMARIZE_INSTRUCTION)]))

        self._progress(session_id, GENERATING)
        response: Optional[ProviderResponse] = None
        stream = self.binding.provider.stream(self.binding.model_id, history, [])
        async with aclosing(stream):
            async for event in stream:
                if event.type == EventType.ERROR:
                    self._fail(session_id, AgentError(f"failed to summarize: {event.error}"))
                    return
                if event.type == EventType.COMPLETE:
                    response = event.response

        summary = response.content.strip() if response is not None else ""
        if not summary:
            self._fail(session_id, AgentError("empty summary returned"))
            return
        if self.working_dir:
            summary += WORKING_DIRECTORY_NOTE.format(working_dir=self.working_dir)

        self._progress(session_id, CREATING_SESSION)
        try:
            session = await self.sessions.get(session_id)
        except Exception as e:
            self._fail(session_id, AgentError(f"failed to get session: {e}"))
            return

        try:
            summary_message = await self.messages.create(session.id, CreateMessageParams(
                role=MessageRole.assistant,
                parts=[TextContent(text=summary), Finish(reason=FinishReason.END_TURN)],
                model=self.binding.model_id,
                provider=self.binding.provider_id,
            ))
        except Exception as e:
            self._fail(session_id, AgentError(f"failed to create summary message: {e}"))
            return

        session.summary_message_id = summary_message.id
        session.completion_tokens = response.usage.output_tokens
        session.prompt_tokens = 0
        model = self.binding.catalog_model()
        if model is not None:
            session.cost += compute_cost(model, response.usage)

        try:
            await self.sessions.save(session)
        except Exception as e:
            self._fail(session_id, AgentError(f"failed to save session: {e}"))
            return

        logger.info(f"Session {session_id} summarized into message {summary_message.id}")
        self._progress(session.id, COMPLETE, done=True)
