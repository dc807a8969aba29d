"""
Turn loop: drives model call -> tool calls -> model call until the turn ends
"""

from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import aclosing
from typing import List, Optional, Set, Tuple

from ...errors import AgentError
from ...events import AgentEvent, AgentEventType
from ...message import (
    BinaryContent,
    CreateMessageParams,
    FinishReason,
    Message,
    MessageRole,
    TextContent,
)
from ...prompts import title_request
from ...services import MessageStore, SessionStore
from ...tools.tool_registry import ToolRegistry
from ..llm.base import EventType, ProviderEvent
from .accountant import UsageAccountant
from .dispatcher import REQUEST_CANCELLED, ToolDispatcher
from .models import ModelBinding

logger = logging.getLogger(__name__)

API_ERROR = "API Error"


class TurnLoop:
    """State machine for one user request.

    The loop owns the in-progress assistant message: every provider event is
    applied to it and persisted before the next event is read.
    """

    def __init__(
        self,
        messages: MessageStore,
        sessions: SessionStore,
        tools: ToolRegistry,
        dispatcher: ToolDispatcher,
        accountant: UsageAccountant,
        large: ModelBinding,
        title: Optional[ModelBinding] = None,
        background_tasks: Optional[Set[asyncio.Task]] = None,
        debug: bool = False,
    ):
        self.messages = messages
        self.sessions = sessions
        self.tools = tools
        self.dispatcher = dispatcher
        self.accountant = accountant
        self.large = large
        self.title = title
        self.background_tasks = background_tasks if background_tasks is not None else set()
        self.debug = debug

    async def run(self, session_id: str, content: str,
                  attachments: Optional[List[BinaryContent]] = None) -> AgentEvent:
        """Process one request and return its terminal event.

        Store and provider failures raise AgentError; cancellation propagates
        as asyncio.CancelledError once the assistant message is finished.
        """
        try:
            history = await self.messages.list(session_id)
        except Exception as e:
            raise AgentError(f"failed to list messages: {e}") from e

        if not history:
            self._spawn_title_generation(session_id, content)

        try:
            session = await self.sessions.get(session_id)
        except Exception as e:
            raise AgentError(f"failed to get session: {e}") from e

        if session.summary_message_id:
            for index, msg in enumerate(history):
                if msg.id == session.summary_message_id:
                    history = history[index:]
                    history[0].role = MessageRole.user
                    break

        user_message = await self._create_user_message(session_id, content, attachments or [])
        history.append(user_message)

        while True:
            assistant, tool_message = await self._stream_and_handle_events(session_id, history)
            if self.debug:
                logger.info(f"Turn result for {session_id}: finish={assistant.finish_reason()} "
                            f"tool_results={len(tool_message.tool_results()) if tool_message else 0}")
            if assistant.finish_reason() == FinishReason.TOOL_USE and tool_message is not None:
                history.extend([assistant, tool_message])
                continue
            return AgentEvent(
                type=AgentEventType.RESPONSE,
                message=assistant,
                session_id=session_id,
                done=True,
            )

    async def _create_user_message(self, session_id: str, content: str,
                                   attachments: List[BinaryContent]) -> Message:
        parts = [TextContent(text=content)] + list(attachments)
        try:
            return await self.messages.create(session_id, CreateMessageParams(role=MessageRole.user, parts=parts))
        except Exception as e:
            raise AgentError(f"failed to create user message: {e}") from e

    async def _stream_and_handle_events(self, session_id: str,
                                        history: List[Message]) -> Tuple[Message, Optional[Message]]:
        try:
            assistant = await self.messages.create(session_id, CreateMessageParams(
                role=MessageRole.assistant,
                model=self.large.model_id,
                provider=self.large.provider_id,
            ))
        except Exception as e:
            raise AgentError(f"failed to create assistant message: {e}") from e

        stream = self.large.provider.stream(self.large.model_id, history, self.tools.get_all_tools())
        try:
            async with aclosing(stream):
                async for event in stream:
                    await self._process_event(session_id, assistant, event)
        except asyncio.CancelledError:
            assistant.add_finish(FinishReason.CANCELED, REQUEST_CANCELLED)
            await self._persist_detached(assistant)
            raise
        except Exception as e:
            assistant.add_finish(FinishReason.ERROR, API_ERROR, str(e))
            await self._persist_detached(assistant)
            raise AgentError(f"failed to process events: {e}") from e

        tool_message = None
        if assistant.tool_calls():
            tool_message = await self.dispatcher.dispatch(
                session_id, assistant, self.large.model_id, self.large.provider_id,
            )
        return assistant, tool_message

    async def _process_event(self, session_id: str, assistant: Message, event: ProviderEvent) -> None:
        if event.type == EventType.THINKING_DELTA:
            assistant.append_reasoning_content(event.thinking)
        elif event.type == EventType.SIGNATURE_DELTA:
            assistant.append_reasoning_signature(event.signature)
        elif event.type == EventType.CONTENT_DELTA:
            assistant.finish_thinking()
            assistant.append_content(event.content)
        elif event.type == EventType.TOOL_USE_START:
            assistant.finish_thinking()
            logger.info(f"Tool call started: {event.tool_call.name} ({event.tool_call.id})")
            assistant.add_tool_call(copy.copy(event.tool_call))
        elif event.type == EventType.TOOL_USE_DELTA:
            assistant.append_tool_call_input(event.tool_call.id, event.tool_call.input)
        elif event.type == EventType.TOOL_USE_STOP:
            logger.info(f"Finished tool call: {event.tool_call.name} ({event.tool_call.id})")
            assistant.finish_tool_call(event.tool_call.id)
        elif event.type == EventType.ERROR:
            raise event.error
        elif event.type == EventType.COMPLETE:
            await self._complete(session_id, assistant, event)
            return
        else:
            return
        await self._update(assistant)

    async def _complete(self, session_id: str, assistant: Message, event: ProviderEvent) -> None:
        response = event.response
        assistant.finish_thinking()
        assistant.set_tool_calls([copy.copy(call) for call in response.tool_calls])
        assistant.add_finish(response.finish_reason)
        await self._update(assistant)

        model = self.large.catalog_model()
        if model is None:
            return
        await self.accountant.track_usage(session_id, model, response.usage)

    async def _update(self, message: Message) -> None:
        try:
            await self.messages.update(message)
        except Exception as e:
            raise AgentError(f"failed to update message: {e}") from e

    async def _persist_detached(self, message: Message) -> None:
        try:
            await asyncio.shield(self.messages.update(copy.deepcopy(message)))
        except Exception as e:
            logger.error(f"Failed to persist finished message {message.id}: {e}")

    # Title generation

    def _spawn_title_generation(self, session_id: str, content: str) -> None:
        if self.title is None or not content:
            return
        task = asyncio.create_task(self._generate_title_safely(session_id, content),
                                   name=f"title-{session_id}")
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    async def _generate_title_safely(self, session_id: str, content: str) -> None:
        try:
            await self.generate_title(session_id, content)
        except asyncio.CancelledError:
            logger.debug(f"Title generation for {session_id} canceled")
            raise
        except Exception as e:
            logger.error(f"Failed to generate title for {session_id}: {e}")

    async def generate_title(self, session_id: str, content: str) -> None:
        """Ask the small model for a title and store it on the session."""
        if self.title is None or not content:
            return
        prompt = Message(role=MessageRole.user, parts=[TextContent(text=title_request(content))])

        response = None
        stream = self.title.provider.stream(self.title.model_id, [prompt], [])
        async with aclosing(stream):
            async for event in stream:
                if event.type == EventType.ERROR:
                    raise event.error
                if event.type == EventType.COMPLETE:
                    response = event.response
        if response is None:
            raise AgentError("no response received from title provider")

        title = response.content.replace("\n", " ").strip()
        if not title:
            return

        session = await self.sessions.get(session_id)
        session.title = title
        await self.sessions.save(session)
        logger.info(f"Session {session_id} titled: {title}")
