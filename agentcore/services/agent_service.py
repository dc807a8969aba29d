"""
Agent Service for agentcore
Request coordinator: admits at most one request per session, runs it as a
task, supports cancellation and publishes the outcome to subscribers.
"""

import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional, Set

from ..agent.core.llm.base import BaseProvider, ProviderNotConfigured, ProviderOptions
from ..agent.core.llm.factory import new_provider
from ..agent.core.runtime.accountant import UsageAccountant
from ..agent.core.runtime.dispatcher import ToolDispatcher
from ..agent.core.runtime.models import ModelBinding
from ..agent.core.runtime.summarizer import Summarizer
from ..agent.core.runtime.turn_loop import TurnLoop
from ..agent.errors import AgentError, RequestCancelledError, SessionBusyError
from ..agent.events import AgentEvent
from ..agent.message import Attachment
from ..agent.prompts import SUMMARIZER_PROMPT, TITLE_MAX_TOKENS, TITLE_PROMPT
from ..agent.services import MessageStore, PermissionService, SessionStore
from ..agent.tools.tool_registry import ToolRegistry
from ..config import AgentModel, AgentSettings, CatalogModel, ProviderConfig
from ..core.message_broker import EventBroker, EventChannel, EventKind
from ..core.resolver import CredentialResolver

logger = logging.getLogger(__name__)

SUMMARIZE_SUFFIX = "-summarize"

ProviderFactory = Callable[[ProviderConfig, ProviderOptions], BaseProvider]


def summarize_key(session_id: str) -> str:
    return session_id + SUMMARIZE_SUFFIX


class AgentService:
    """
    Coordinates agent requests across sessions.

    Active requests are kept in a registry keyed by session id (and by
    `<session id>-summarize` for summarization). An entry is added before its
    task can start and removed only when that task has finished, so a session
    stays busy until its request has fully wound down.
    """

    def __init__(
        self,
        providers: Dict[str, ProviderConfig],
        large: AgentModel,
        small: AgentModel,
        messages: MessageStore,
        sessions: SessionStore,
        tools: ToolRegistry,
        permissions: PermissionService,
        system_prompt: str = "",
        settings: Optional[AgentSettings] = None,
        resolver: Optional[CredentialResolver] = None,
        provider_factory: ProviderFactory = new_provider,
    ):
        self.providers = dict(providers)
        self.large = large
        self.small = small
        self.messages = messages
        self.sessions = sessions
        self.tools = tools
        self.permissions = permissions
        self.system_prompt = system_prompt
        self.settings = settings or AgentSettings()
        self.resolver = resolver
        self.provider_factory = provider_factory
        self.debug = self.settings.debug

        self.broker: EventBroker[AgentEvent] = EventBroker(queue_size=self.settings.event_queue_size)
        self.accountant = UsageAccountant(sessions)
        self.dispatcher = ToolDispatcher(messages, tools, permissions, working_dir=self.settings.working_dir)

        self._active: Dict[str, asyncio.Task] = {}
        self._cancel_requested: Set[str] = set()
        self._lock = threading.Lock()
        self._background_tasks: Set[asyncio.Task] = set()

        self._provider: Optional[ModelBinding] = None
        self._title: Optional[ModelBinding] = None
        self._summarize: Optional[ModelBinding] = None
        self._set_providers(large, small)

    # Provider setup

    def _build(self, selection: AgentModel, options: ProviderOptions) -> ModelBinding:
        config = self.providers.get(selection.provider)
        if config is None:
            raise ProviderNotConfigured(f"provider {selection.provider} not found in config")
        options.debug = self.debug
        options.resolver = self.resolver
        return ModelBinding(provider=self.provider_factory(config, options), selection=selection)

    def _set_providers(self, large: AgentModel, small: AgentModel) -> None:
        provider = self._build(large, ProviderOptions(
            system_message=self.system_prompt,
            think=large.think,
            max_tokens=large.max_tokens,
            reasoning_effort=large.reasoning_effort,
        ))
        title = self._build(small, ProviderOptions(
            system_message=TITLE_PROMPT,
            max_tokens=TITLE_MAX_TOKENS,
        ))
        summarize = self._build(large, ProviderOptions(system_message=SUMMARIZER_PROMPT))

        self.large, self.small = large, small
        self._provider, self._title, self._summarize = provider, title, summarize
        logger.info(f"Agent using {large.provider}/{large.model} (small model {small.provider}/{small.model})")

    def update_models(self, large: AgentModel, small: AgentModel) -> None:
        """Switch models; requests already running keep their providers."""
        self._set_providers(large, small)

    def set_debug(self, debug: bool) -> None:
        self.debug = debug
        for binding in (self._provider, self._title, self._summarize):
            if binding is not None:
                binding.provider.set_debug(debug)

    def model(self) -> Optional[CatalogModel]:
        return self._provider.catalog_model() if self._provider else None

    def model_config(self) -> AgentModel:
        return self.large

    def provider_config(self) -> Optional[ProviderConfig]:
        return self.providers.get(self.large.provider)

    # Registry

    def is_busy(self) -> bool:
        with self._lock:
            return bool(self._active)

    def is_session_busy(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    def _register(self, key: str, conflicts: List[str], factory: Callable[[], asyncio.Task]) -> asyncio.Task:
        with self._lock:
            if any(k in self._active for k in conflicts):
                raise SessionBusyError()
            task = factory()
            self._active[key] = task
        return task

    def _release(self, key: str, task: asyncio.Task) -> None:
        with self._lock:
            if self._active.get(key) is task:
                del self._active[key]
                self._cancel_requested.discard(key)

    def _cancel_key(self, key: str) -> bool:
        with self._lock:
            task = self._active.get(key)
            if task is None or key in self._cancel_requested:
                return False
            self._cancel_requested.add(key)
        task.cancel()
        return True

    # Run

    def _new_turn_loop(self) -> TurnLoop:
        return TurnLoop(
            messages=self.messages,
            sessions=self.sessions,
            tools=self.tools,
            dispatcher=self.dispatcher,
            accountant=self.accountant,
            large=self._provider,
            title=self._title,
            background_tasks=self._background_tasks,
            debug=self.debug,
        )

    async def run(self, session_id: str, content: str,
                  attachments: Optional[List[Attachment]] = None) -> EventChannel[AgentEvent]:
        """Start processing `content` for the session.

        Returns a channel that yields exactly one terminal event and is then
        closed. Raises SessionBusyError if the session already has an active
        request; a summarization in progress does not block it.
        """
        model = self.model()
        if attachments and (model is None or not model.supports_images):
            logger.info(f"Model {self.large.model} does not support images, dropping {len(attachments)} attachments")
            attachments = None
        parts = [attachment.to_part() for attachment in attachments or []]

        loop = self._new_turn_loop()
        channel: EventChannel[AgentEvent] = EventChannel()
        task = self._register(
            session_id,
            [session_id],
            lambda: asyncio.create_task(loop.run(session_id, content, parts), name=f"agent-run-{session_id}"),
        )
        task.add_done_callback(lambda t: self._finish_run(session_id, t, channel))
        logger.info(f"Request started for session {session_id}")
        return channel

    def _finish_run(self, session_id: str, task: asyncio.Task, channel: EventChannel[AgentEvent]) -> None:
        self._release(session_id, task)

        if task.cancelled():
            logger.info(f"Request canceled for session {session_id}")
            event = AgentEvent.from_error(RequestCancelledError(), session_id=session_id)
        elif task.exception() is not None:
            error = task.exception()
            if not isinstance(error, AgentError):
                wrapped = AgentError(f"unexpected error while running the agent: {error}")
                wrapped.__cause__ = error
                error = wrapped
            logger.error(f"Request failed for session {session_id}: {error}", exc_info=task.exception())
            event = AgentEvent.from_error(error, session_id=session_id)
        else:
            event = task.result()
            logger.info(f"Request completed for session {session_id}")

        self.broker.publish(EventKind.CREATED, event)
        channel.send(event)
        channel.close()

    # Cancellation

    def cancel(self, session_id: str) -> None:
        """Cancel the session's request and its summarization, if any."""
        if self._cancel_key(session_id):
            logger.info(f"Request cancellation initiated for session {session_id}")
        if self._cancel_key(summarize_key(session_id)):
            logger.info(f"Summarize cancellation initiated for session {session_id}")

    async def cancel_all(self) -> None:
        """Cancel everything and wait, bounded by the configured timeout, for it to stop."""
        if not self.is_busy():
            return
        with self._lock:
            keys = list(self._active)
        for key in keys:
            self._cancel_key(key)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.cancel_all_timeout
        while self.is_busy():
            if loop.time() >= deadline:
                logger.warning("Timed out waiting for active requests to cancel")
                return
            await asyncio.sleep(self.settings.cancel_all_poll_interval)

    # Summarize

    async def summarize(self, session_id: str) -> None:
        """Start summarizing the session; progress is published on the broker."""
        if self._summarize is None:
            raise ProviderNotConfigured("summarize provider not available")
        key = summarize_key(session_id)
        summarizer = Summarizer(
            messages=self.messages,
            sessions=self.sessions,
            binding=self._summarize,
            publish=self._publish,
            working_dir=self.settings.working_dir,
        )
        task = self._register(
            key,
            [session_id, key],
            lambda: asyncio.create_task(summarizer.summarize(session_id), name=f"agent-summarize-{session_id}"),
        )
        task.add_done_callback(lambda t: self._finish_summarize(session_id, key, t))
        logger.info(f"Summarize started for session {session_id}")

    def _finish_summarize(self, session_id: str, key: str, task: asyncio.Task) -> None:
        self._release(key, task)
        if task.cancelled():
            logger.info(f"Summarize canceled for session {session_id}")
            self._publish(AgentEvent.from_error(RequestCancelledError(), session_id=session_id))
        elif task.exception() is not None:
            error = task.exception()
            logger.error(f"Summarize failed for session {session_id}: {error}", exc_info=error)
            if not isinstance(error, AgentError):
                wrapped = AgentError(f"failed to summarize: {error}")
                wrapped.__cause__ = error
                error = wrapped
            self._publish(AgentEvent.from_error(error, session_id=session_id))

    # Events

    def _publish(self, event: AgentEvent) -> None:
        self.broker.publish(EventKind.CREATED, event)

    def subscribe(self) -> EventChannel:
        return self.broker.subscribe()

    def unsubscribe(self, channel: EventChannel) -> bool:
        return self.broker.unsubscribe(channel)

    async def shutdown(self) -> None:
        """Cancel all work, including background title generation, and close subscriptions."""
        await self.cancel_all()
        background = list(self._background_tasks)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        self.broker.shutdown()
        logger.info("Agent service shut down")
