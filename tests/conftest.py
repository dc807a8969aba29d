"""
Global pytest configuration and fixtures for agentcore tests
"""

import asyncio
from typing import Any, List, Optional

import pytest
import pytest_asyncio

from agentcore.agent.core.llm.base import (
    BaseProvider,
    EventType,
    ProviderEvent,
    ProviderOptions,
    ProviderResponse,
    TokenUsage,
)
from agentcore.agent.message import FinishReason, ToolCall
from agentcore.agent.prompts import SUMMARIZER_PROMPT, TITLE_PROMPT
from agentcore.agent.services import InMemoryMessageStore, InMemorySessionStore, StaticPermissionService
from agentcore.agent.tools.base_tool import BaseTool, ToolCallRequest, ToolResponse, text_response
from agentcore.agent.tools.tool_registry import ToolRegistry
from agentcore.config import AgentModel, AgentSettings, CatalogModel, ProviderConfig
from agentcore.services.agent_service import AgentService

# Placed inside a scripted turn: the stream blocks there until cancelled
PAUSE = object()


def catalog_model(**overrides) -> CatalogModel:
    values = dict(
        id="test-model",
        name="Test Model",
        cost_per_1m_in=3.0,
        cost_per_1m_out=15.0,
        cost_per_1m_in_cached=3.75,
        cost_per_1m_out_cached=0.3,
        context_window=200000,
        default_max_tokens=4096,
    )
    values.update(overrides)
    return CatalogModel(**values)


def provider_config(**overrides) -> ProviderConfig:
    values = dict(id="test", name="Test", api_key="test-key", models=[catalog_model()])
    values.update(overrides)
    return ProviderConfig(**values)


def text_turn(text: str, usage: Optional[TokenUsage] = None,
              finish: FinishReason = FinishReason.END_TURN) -> List[Any]:
    events: List[Any] = [ProviderEvent(type=EventType.CONTENT_START)]
    if text:
        events.append(ProviderEvent(type=EventType.CONTENT_DELTA, content=text))
    events.append(ProviderEvent(type=EventType.CONTENT_STOP))
    events.append(ProviderEvent(
        type=EventType.COMPLETE,
        response=ProviderResponse(content=text, usage=usage or TokenUsage(), finish_reason=finish),
    ))
    return events


def tool_turn(*calls: ToolCall, usage: Optional[TokenUsage] = None) -> List[Any]:
    events: List[Any] = []
    finished = []
    for call in calls:
        events.append(ProviderEvent(type=EventType.TOOL_USE_START, tool_call=ToolCall(id=call.id, name=call.name)))
        events.append(ProviderEvent(
            type=EventType.TOOL_USE_DELTA,
            tool_call=ToolCall(id=call.id, name=call.name, input=call.input),
        ))
        events.append(ProviderEvent(type=EventType.TOOL_USE_STOP, tool_call=ToolCall(id=call.id, name=call.name)))
        finished.append(ToolCall(id=call.id, name=call.name, input=call.input, finished=True))
    events.append(ProviderEvent(
        type=EventType.COMPLETE,
        response=ProviderResponse(tool_calls=finished, usage=usage or TokenUsage(),
                                  finish_reason=FinishReason.TOOL_USE),
    ))
    return events


class ScriptedProvider(BaseProvider):
    """Provider double that replays scripted turns.

    Each turn is a list of ProviderEvents (optionally containing PAUSE) or an
    exception to raise from the attempt.
    """

    name = "scripted"

    def __init__(self, config: ProviderConfig, options: Optional[ProviderOptions] = None, turns=None):
        self.turns = list(turns or [])
        self.requests = []
        self.paused = asyncio.Event()
        self.open_streams = 0
        super().__init__(config, options)

    def _create_client(self):
        return None

    def _next_turn(self, model_id, messages, tools):
        self.requests.append((model_id, list(messages), list(tools)))
        if not self.turns:
            return text_turn("done")
        return self.turns.pop(0)

    async def _send_once(self, model_id, messages, tools):
        turn = self._next_turn(model_id, messages, tools)
        if isinstance(turn, BaseException):
            raise turn
        for event in turn:
            if event is not PAUSE and event.type == EventType.COMPLETE:
                return event.response
        return ProviderResponse()

    async def _stream_once(self, model_id, messages, tools):
        turn = self._next_turn(model_id, messages, tools)
        if isinstance(turn, BaseException):
            raise turn
        self.open_streams += 1
        try:
            for event in turn:
                if event is PAUSE:
                    self.paused.set()
                    await asyncio.Event().wait()
                else:
                    yield event
        finally:
            self.open_streams -= 1


class ProviderSet:
    """Factory handing out scripted providers by role."""

    def __init__(self):
        self.main: Optional[ScriptedProvider] = None
        self.title: Optional[ScriptedProvider] = None
        self.summarize: Optional[ScriptedProvider] = None
        self.built = []

    def factory(self, config: ProviderConfig, options: ProviderOptions) -> ScriptedProvider:
        provider = ScriptedProvider(config, options)
        self.built.append(provider)
        if options.system_message == TITLE_PROMPT:
            provider.turns = [text_turn("Fix the\nbug  ")]
            self.title = provider
        elif options.system_message == SUMMARIZER_PROMPT:
            self.summarize = provider
        else:
            self.main = provider
        return provider


class RecordingTool(BaseTool):
    """Tool double recording every call; optionally blocks until cancelled."""

    def __init__(self, name: str, output: str = "ok", block: bool = False, error: Optional[Exception] = None,
                 requires_permission: bool = True):
        super().__init__()
        self.name = name
        self.description = f"{name} test tool"
        self.parameters = {"value": {"type": "string"}}
        self.output = output
        self.block = block
        self.error = error
        self.requires_permission = requires_permission
        self.calls: List[ToolCallRequest] = []
        self.started = asyncio.Event()
        self.cancelled = False
        self.context = None

    async def run(self, call: ToolCallRequest) -> ToolResponse:
        from agentcore.agent.tools.base_tool import get_context_values

        self.calls.append(call)
        self.context = get_context_values()
        self.started.set()
        if self.error is not None:
            raise self.error
        if self.block:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return text_response(self.output)


async def wait_for(predicate, timeout: float = 2.0):
    """Poll until predicate() is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def messages(sessions):
    return InMemoryMessageStore(sessions)


@pytest.fixture
def permissions():
    return StaticPermissionService()


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def provider_set():
    return ProviderSet()


@pytest_asyncio.fixture
async def session(sessions):
    return await sessions.create("")


@pytest_asyncio.fixture
async def agent(provider_set, messages, sessions, registry, permissions, tmp_path):
    service = AgentService(
        providers={"test": provider_config()},
        large=AgentModel(model="test-model", provider="test"),
        small=AgentModel(model="test-model", provider="test"),
        messages=messages,
        sessions=sessions,
        tools=registry,
        permissions=permissions,
        system_prompt="You are a test agent.",
        settings=AgentSettings(working_dir=str(tmp_path), cancel_all_timeout=2.0, cancel_all_poll_interval=0.01),
        provider_factory=provider_set.factory,
    )
    yield service
    await service.shutdown()
