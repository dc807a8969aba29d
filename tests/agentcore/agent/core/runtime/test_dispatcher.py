"""
Tests for sequential tool dispatch, permission handling and cancellation
"""

import asyncio

import pytest

from agentcore.agent.core.runtime.dispatcher import (
    PERMISSION_DENIED,
    PERMISSION_ERROR,
    REQUEST_CANCELLED,
    TOOL_CANCELED,
    TOOL_MESSAGE_ERROR,
    ToolDispatcher,
)
from agentcore.agent.errors import AgentError, PermissionDeniedError
from agentcore.agent.message import CreateMessageParams, FinishReason, MessageRole, TextContent, ToolCall
from agentcore.agent.services import InMemoryMessageStore, PermissionService, StaticPermissionService
from conftest import RecordingTool, wait_for


async def assistant_with_calls(messages, session_id, *names):
    calls = [ToolCall(id=f"call_{name}", name=name, input='{"value": "x"}', finished=True) for name in names]
    return await messages.create(session_id, CreateMessageParams(
        role=MessageRole.assistant, parts=calls, model="test-model", provider="test",
    ))


class FailingPermissionService(PermissionService):
    async def request(self, request):
        raise RuntimeError("prompt backend down")


class NoToolMessageStore(InMemoryMessageStore):
    async def create(self, session_id, params):
        if params.role == MessageRole.tool:
            raise OSError("disk full")
        return await super().create(session_id, params)


@pytest.fixture
def dispatcher(messages, registry, permissions):
    return ToolDispatcher(messages, registry, permissions, working_dir="/work")


class TestToolDispatcher:
    """Test dispatch outcomes"""

    @pytest.mark.asyncio
    async def test_runs_calls_in_order(self, dispatcher, messages, registry, permissions, session):
        """Each call gets one result, in issue order, with the call context set"""
        first = RecordingTool("first", output="one")
        second = RecordingTool("second", output="two")
        registry.register(first)
        registry.register(second)
        assistant = await assistant_with_calls(messages, session.id, "first", "second")

        tool_message = await dispatcher.dispatch(session.id, assistant, "test-model", "test")

        assert tool_message.role == MessageRole.tool
        assert tool_message.model == "test-model"
        assert [(r.tool_call_id, r.content, r.is_error) for r in tool_message.tool_results()] == [
            ("call_first", "one", False),
            ("call_second", "two", False),
        ]
        assert first.context == (session.id, assistant.id)
        assert first.calls[0].input == '{"value": "x"}'
        assert [r.tool_name for r in permissions.requests] == ["first", "second"]
        assert permissions.requests[0].path == "/work"
        assert permissions.requests[0].params == '{"value": "x"}'
        assert messages.get(tool_message.id) is not None

    @pytest.mark.asyncio
    async def test_no_tool_calls(self, dispatcher, messages, session):
        assistant = await messages.create(session.id, CreateMessageParams(
            role=MessageRole.assistant, parts=[TextContent(text="hi")],
        ))

        assert await dispatcher.dispatch(session.id, assistant) is None

    @pytest.mark.asyncio
    async def test_missing_tool_is_an_error_result(self, dispatcher, messages, registry, session):
        after = RecordingTool("after")
        registry.register(after)
        assistant = await assistant_with_calls(messages, session.id, "missing", "after")

        tool_message = await dispatcher.dispatch(session.id, assistant)

        missing, ok = tool_message.tool_results()
        assert missing.content == "Tool not found: missing"
        assert missing.is_error
        assert ok.content == "ok"
        assert len(after.calls) == 1

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_error_result(self, dispatcher, messages, registry, session):
        registry.register(RecordingTool("broken", error=RuntimeError("boom")))
        registry.register(RecordingTool("after"))
        assistant = await assistant_with_calls(messages, session.id, "broken", "after")

        tool_message = await dispatcher.dispatch(session.id, assistant)

        broken, after = tool_message.tool_results()
        assert broken.content == "Tool execution error: boom"
        assert broken.is_error
        assert after.content == "ok"

    @pytest.mark.asyncio
    async def test_permission_denial_stops_dispatch(self, messages, registry, session):
        """Denied and later calls are recorded; the assistant turn ends"""
        permissions = StaticPermissionService(denied_tools={"b"})
        dispatcher = ToolDispatcher(messages, registry, permissions)
        tools = {name: RecordingTool(name) for name in ("a", "b", "c")}
        for tool in tools.values():
            registry.register(tool)
        assistant = await assistant_with_calls(messages, session.id, "a", "b", "c")

        tool_message = await dispatcher.dispatch(session.id, assistant)

        a, b, c = tool_message.tool_results()
        assert (a.content, a.is_error) == ("ok", False)
        assert (b.content, b.is_error) == (PERMISSION_DENIED, True)
        assert (c.content, c.is_error) == (TOOL_CANCELED, True)
        assert tools["b"].calls == []
        assert tools["c"].calls == []
        assert assistant.finish_reason() == FinishReason.PERMISSION_DENIED
        assert messages.get(assistant.id).finish_reason() == FinishReason.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_permission_denied_raised_by_tool(self, dispatcher, messages, registry, session):
        registry.register(RecordingTool("guarded", error=PermissionDeniedError()))
        registry.register(RecordingTool("later"))
        assistant = await assistant_with_calls(messages, session.id, "guarded", "later")

        tool_message = await dispatcher.dispatch(session.id, assistant)

        guarded, later = tool_message.tool_results()
        assert guarded.content == PERMISSION_DENIED
        assert later.content == TOOL_CANCELED
        assert assistant.finish_reason() == FinishReason.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_tools_without_permission_skip_the_prompt(self, dispatcher, messages, registry, permissions,
                                                            session):
        registry.register(RecordingTool("free", requires_permission=False))
        assistant = await assistant_with_calls(messages, session.id, "free")

        await dispatcher.dispatch(session.id, assistant)

        assert permissions.requests == []

    @pytest.mark.asyncio
    async def test_cancel_during_tool_call(self, dispatcher, messages, registry, session):
        """A finished call keeps its result; the running and later calls are canceled"""
        a = RecordingTool("a", output="done")
        b = RecordingTool("b", block=True)
        c = RecordingTool("c")
        for tool in (a, b, c):
            registry.register(tool)
        assistant = await assistant_with_calls(messages, session.id, "a", "b", "c")

        task = asyncio.create_task(dispatcher.dispatch(session.id, assistant, "test-model", "test"))
        await asyncio.wait_for(b.started.wait(), timeout=2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await wait_for(lambda: b.cancelled)
        assert c.calls == []

        stored_assistant, tool_message = await messages.list(session.id)
        assert stored_assistant.finish_reason() == FinishReason.CANCELED
        assert stored_assistant.finish_part().message == REQUEST_CANCELLED
        results = tool_message.tool_results()
        assert [(r.tool_call_id, r.content, r.is_error) for r in results] == [
            ("call_a", "done", False),
            ("call_b", TOOL_CANCELED, True),
            ("call_c", TOOL_CANCELED, True),
        ]

    @pytest.mark.asyncio
    async def test_permission_service_failure_still_records_results(self, messages, registry, session):
        """Every call still gets a result so the history stays valid for the next request"""
        a = RecordingTool("a", output="done", requires_permission=False)
        b = RecordingTool("b")
        c = RecordingTool("c")
        for tool in (a, b, c):
            registry.register(tool)
        dispatcher = ToolDispatcher(messages, registry, FailingPermissionService())
        assistant = await assistant_with_calls(messages, session.id, "a", "b", "c")

        with pytest.raises(AgentError, match="failed to request permission: prompt backend down"):
            await dispatcher.dispatch(session.id, assistant)

        assert b.calls == []
        assert c.calls == []
        stored_assistant, tool_message = await messages.list(session.id)
        assert stored_assistant.finish_reason() == FinishReason.ERROR
        assert stored_assistant.finish_part().message == PERMISSION_ERROR
        assert [(r.tool_call_id, r.is_error) for r in tool_message.tool_results()] == [
            ("call_a", False),
            ("call_b", True),
            ("call_c", True),
        ]
        assert tool_message.tool_results()[1].content == f"{PERMISSION_ERROR}: prompt backend down"
        assert tool_message.tool_results()[2].content == TOOL_CANCELED

    @pytest.mark.asyncio
    async def test_tool_message_failure_finishes_assistant_with_error(self, sessions, registry, session):
        messages = NoToolMessageStore(sessions)
        registry.register(RecordingTool("a"))
        dispatcher = ToolDispatcher(messages, registry, StaticPermissionService())
        assistant = await assistant_with_calls(messages, session.id, "a")

        with pytest.raises(AgentError, match="failed to create tool message: disk full"):
            await dispatcher.dispatch(session.id, assistant)

        [stored_assistant] = await messages.list(session.id)
        assert stored_assistant.finish_reason() == FinishReason.ERROR
        assert stored_assistant.finish_part().message == TOOL_MESSAGE_ERROR
        assert stored_assistant.finish_part().details == "disk full"
