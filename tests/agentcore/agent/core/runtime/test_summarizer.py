"""
Tests for session summarization
"""

from unittest.mock import AsyncMock

import pytest

from agentcore.agent.core.llm.base import ProviderOptions, TokenUsage
from agentcore.agent.core.runtime import summarizer as stages
from agentcore.agent.core.runtime.accountant import compute_cost
from agentcore.agent.core.runtime.models import ModelBinding
from agentcore.agent.core.runtime.summarizer import Summarizer
from agentcore.agent.events import AgentEventType
from agentcore.agent.message import CreateMessageParams, FinishReason, MessageRole, TextContent
from agentcore.agent.prompts import SUMMARIZE_INSTRUCTION, SUMMARIZER_PROMPT
from agentcore.config import AgentModel
from conftest import ScriptedProvider, catalog_model, provider_config, text_turn


@pytest.fixture
def published():
    return []


@pytest.fixture
def provider():
    return ScriptedProvider(provider_config(), ProviderOptions(system_message=SUMMARIZER_PROMPT))


@pytest.fixture
def summarizer(messages, sessions, provider, published):
    binding = ModelBinding(provider=provider, selection=AgentModel(model="test-model", provider="test"))
    return Summarizer(messages, sessions, binding, published.append, working_dir="/work")


async def add_history(messages, session_id):
    await messages.create(session_id, CreateMessageParams(role=MessageRole.user, parts=[TextContent(text="fix it")]))
    await messages.create(session_id, CreateMessageParams(role=MessageRole.assistant,
                                                          parts=[TextContent(text="fixed")]))


class TestSummarizer:
    """Test the staged summarize flow"""

    @pytest.mark.asyncio
    async def test_empty_session_fails_after_starting(self, summarizer, published, session):
        await summarizer.summarize(session.id)

        assert [e.type for e in published] == [AgentEventType.SUMMARIZE, AgentEventType.ERROR]
        assert published[0].progress == stages.STARTING
        assert not published[0].done
        assert published[1].done
        assert str(published[1].error) == "no messages to summarize"

    @pytest.mark.asyncio
    async def test_successful_summary(self, summarizer, provider, messages, sessions, published, session):
        await add_history(messages, session.id)
        usage = TokenUsage(input_tokens=1000, output_tokens=200)
        provider.turns = [text_turn("  The summary  ", usage=usage)]

        await summarizer.summarize(session.id)

        assert [e.progress for e in published] == [
            stages.STARTING, stages.ANALYZING, stages.GENERATING, stages.CREATING_SESSION, stages.COMPLETE,
        ]
        assert all(e.type == AgentEventType.SUMMARIZE for e in published)
        assert [e.done for e in published] == [False, False, False, False, True]

        _, sent, tools = provider.requests[0]
        assert tools == []
        assert [m.text() for m in sent] == ["fix it", "fixed", SUMMARIZE_INSTRUCTION]

        stored = await sessions.get(session.id)
        summary = messages.get(stored.summary_message_id)
        assert summary.role == MessageRole.assistant
        assert summary.text() == "The summary\n\n**Current working directory**\n\n/work"
        assert summary.finish_reason() == FinishReason.END_TURN
        assert stored.completion_tokens == 200
        assert stored.prompt_tokens == 0
        assert stored.cost == pytest.approx(compute_cost(catalog_model(), usage))

    @pytest.mark.asyncio
    async def test_provider_failure(self, summarizer, provider, messages, published, session):
        await add_history(messages, session.id)
        provider.turns = [ValueError("backend down")]

        await summarizer.summarize(session.id)

        assert [e.progress for e in published[:-1]] == [stages.STARTING, stages.ANALYZING, stages.GENERATING]
        assert published[-1].type == AgentEventType.ERROR
        assert published[-1].done
        assert str(published[-1].error) == "failed to summarize: backend down"

    @pytest.mark.asyncio
    async def test_empty_summary(self, summarizer, provider, messages, published, session):
        await add_history(messages, session.id)
        provider.turns = [text_turn("   ")]

        await summarizer.summarize(session.id)

        assert published[-1].type == AgentEventType.ERROR
        assert str(published[-1].error) == "empty summary returned"

    @pytest.mark.asyncio
    async def test_save_failure_does_not_report_completion(self, summarizer, provider, messages, sessions,
                                                           published, session):
        await add_history(messages, session.id)
        provider.turns = [text_turn("summary")]
        sessions.save = AsyncMock(side_effect=RuntimeError("read only"))

        await summarizer.summarize(session.id)

        assert published[-1].type == AgentEventType.ERROR
        assert "failed to save session" in str(published[-1].error)
        assert stages.COMPLETE not in [e.progress for e in published]
