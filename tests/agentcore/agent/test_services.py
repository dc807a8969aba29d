"""
Tests for the store and permission interfaces
"""

import pytest

from agentcore.agent.core.llm.base import TokenUsage
from agentcore.agent.core.runtime.accountant import UsageAccountant
from agentcore.agent.services import (
    CreatePermissionRequest,
    InMemorySessionStore,
    SessionStore,
    StaticPermissionService,
)
from agentcore.agent.session import Session
from conftest import catalog_model


class DictSessionStore(SessionStore):
    """Session store implementing only what the agent runtime calls"""

    def __init__(self):
        self.sessions = {}

    async def get(self, session_id):
        return self.sessions[session_id]

    async def save(self, session):
        self.sessions[session.id] = session
        return session


@pytest.mark.asyncio
async def test_external_store_needs_only_get_and_save():
    store = DictSessionStore()
    await store.save(Session(id="s1"))

    await UsageAccountant(store).track_usage("s1", catalog_model(), TokenUsage(input_tokens=10, output_tokens=5))

    session = await store.get("s1")
    assert session.prompt_tokens == 10
    assert session.completion_tokens == 5


@pytest.mark.asyncio
async def test_in_memory_store_creates_sessions():
    store = InMemorySessionStore()

    session = await store.create("first", parent_session_id="parent")

    stored = await store.get(session.id)
    assert stored.title == "first"
    assert stored.parent_session_id == "parent"
    assert stored is not session


@pytest.mark.asyncio
async def test_static_permissions_record_requests():
    permissions = StaticPermissionService(denied_tools={"rm"})

    allowed = await permissions.request(CreatePermissionRequest(
        session_id="s1", tool_call_id="c1", tool_name="ls", description="", action="run", params="{}", path="/",
    ))
    denied = await permissions.request(CreatePermissionRequest(
        session_id="s1", tool_call_id="c2", tool_name="rm", description="", action="run", params="{}", path="/",
    ))

    assert (allowed, denied) == (True, False)
    assert [r.tool_call_id for r in permissions.requests] == ["c1", "c2"]
