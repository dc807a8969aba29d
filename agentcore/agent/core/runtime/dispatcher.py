"""
Tool dispatch for one assistant turn

Tool calls run one at a time, in the order the model issued them. Each call
runs in its own task and is raced against cancellation of the dispatching
task: whichever finishes first wins and the loser is discarded.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import List, Optional

from ...errors import AgentError, PermissionDeniedError, ToolNotFoundError
from ...message import CreateMessageParams, FinishReason, Message, MessageRole, ToolCall, ToolResult
from ...services import CreatePermissionRequest, MessageStore, PermissionService
from ...tools.base_tool import (
    BaseTool,
    ToolCallRequest,
    ToolResponse,
    error_response,
    message_id_var,
    session_id_var,
)
from ...tools.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "Permission denied"
TOOL_CANCELED = "Tool execution canceled by user"
REQUEST_CANCELLED = "Request cancelled"
PERMISSION_ERROR = "Permission request failed"
TOOL_MESSAGE_ERROR = "Failed to record tool results"


def _canceled_result(call: ToolCall) -> ToolResult:
    return ToolResult(tool_call_id=call.id, name=call.name, content=TOOL_CANCELED, is_error=True)


class ToolDispatcher:
    """Executes the tool calls of an assistant message and records the results."""

    def __init__(
        self,
        messages: MessageStore,
        tools: ToolRegistry,
        permissions: PermissionService,
        working_dir: str = "",
    ):
        self.messages = messages
        self.tools = tools
        self.permissions = permissions
        self.working_dir = working_dir

    async def dispatch(self, session_id: str, assistant: Message,
                       model: str = "", provider: str = "") -> Optional[Message]:
        """Run every tool call of `assistant`.

        Returns the tool message holding one result per call, or None when the
        message has no tool calls. A permission denial finishes `assistant`
        with PERMISSION_DENIED. A failing permission service finishes it with
        ERROR; the tool message is still created and AgentError is raised.
        If the dispatching task is cancelled, the current and remaining calls
        are recorded as canceled, `assistant` is finished CANCELED and the
        cancellation is re-raised.
        """
        calls = assistant.tool_calls()
        results: List[ToolResult] = []
        failure: Optional[AgentError] = None

        try:
            for index, call in enumerate(calls):
                tool = self.tools.get_tool(call.name)
                if tool is None:
                    logger.warning(f"Tool not found: {call.name} ({call.id})")
                    results.append(ToolResult(
                        tool_call_id=call.id,
                        name=call.name,
                        content=str(ToolNotFoundError(call.name)),
                        is_error=True,
                    ))
                    continue

                request = ToolCallRequest(id=call.id, name=call.name, input=call.input)
                try:
                    granted = await self._request_permission(session_id, tool, request)
                except Exception as e:
                    logger.error(f"Permission request failed for {call.name} ({call.id}): {e}")
                    results.append(ToolResult(
                        tool_call_id=call.id, name=call.name, content=f"{PERMISSION_ERROR}: {e}", is_error=True,
                    ))
                    results.extend(_canceled_result(later) for later in calls[index + 1:])
                    assistant.add_finish(FinishReason.ERROR, PERMISSION_ERROR, str(e))
                    await self._update(assistant)
                    failure = AgentError(f"failed to request permission: {e}")
                    failure.__cause__ = e
                    break

                if granted:
                    try:
                        response = await self._run_tool(tool, request, session_id, assistant.id)
                    except PermissionDeniedError:
                        granted = False
                    except Exception as e:
                        logger.error(f"Tool execution error for {call.name} ({call.id}): {e}")
                        response = error_response(f"Tool execution error: {e}")

                if not granted:
                    results.append(ToolResult(
                        tool_call_id=call.id, name=call.name, content=PERMISSION_DENIED, is_error=True,
                    ))
                    results.extend(_canceled_result(later) for later in calls[index + 1:])
                    assistant.add_finish(FinishReason.PERMISSION_DENIED, PERMISSION_DENIED)
                    await self._update(assistant)
                    break

                results.append(ToolResult(
                    tool_call_id=call.id,
                    name=call.name,
                    content=response.content,
                    metadata=response.metadata,
                    is_error=response.is_error,
                ))
        except asyncio.CancelledError:
            recorded = {result.tool_call_id for result in results}
            results.extend(_canceled_result(call) for call in calls if call.id not in recorded)
            logger.info(f"Tool dispatch canceled for message {assistant.id}")
            assistant.add_finish(FinishReason.CANCELED, REQUEST_CANCELLED)
            await self._persist_detached(self.messages.update(copy.deepcopy(assistant)), "update canceled message")
            await self._persist_detached(
                self._create_tool_message(session_id, results, model, provider),
                "create canceled tool message",
            )
            raise

        if not results:
            return None
        try:
            tool_message = await asyncio.shield(self._create_tool_message(session_id, results, model, provider))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to create tool message for {assistant.id}: {e}")
            assistant.add_finish(FinishReason.ERROR, TOOL_MESSAGE_ERROR, str(e))
            await self._persist_detached(self.messages.update(copy.deepcopy(assistant)), "update failed message")
            raise AgentError(f"failed to create tool message: {e}") from e
        if failure is not None:
            raise failure
        return tool_message

    async def _request_permission(self, session_id: str, tool: BaseTool, request: ToolCallRequest) -> bool:
        if not tool.requires_permission:
            return True
        details = tool.permission_details(request, self.working_dir)
        return await self.permissions.request(CreatePermissionRequest(
            session_id=session_id,
            tool_call_id=request.id,
            tool_name=request.name,
            description=details.description,
            action=details.action,
            params=request.input,
            path=details.path or self.working_dir,
        ))

    async def _run_tool(self, tool: BaseTool, request: ToolCallRequest,
                        session_id: str, message_id: str) -> ToolResponse:
        async def invoke() -> ToolResponse:
            session_id_var.set(session_id)
            message_id_var.set(message_id)
            return await tool.run(request)

        logger.info(f"Tool call started: {request.name} ({request.id})")
        task = asyncio.create_task(invoke(), name=f"tool-{request.name}-{request.id}")
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        response = task.result()
        logger.info(f"Tool call finished: {request.name} ({request.id})")
        return response

    async def _create_tool_message(self, session_id: str, results: List[ToolResult],
                                   model: str, provider: str) -> Message:
        return await self.messages.create(session_id, CreateMessageParams(
            role=MessageRole.tool,
            parts=list(results),
            model=model,
            provider=provider,
        ))

    async def _update(self, message: Message) -> None:
        try:
            await self.messages.update(message)
        except Exception as e:
            raise AgentError(f"failed to update message: {e}") from e

    async def _persist_detached(self, write, what: str) -> None:
        """Complete a store write even though the calling task is being cancelled."""
        try:
            await asyncio.shield(write)
        except Exception as e:
            logger.error(f"Failed to {what}: {e}")
