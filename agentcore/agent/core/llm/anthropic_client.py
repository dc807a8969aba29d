from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic

from ...message import FinishReason, Message, MessageRole, ToolCall
from ...tools.base_tool import BaseTool
from .base import (
    BaseProvider,
    EventType,
    ProviderError,
    ProviderEvent,
    ProviderNotConfigured,
    ProviderResponse,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_BEDROCK_REGION = "us-east-1"
THINKING_BUDGET_RATIO = 0.8

_EPHEMERAL = {"type": "ephemeral"}


def map_stop_reason(reason: Optional[str]) -> FinishReason:
    if reason in ("end_turn", "stop_sequence"):
        return FinishReason.END_TURN
    if reason == "max_tokens":
        return FinishReason.MAX_TOKENS
    if reason == "tool_use":
        return FinishReason.TOOL_USE
    return FinishReason.UNKNOWN


def _parse_tool_input(call: ToolCall) -> Dict[str, Any]:
    if not call.input.strip():
        return {}
    try:
        parsed = json.loads(call.input)
    except ValueError:
        logger.warning(f"Tool call {call.id} has invalid JSON input, sending empty object")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class AnthropicProvider(BaseProvider):
    """Messages API provider with native thinking and prompt caching."""

    name = "anthropic"
    status_error_types = (anthropic.APIStatusError,)

    def _create_client(self) -> Any:
        try:
            return anthropic.AsyncAnthropic(
                api_key=self.api_key or None,
                base_url=self.base_url or None,
                default_headers=self.extra_headers or None,
            )
        except anthropic.AnthropicError as e:
            raise ProviderNotConfigured(str(e)) from e

    # Request building

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for msg in messages:
            blocks: List[Dict[str, Any]] = []
            if msg.role == MessageRole.user:
                if msg.text():
                    blocks.append({"type": "text", "text": msg.text()})
                for binary in msg.binary_content():
                    blocks.append({
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": binary.mime_type,
                            "data": binary.to_base64(),
                        },
                    })
                role = "user"

            elif msg.role == MessageRole.assistant:
                reasoning = msg.reasoning_content()
                if reasoning is not None and reasoning.signature:
                    blocks.append({
                        "type": "thinking",
                        "thinking": reasoning.thinking,
                        "signature": reasoning.signature,
                    })
                if msg.text():
                    blocks.append({"type": "text", "text": msg.text()})
                for call in msg.tool_calls():
                    blocks.append({
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _parse_tool_input(call),
                    })
                role = "assistant"

            elif msg.role == MessageRole.tool:
                for result in msg.tool_results():
                    blocks.append({
                        "type": "tool_result",
                        "tool_use_id": result.tool_call_id,
                        "content": result.content,
                        "is_error": result.is_error,
                    })
                role = "user"
            else:
                continue

            if not blocks:
                logger.warning(f"Skipping {msg.role.value} message {msg.id} without content")
                continue
            converted.append({"role": role, "content": blocks})

        if not self.options.disable_cache:
            # Cache the tail of the conversation so the next turn reuses it
            for msg in converted[-2:]:
                msg["content"][-1] = {**msg["content"][-1], "cache_control": _EPHEMERAL}
        return converted

    def _convert_tools(self, tools: List[BaseTool]) -> List[Dict[str, Any]]:
        converted = [tool.to_anthropic_tool() for tool in tools]
        if converted and not self.options.disable_cache:
            converted[-1] = {**converted[-1], "cache_control": _EPHEMERAL}
        return converted

    def _system_blocks(self) -> List[Dict[str, Any]]:
        prompt = self._system_prompt()
        if not prompt:
            return []
        block: Dict[str, Any] = {"type": "text", "text": prompt}
        if not self.options.disable_cache:
            block["cache_control"] = _EPHEMERAL
        return [block]

    def _wire_model_id(self, model_id: str) -> str:
        return model_id

    def _prepared_params(self, model_id: str, messages: List[Message], tools: List[BaseTool]) -> Dict[str, Any]:
        model = self._catalog_model(model_id)
        max_tokens = self._max_tokens(model)
        params: Dict[str, Any] = {
            "model": self._wire_model_id(model.id),
            "max_tokens": max_tokens,
            "messages": self._convert_messages(messages),
        }
        system = self._system_blocks()
        if system:
            params["system"] = system
        if tools:
            params["tools"] = self._convert_tools(tools)
        if self.options.think and model.can_reason:
            params["thinking"] = {"type": "enabled", "budget_tokens": int(max_tokens * THINKING_BUDGET_RATIO)}
            params["temperature"] = 1
        if self.extra_body:
            params["extra_body"] = dict(self.extra_body)
        return params

    # Attempts

    async def _send_once(self, model_id: str, messages: List[Message], tools: List[BaseTool]) -> ProviderResponse:
        params = self._prepared_params(model_id, messages, tools)
        self._log_debug("Prepared messages", params)

        response = await self.client.messages.create(**params)

        content = ""
        tool_calls: List[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    input=json.dumps(block.input),
                    finished=True,
                ))

        finish_reason = map_stop_reason(response.stop_reason)
        if tool_calls:
            finish_reason = FinishReason.TOOL_USE

        usage = response.usage
        return ProviderResponse(
            content=content,
            tool_calls=tool_calls,
            usage=TokenUsage(
                input_tokens=usage.input_tokens or 0,
                output_tokens=usage.output_tokens or 0,
                cache_creation_tokens=getattr(usage, "cache_creation_input_tokens", None) or 0,
                cache_read_tokens=getattr(usage, "cache_read_input_tokens", None) or 0,
            ),
            finish_reason=finish_reason,
        )

    async def _stream_once(self, model_id: str, messages: List[Message],
                           tools: List[BaseTool]) -> AsyncIterator[ProviderEvent]:
        params = self._prepared_params(model_id, messages, tools)
        params["stream"] = True
        self._log_debug("Prepared messages", params)

        stream = await self.client.messages.create(**params)

        content = ""
        stop_reason: Optional[str] = None
        usage = TokenUsage()
        tool_calls: List[ToolCall] = []
        current_tool: Optional[ToolCall] = None
        current_block = ""

        try:
            async for event in stream:
                if event.type == "message_start":
                    start_usage = event.message.usage
                    usage.input_tokens = start_usage.input_tokens or 0
                    usage.cache_creation_tokens = getattr(start_usage, "cache_creation_input_tokens", None) or 0
                    usage.cache_read_tokens = getattr(start_usage, "cache_read_input_tokens", None) or 0
                    usage.output_tokens = start_usage.output_tokens or 0

                elif event.type == "content_block_start":
                    block = event.content_block
                    current_block = block.type
                    if block.type == "text":
                        yield ProviderEvent(type=EventType.CONTENT_START)
                    elif block.type == "tool_use":
                        current_tool = ToolCall(id=block.id, name=block.name)
                        yield ProviderEvent(
                            type=EventType.TOOL_USE_START,
                            tool_call=ToolCall(id=block.id, name=block.name),
                        )

                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        content += delta.text
                        yield ProviderEvent(type=EventType.CONTENT_DELTA, content=delta.text)
                    elif delta.type == "thinking_delta":
                        yield ProviderEvent(type=EventType.THINKING_DELTA, thinking=delta.thinking)
                    elif delta.type == "signature_delta":
                        yield ProviderEvent(type=EventType.SIGNATURE_DELTA, signature=delta.signature)
                    elif delta.type == "input_json_delta" and current_tool is not None:
                        current_tool.input += delta.partial_json
                        yield ProviderEvent(
                            type=EventType.TOOL_USE_DELTA,
                            tool_call=ToolCall(id=current_tool.id, name=current_tool.name, input=delta.partial_json),
                        )

                elif event.type == "content_block_stop":
                    if current_block == "tool_use" and current_tool is not None:
                        current_tool.finished = True
                        tool_calls.append(current_tool)
                        yield ProviderEvent(
                            type=EventType.TOOL_USE_STOP,
                            tool_call=ToolCall(
                                id=current_tool.id,
                                name=current_tool.name,
                                input=current_tool.input,
                                finished=True,
                            ),
                        )
                        current_tool = None
                    elif current_block == "text":
                        yield ProviderEvent(type=EventType.CONTENT_STOP)
                    current_block = ""

                elif event.type == "message_delta":
                    if event.delta.stop_reason:
                        stop_reason = event.delta.stop_reason
                    if event.usage is not None and event.usage.output_tokens is not None:
                        usage.output_tokens = event.usage.output_tokens
        finally:
            await stream.close()

        self._log_debug("Response", {"content": content, "stop_reason": stop_reason})

        finish_reason = map_stop_reason(stop_reason)
        if tool_calls:
            finish_reason = FinishReason.TOOL_USE

        yield ProviderEvent(
            type=EventType.COMPLETE,
            response=ProviderResponse(
                content=content,
                tool_calls=tool_calls,
                usage=usage,
                finish_reason=finish_reason,
            ),
        )


class BedrockProvider(AnthropicProvider):
    """Anthropic models hosted on AWS Bedrock.

    Catalog ids are unprefixed; the wire id carries the region prefix
    (e.g. `us.` for us-east-1).
    """

    name = "bedrock"

    def __init__(self, config, options=None):
        self.region = config.extra_params.region or DEFAULT_BEDROCK_REGION
        super().__init__(config, options)

    def _create_client(self) -> Any:
        try:
            return anthropic.AsyncAnthropicBedrock(
                aws_region=self.region,
                base_url=self.base_url or None,
                default_headers=self.extra_headers or None,
            )
        except anthropic.AnthropicError as e:
            raise ProviderNotConfigured(str(e)) from e

    def _wire_model_id(self, model_id: str) -> str:
        if len(self.region) < 2:
            raise ProviderError("no region selected")
        return f"{self.region[:2]}.{model_id}"
