from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional

import openai

from ...message import FinishReason, Message, MessageRole, ToolCall
from ...tools.base_tool import BaseTool
from .base import (
    BaseProvider,
    EmptyResponseError,
    EventType,
    ProviderEvent,
    ProviderNotConfigured,
    ProviderResponse,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_AZURE_API_VERSION = "2025-01-01-preview"
GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason == "stop":
        return FinishReason.END_TURN
    if reason == "length":
        return FinishReason.MAX_TOKENS
    if reason == "tool_calls":
        return FinishReason.TOOL_USE
    return FinishReason.UNKNOWN


class _ToolCallAccumulator:
    """Rebuilds tool calls from streamed fragments.

    Fragments belong to the call whose id was seen last; a fragment carrying a
    different id closes the current call and opens a new one.
    """

    def __init__(self):
        self.calls: List[ToolCall] = []
        self.current: Optional[ToolCall] = None

    def feed(self, call_id: Optional[str], name: Optional[str], arguments: Optional[str]) -> List[ProviderEvent]:
        events: List[ProviderEvent] = []
        if call_id and (self.current is None or call_id != self.current.id):
            events.extend(self.close())
            self.current = ToolCall(id=call_id, name=name or "")
            events.append(ProviderEvent(type=EventType.TOOL_USE_START, tool_call=replace(self.current)))
        if self.current is None:
            return events
        if name and not self.current.name:
            self.current.name = name
        if arguments:
            self.current.input += arguments
            events.append(ProviderEvent(
                type=EventType.TOOL_USE_DELTA,
                tool_call=ToolCall(id=self.current.id, name=self.current.name, input=arguments),
            ))
        return events

    def close(self) -> List[ProviderEvent]:
        if self.current is None:
            return []
        self.current.finished = True
        self.calls.append(self.current)
        event = ProviderEvent(type=EventType.TOOL_USE_STOP, tool_call=replace(self.current))
        self.current = None
        return [event]


class OpenAIProvider(BaseProvider):
    """Chat Completions provider over the official openai SDK."""

    name = "openai"
    status_error_types = (openai.APIStatusError,)

    def _create_client(self) -> Any:
        try:
            return openai.AsyncOpenAI(
                api_key=self.api_key or None,
                base_url=self.base_url or None,
                default_headers=self.extra_headers or None,
            )
        except openai.OpenAIError as e:
            # Normalize to ProviderNotConfigured for runtime consistency
            raise ProviderNotConfigured(str(e)) from e

    # Request building

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = [{"role": "system", "content": self._system_prompt()}]
        for msg in messages:
            if msg.role == MessageRole.user:
                content: List[Dict[str, Any]] = [{"type": "text", "text": msg.text()}]
                for binary in msg.binary_content():
                    content.append({"type": "image_url", "image_url": {"url": binary.to_data_url()}})
                converted.append({"role": "user", "content": content})

            elif msg.role == MessageRole.assistant:
                assistant: Dict[str, Any] = {"role": "assistant"}
                if msg.text():
                    assistant["content"] = msg.text()
                calls = msg.tool_calls()
                if calls:
                    assistant["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.input},
                        }
                        for call in calls
                    ]
                if len(assistant) == 1:
                    logger.warning(f"Skipping assistant message {msg.id} without content")
                    continue
                converted.append(assistant)

            elif msg.role == MessageRole.tool:
                for result in msg.tool_results():
                    converted.append({
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": result.content,
                    })
        return converted

    def _prepared_params(self, model_id: str, messages: List[Message], tools: List[BaseTool]) -> Dict[str, Any]:
        model = self._catalog_model(model_id)
        params: Dict[str, Any] = {
            "model": self._wire_model_id(model.id),
            "messages": self._convert_messages(messages),
        }
        if tools:
            params["tools"] = [tool.to_openai_function() for tool in tools]

        max_tokens = self._max_tokens(model)
        if model.can_reason:
            params["max_completion_tokens"] = max_tokens
            effort = self.options.reasoning_effort or model.default_reasoning_effort
            if effort:
                params["reasoning_effort"] = effort
        else:
            params["max_tokens"] = max_tokens

        if self.extra_body:
            params["extra_body"] = dict(self.extra_body)
        return params

    def _wire_model_id(self, model_id: str) -> str:
        return model_id

    def _usage(self, usage: Any) -> TokenUsage:
        if usage is None:
            return TokenUsage()
        details = getattr(usage, "prompt_tokens_details", None)
        cached = (getattr(details, "cached_tokens", None) or 0) if details is not None else 0
        return TokenUsage(
            input_tokens=(usage.prompt_tokens or 0) - cached,
            output_tokens=usage.completion_tokens or 0,
            cache_creation_tokens=0,
            cache_read_tokens=cached,
        )

    # Attempts

    async def _send_once(self, model_id: str, messages: List[Message], tools: List[BaseTool]) -> ProviderResponse:
        params = self._prepared_params(model_id, messages, tools)
        self._log_debug("Prepared messages", params)

        response = await self.client.chat.completions.create(**params)
        if not response.choices:
            raise EmptyResponseError(f"received empty response from {self.name} API - check endpoint configuration")

        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                input=call.function.arguments or "",
                finished=True,
            )
            for call in (choice.message.tool_calls or [])
        ]
        finish_reason = map_finish_reason(choice.finish_reason)
        if tool_calls:
            finish_reason = FinishReason.TOOL_USE

        return ProviderResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls,
            usage=self._usage(response.usage),
            finish_reason=finish_reason,
        )

    async def _stream_once(self, model_id: str, messages: List[Message],
                           tools: List[BaseTool]) -> AsyncIterator[ProviderEvent]:
        params = self._prepared_params(model_id, messages, tools)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}
        self._log_debug("Prepared messages", params)

        stream = await self.client.chat.completions.create(**params)

        content = ""
        finish_reason = ""
        saw_choice = False
        usage = TokenUsage()
        accumulator = _ToolCallAccumulator()

        try:
            async for chunk in stream:
                if chunk.usage is not None:
                    usage = self._usage(chunk.usage)
                for choice in chunk.choices:
                    saw_choice = True
                    delta = choice.delta
                    if delta is not None:
                        # Some compatible backends stream reasoning alongside content
                        reasoning = getattr(delta, "reasoning_content", None)
                        if reasoning:
                            yield ProviderEvent(type=EventType.THINKING_DELTA, thinking=reasoning)
                        if delta.content:
                            content += delta.content
                            yield ProviderEvent(type=EventType.CONTENT_DELTA, content=delta.content)
                        for fragment in delta.tool_calls or []:
                            function = fragment.function
                            for event in accumulator.feed(
                                fragment.id,
                                function.name if function else None,
                                function.arguments if function else None,
                            ):
                                yield event
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
                        if finish_reason == "tool_calls":
                            for event in accumulator.close():
                                yield event
        finally:
            await stream.close()

        if not saw_choice:
            raise EmptyResponseError(
                f"received empty streaming response from {self.name} API - check endpoint configuration"
            )

        for event in accumulator.close():
            yield event

        self._log_debug("Response", {"content": content, "finish_reason": finish_reason})

        # Some routers omit the finish reason on a successful stream
        reason = map_finish_reason(finish_reason or "stop")
        if accumulator.calls:
            reason = FinishReason.TOOL_USE

        yield ProviderEvent(
            type=EventType.COMPLETE,
            response=ProviderResponse(
                content=content,
                tool_calls=list(accumulator.calls),
                usage=usage,
                finish_reason=reason,
            ),
        )


class AzureProvider(OpenAIProvider):
    """Azure OpenAI deployments; the model id is the deployment name."""

    name = "azure"

    def _create_client(self) -> Any:
        api_version = self.config.extra_params.api_version or DEFAULT_AZURE_API_VERSION
        try:
            return openai.AsyncAzureOpenAI(
                azure_endpoint=self.base_url or None,
                api_key=self.api_key or None,
                api_version=api_version,
                default_headers=self.extra_headers or None,
            )
        except openai.OpenAIError as e:
            raise ProviderNotConfigured(str(e)) from e


class GeminiProvider(OpenAIProvider):
    """Gemini through its OpenAI-compatible endpoint."""

    name = "gemini"
    default_base_url = GEMINI_OPENAI_BASE_URL

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        return self._transform_messages_for_gemini(super()._convert_messages(messages))

    def _transform_messages_for_gemini(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Merge the system message into the first user message.

        Gemini requires conversations to start with a user turn and rejects the
        system role on this endpoint.
        """
        system_content = ""
        result: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.get("role") == "system":
                system_content = msg.get("content", "")
            else:
                result.append(msg)

        if not system_content:
            return result

        for i, msg in enumerate(result):
            if msg.get("role") != "user":
                continue
            content = msg.get("content", "")
            if isinstance(content, list):
                merged = [{"type": "text", "text": system_content}] + list(content)
            else:
                merged = f"{system_content}\n\n{content}"
            result[i] = {**msg, "content": merged}
            break
        return result
