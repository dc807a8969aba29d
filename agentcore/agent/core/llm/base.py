from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing, contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterator, List, Mapping, Optional, Tuple, Type

from ....config import CatalogModel, ProviderConfig
from ....core.resolver import CredentialResolver, EnvironmentResolver, ResolutionError
from ...message import FinishReason, Message, ToolCall
from ...tools.base_tool import BaseTool
from .retry import MAX_RETRIES, RETRYABLE_STATUS_CODES, backoff_delay_ms, retry_after_ms

logger = logging.getLogger(__name__)


class ProviderNotConfigured(Exception):
    """Raised when a provider is not properly configured (e.g., missing API key)."""


class ProviderError(Exception):
    """Raised for provider-specific errors that should surface to callers."""


class RetryLimitExceeded(ProviderError):
    """Raised once a request has failed more times than the retry budget allows."""

    def __init__(self, max_retries: int = MAX_RETRIES):
        super().__init__(f"maximum retry attempts reached for rate limit: {max_retries} retries")
        self.max_retries = max_retries


class EmptyResponseError(ProviderError):
    """Raised when the backend answers without any choices."""


class EventType(str, Enum):
    CONTENT_START = "content_start"
    CONTENT_DELTA = "content_delta"
    CONTENT_STOP = "content_stop"
    THINKING_DELTA = "thinking_delta"
    SIGNATURE_DELTA = "signature_delta"
    TOOL_USE_START = "tool_use_start"
    TOOL_USE_DELTA = "tool_use_delta"
    TOOL_USE_STOP = "tool_use_stop"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass
class ProviderResponse:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: FinishReason = FinishReason.UNKNOWN


@dataclass
class ProviderEvent:
    type: EventType
    content: str = ""
    thinking: str = ""
    signature: str = ""
    response: Optional[ProviderResponse] = None
    tool_call: Optional[ToolCall] = None
    error: Optional[BaseException] = None


@dataclass
class ProviderOptions:
    """Per-provider behavior chosen by the caller rather than the config file."""
    system_message: str = ""
    system_prompt_prefix: str = ""
    max_tokens: int = 0
    think: bool = False
    reasoning_effort: str = ""
    disable_cache: bool = False
    debug: bool = False
    resolver: Optional[CredentialResolver] = None


class BaseProvider(ABC):
    """Provider-agnostic streaming chat interface.

    Subclasses build the vendor SDK client and translate one request attempt;
    the retry policy, credential refresh and message cleaning live here so all
    vendors behave the same way.
    """

    name = "base"
    default_base_url = ""
    # SDK exception types that carry an HTTP status code
    status_error_types: Tuple[Type[BaseException], ...] = ()

    def __init__(self, config: ProviderConfig, options: Optional[ProviderOptions] = None):
        self.config = config
        self.options = options or ProviderOptions()
        self.resolver = self.options.resolver or EnvironmentResolver()
        self.debug = self.options.debug
        self.system_prompt_prefix = self.options.system_prompt_prefix or config.system_prompt_prefix

        try:
            self.api_key = self.resolver.resolve_value(config.api_key)
        except ResolutionError as e:
            raise ProviderNotConfigured(f"failed to resolve API key for provider {config.id}: {e}") from e

        try:
            self.base_url = self.resolver.resolve_value(config.base_url)
        except ResolutionError:
            self.base_url = ""
        self.base_url = self.base_url or self.default_base_url

        self.extra_headers: Dict[str, str] = {}
        for key, value in config.extra_headers.items():
            try:
                self.extra_headers[key] = self.resolver.resolve_value(value)
            except ResolutionError as e:
                raise ProviderNotConfigured(
                    f"failed to resolve extra header {key} for provider {config.id}: {e}"
                ) from e
        self.extra_body: Dict[str, Any] = dict(config.extra_body)

        self.client = self._create_client()
        # clients replaced by a credential refresh, closed once no attempt uses them
        self._retired_clients: List[Any] = []
        self._client_leases: Dict[int, int] = {}

    # Vendor hooks

    @abstractmethod
    def _create_client(self) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def _send_once(self, model_id: str, messages: List[Message], tools: List[BaseTool]) -> ProviderResponse:
        """Perform one non-streaming request attempt."""
        raise NotImplementedError

    @abstractmethod
    def _stream_once(self, model_id: str, messages: List[Message], tools: List[BaseTool]) -> AsyncIterator[ProviderEvent]:
        """Perform one streaming attempt; must end with a COMPLETE event or raise."""
        raise NotImplementedError

    # Public surface

    def model(self, model_id: str) -> Optional[CatalogModel]:
        return self.config.get_model(model_id)

    def set_debug(self, debug: bool) -> None:
        self.debug = debug

    def clean_messages(self, messages: List[Message]) -> List[Message]:
        return [m for m in messages if m.parts]

    async def send(self, model_id: str, messages: List[Message], tools: Optional[List[BaseTool]] = None) -> ProviderResponse:
        """Send a request and return the whole response, retrying transient failures."""
        messages = self.clean_messages(messages)
        attempts = 0
        while True:
            attempts += 1
            await self._close_retired_clients()
            try:
                with self._lease_client():
                    return await self._send_once(model_id, messages, tools or [])
            except Exception as e:
                delay = self._retry_delay(attempts, e)
                if delay is None:
                    raise
                logger.warning(f"Retrying {self.name} request (attempt {attempts}, max retries {MAX_RETRIES}): {e}")
                await self._sleep(delay)

    async def stream(self, model_id: str, messages: List[Message],
                     tools: Optional[List[BaseTool]] = None) -> AsyncIterator[ProviderEvent]:
        """Stream a response. Exactly one COMPLETE or ERROR event ends the stream."""
        messages = self.clean_messages(messages)
        attempts = 0
        while True:
            attempts += 1
            await self._close_retired_clients()
            try:
                attempt = self._stream_once(model_id, messages, tools or [])
                with self._lease_client():
                    async with aclosing(attempt):
                        async for event in attempt:
                            yield event
                            if event.type in (EventType.COMPLETE, EventType.ERROR):
                                return
                yield ProviderEvent(
                    type=EventType.ERROR,
                    error=EmptyResponseError(f"{self.name} stream ended without a final response"),
                )
                return
            except Exception as e:
                try:
                    delay = self._retry_delay(attempts, e)
                except (ProviderError, ProviderNotConfigured) as terminal:
                    yield ProviderEvent(type=EventType.ERROR, error=terminal)
                    return
                if delay is None:
                    yield ProviderEvent(type=EventType.ERROR, error=e)
                    return
                logger.warning(f"Retrying {self.name} stream (attempt {attempts}, max retries {MAX_RETRIES}): {e}")
                await self._sleep(delay)

    # Retry policy

    def _status_code(self, error: BaseException) -> Optional[int]:
        if self.status_error_types and isinstance(error, self.status_error_types):
            return getattr(error, "status_code", None)
        return None

    def _response_headers(self, error: BaseException) -> Optional[Mapping[str, str]]:
        response = getattr(error, "response", None)
        return getattr(response, "headers", None)

    def _retry_delay(self, attempts: int, error: BaseException) -> Optional[int]:
        """Milliseconds to wait before the next attempt, or None to fail with `error`.

        Raises RetryLimitExceeded once the budget is spent, and ProviderError
        when the API key cannot be re-resolved after a 401.
        """
        status = self._status_code(error)
        if status is None:
            return None
        if attempts > MAX_RETRIES:
            raise RetryLimitExceeded(MAX_RETRIES) from error
        if status == 401:
            self._refresh_credentials()
            return 0
        if status not in RETRYABLE_STATUS_CODES:
            return None
        after = retry_after_ms(self._response_headers(error))
        return after if after is not None else backoff_delay_ms(attempts)

    def _refresh_credentials(self) -> None:
        try:
            self.api_key = self.resolver.resolve_value(self.config.api_key)
        except ResolutionError as e:
            raise ProviderError(f"failed to resolve API key: {e}") from e
        logger.info(f"Refreshed credentials for provider {self.config.id}")
        if self.client is not None:
            self._retired_clients.append(self.client)
        self.client = self._create_client()

    @contextmanager
    def _lease_client(self) -> Iterator[Any]:
        key = id(self.client)
        self._client_leases[key] = self._client_leases.get(key, 0) + 1
        try:
            yield self.client
        finally:
            self._client_leases[key] -= 1
            if not self._client_leases[key]:
                del self._client_leases[key]

    async def _close_retired_clients(self) -> None:
        idle = [c for c in self._retired_clients if id(c) not in self._client_leases]
        if not idle:
            return
        self._retired_clients = [c for c in self._retired_clients if id(c) in self._client_leases]
        for client in idle:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Failed to close {self.name} client: {e}")

    async def _sleep(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)

    # Helpers shared by vendors

    def _catalog_model(self, model_id: str) -> CatalogModel:
        return self.model(model_id) or CatalogModel(id=model_id)

    def _max_tokens(self, model: CatalogModel) -> int:
        if self.options.max_tokens > 0:
            return self.options.max_tokens
        return model.default_max_tokens

    def _system_prompt(self) -> str:
        if self.system_prompt_prefix:
            return self.system_prompt_prefix + "\n" + self.options.system_message
        return self.options.system_message

    def _log_debug(self, label: str, payload: Any) -> None:
        if not self.debug:
            return
        try:
            logger.debug(f"{label}: {json.dumps(payload, default=str)}")
        except (TypeError, ValueError):
            logger.debug(f"{label}: {payload!r}")
