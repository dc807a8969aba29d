"""
Provider adapters: one streaming interface over the supported vendor SDKs
"""

from .base import (
    BaseProvider,
    EmptyResponseError,
    EventType,
    ProviderError,
    ProviderEvent,
    ProviderNotConfigured,
    ProviderOptions,
    ProviderResponse,
    RetryLimitExceeded,
    TokenUsage,
)
from .factory import new_provider

__all__ = [
    "BaseProvider",
    "EmptyResponseError",
    "EventType",
    "ProviderError",
    "ProviderEvent",
    "ProviderNotConfigured",
    "ProviderOptions",
    "ProviderResponse",
    "RetryLimitExceeded",
    "TokenUsage",
    "new_provider",
]
