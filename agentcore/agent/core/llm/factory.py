from __future__ import annotations

import logging
from typing import Dict, Optional, Type

from ....config import ProviderConfig, ProviderType
from .anthropic_client import AnthropicProvider, BedrockProvider
from .base import BaseProvider, ProviderNotConfigured, ProviderOptions
from .openai_client import AzureProvider, GeminiProvider, OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDERS: Dict[ProviderType, Type[BaseProvider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.GEMINI: GeminiProvider,
    ProviderType.AZURE: AzureProvider,
    ProviderType.BEDROCK: BedrockProvider,
}


def new_provider(config: ProviderConfig, options: Optional[ProviderOptions] = None) -> BaseProvider:
    """Build the provider for `config.type` once; callers keep the instance."""
    try:
        provider_type = ProviderType(config.type)
    except ValueError as e:
        raise ProviderNotConfigured(f"provider not supported: {config.type}") from e
    provider_cls = PROVIDERS.get(provider_type)
    if provider_cls is None:
        raise ProviderNotConfigured(f"provider not supported: {config.type}")
    logger.info(f"Creating {provider_type.value} provider for {config.id}")
    return provider_cls(config, options)
