"""
Tests for provider construction by type
"""

from unittest.mock import MagicMock

import anthropic
import pytest

from agentcore.agent.core.llm import ProviderNotConfigured, ProviderOptions, new_provider
from agentcore.agent.core.llm.anthropic_client import AnthropicProvider, BedrockProvider
from agentcore.agent.core.llm.openai_client import AzureProvider, GeminiProvider, OpenAIProvider
from agentcore.config import ProviderType
from agentcore.core.resolver import EnvironmentResolver
from conftest import provider_config


@pytest.mark.parametrize("provider_type, expected", [
    (ProviderType.OPENAI, OpenAIProvider),
    (ProviderType.ANTHROPIC, AnthropicProvider),
    (ProviderType.GEMINI, GeminiProvider),
    (ProviderType.AZURE, AzureProvider),
    (ProviderType.BEDROCK, BedrockProvider),
])
def test_new_provider_by_type(monkeypatch, provider_type, expected):
    monkeypatch.setattr(anthropic, "AsyncAnthropicBedrock", MagicMock())
    config = provider_config(type=provider_type, base_url="https://example.test")

    provider = new_provider(config, ProviderOptions(system_message="hi"))

    assert type(provider) is expected
    assert provider.config is config


def test_missing_api_key_reference():
    config = provider_config(api_key="$AGENTCORE_MISSING_KEY")

    with pytest.raises(ProviderNotConfigured):
        new_provider(config, ProviderOptions(resolver=EnvironmentResolver({})))
