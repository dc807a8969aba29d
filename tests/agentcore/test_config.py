"""
Tests for configuration models and settings
"""

import pytest
from pydantic import ValidationError

from agentcore.config import (
    AgentSettings,
    CatalogModel,
    ProviderConfig,
    ProviderExtraParams,
    ProviderType,
    load_provider_configs,
)


def test_load_provider_configs_sets_ids_and_skips_disabled():
    providers = load_provider_configs({
        "anthropic": {
            "type": "anthropic",
            "api_key": "$ANTHROPIC_API_KEY",
            "models": [{"id": "claude-sonnet", "cost_per_1m_in": 3, "cost_per_1m_out": 15}],
        },
        "old": {"type": "openai", "disable": True},
    })

    assert list(providers) == ["anthropic"]
    provider = providers["anthropic"]
    assert provider.id == "anthropic"
    assert provider.type == ProviderType.ANTHROPIC
    assert provider.get_model("claude-sonnet").cost_per_1m_out == 15
    assert provider.get_model("missing") is None


def test_unknown_extra_params_are_rejected():
    with pytest.raises(ValidationError):
        ProviderExtraParams.model_validate({"region": "us-east-1", "zone": "a"})

    with pytest.raises(ValidationError):
        load_provider_configs({"bedrock": {"type": "bedrock", "extra_params": {"regoin": "us-east-1"}}})


def test_unknown_provider_type_is_rejected():
    with pytest.raises(ValidationError):
        ProviderConfig.model_validate({"id": "x", "type": "vertex"})


def test_catalog_model_defaults():
    model = CatalogModel(id="m")
    assert model.default_max_tokens == 4096
    assert model.supports_images is False
    assert model.cost_per_1m_in == 0.0


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("AGENT_DEBUG", "true")
    monkeypatch.setenv("AGENT_WORKING_DIR", str(tmp_path))
    monkeypatch.setenv("AGENT_CANCEL_ALL_TIMEOUT", "1.5")
    monkeypatch.setenv("AGENT_EVENT_QUEUE_SIZE", "8")

    settings = AgentSettings.from_env(dotenv=False)

    assert settings.debug is True
    assert settings.working_dir == str(tmp_path)
    assert settings.cancel_all_timeout == 1.5
    assert settings.event_queue_size == 8


def test_settings_defaults(monkeypatch):
    for name in ("AGENT_DEBUG", "AGENT_WORKING_DIR", "AGENT_CANCEL_ALL_TIMEOUT", "AGENT_EVENT_QUEUE_SIZE"):
        monkeypatch.delenv(name, raising=False)

    settings = AgentSettings.from_env(dotenv=False)

    assert settings.debug is False
    assert settings.cancel_all_timeout == 5.0
    assert settings.event_queue_size == 64
