"""
Configuration models for agentcore

Provider and model catalog entries are validated pydantic models; process
level settings come from the environment (optionally via a .env file).
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported vendor families."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    AZURE = "azure"
    BEDROCK = "bedrock"


class CatalogModel(BaseModel):
    """A model entry from the provider catalog."""
    id: str = Field(description="Vendor model identifier")
    name: str = Field("", description="Display name")
    cost_per_1m_in: float = Field(0.0, ge=0)
    cost_per_1m_out: float = Field(0.0, ge=0)
    cost_per_1m_in_cached: float = Field(0.0, ge=0)
    cost_per_1m_out_cached: float = Field(0.0, ge=0)
    context_window: int = Field(0, ge=0)
    default_max_tokens: int = Field(4096, ge=0)
    can_reason: bool = False
    has_reasoning_effort: bool = False
    default_reasoning_effort: str = ""
    supports_images: bool = False


class ProviderExtraParams(BaseModel):
    """Vendor specific construction parameters. Unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid")

    api_version: Optional[str] = Field(None, description="Azure OpenAI API version")
    region: Optional[str] = Field(None, description="AWS region for Bedrock")
    project: Optional[str] = Field(None, description="Cloud project id")
    location: Optional[str] = Field(None, description="Cloud location")


class ProviderConfig(BaseModel):
    """Configuration of one model provider."""
    id: str
    name: str = ""
    base_url: str = ""
    type: ProviderType = ProviderType.OPENAI
    api_key: str = ""
    disable: bool = False
    system_prompt_prefix: str = ""
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    extra_body: Dict[str, Any] = Field(default_factory=dict)
    extra_params: ProviderExtraParams = Field(default_factory=ProviderExtraParams)
    models: List[CatalogModel] = Field(default_factory=list)

    def get_model(self, model_id: str) -> Optional[CatalogModel]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None


class AgentModel(BaseModel):
    """A model selection: which catalog model of which provider."""
    model: str
    provider: str
    reasoning_effort: str = ""
    think: bool = False
    max_tokens: int = Field(0, ge=0)


def load_provider_configs(data: Mapping[str, Mapping[str, Any]]) -> Dict[str, ProviderConfig]:
    """Validate a mapping of provider id to raw provider settings."""
    providers: Dict[str, ProviderConfig] = {}
    for provider_id, raw in data.items():
        values = dict(raw)
        values.setdefault("id", provider_id)
        provider = ProviderConfig.model_validate(values)
        if provider.disable:
            logger.info(f"Skipping disabled provider {provider_id}")
            continue
        providers[provider_id] = provider
    return providers


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentSettings:
    """Process level settings for the agent service."""
    debug: bool = False
    working_dir: str = field(default_factory=os.getcwd)
    cancel_all_timeout: float = 5.0
    cancel_all_poll_interval: float = 0.2
    event_queue_size: int = 64

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "AgentSettings":
        """Read settings from AGENT_* environment variables."""
        if dotenv:
            load_dotenv(override=False)
        settings = cls()
        settings.debug = _env_flag(os.getenv("AGENT_DEBUG"))
        settings.working_dir = os.getenv("AGENT_WORKING_DIR") or settings.working_dir
        timeout = os.getenv("AGENT_CANCEL_ALL_TIMEOUT")
        if timeout:
            settings.cancel_all_timeout = float(timeout)
        queue_size = os.getenv("AGENT_EVENT_QUEUE_SIZE")
        if queue_size:
            settings.event_queue_size = int(queue_size)
        return settings
