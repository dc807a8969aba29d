from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ....config import AgentModel, CatalogModel
from ..llm.base import BaseProvider


@dataclass
class ModelBinding:
    """A built provider together with the model selection it serves."""
    provider: BaseProvider
    selection: AgentModel

    @property
    def model_id(self) -> str:
        return self.selection.model

    @property
    def provider_id(self) -> str:
        return self.selection.provider

    def catalog_model(self) -> Optional[CatalogModel]:
        return self.provider.model(self.selection.model)
