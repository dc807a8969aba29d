from __future__ import annotations

import logging

from ....config import CatalogModel
from ...errors import AgentError
from ...services import SessionStore
from ..llm.base import TokenUsage

logger = logging.getLogger(__name__)


def compute_cost(model: CatalogModel, usage: TokenUsage) -> float:
    """Price one turn against the model's per-million-token rates."""
    return (
        model.cost_per_1m_in_cached / 1e6 * usage.cache_creation_tokens
        + model.cost_per_1m_out_cached / 1e6 * usage.cache_read_tokens
        + model.cost_per_1m_in / 1e6 * usage.input_tokens
        + model.cost_per_1m_out / 1e6 * usage.output_tokens
    )


class UsageAccountant:
    """Folds per-turn usage into the session record.

    Cost accumulates across turns. Token counters describe the latest turn:
    they are the size of the context the model just saw and produced, which is
    what callers use to decide when to summarize.
    """

    def __init__(self, sessions: SessionStore):
        self.sessions = sessions

    async def track_usage(self, session_id: str, model: CatalogModel, usage: TokenUsage) -> None:
        try:
            session = await self.sessions.get(session_id)
        except Exception as e:
            raise AgentError(f"failed to get session: {e}") from e

        cost = compute_cost(model, usage)
        session.cost += cost
        session.completion_tokens = usage.output_tokens + usage.cache_read_tokens
        session.prompt_tokens = usage.input_tokens + usage.cache_creation_tokens

        try:
            await self.sessions.save(session)
        except Exception as e:
            raise AgentError(f"failed to save session: {e}") from e
        logger.debug(f"Session {session_id} cost +{cost:.6f} (total {session.cost:.6f})")
