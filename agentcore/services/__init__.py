"""
Service layer exposing the agent request coordinator
"""

from .agent_service import AgentService

__all__ = ["AgentService"]
