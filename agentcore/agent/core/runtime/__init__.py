"""
Agent runtime: turn loop, tool dispatch, usage accounting and summarization
"""

from .accountant import UsageAccountant, compute_cost
from .dispatcher import ToolDispatcher
from .models import ModelBinding
from .summarizer import Summarizer
from .turn_loop import TurnLoop

__all__ = [
    "ModelBinding",
    "Summarizer",
    "ToolDispatcher",
    "TurnLoop",
    "UsageAccountant",
    "compute_cost",
]
