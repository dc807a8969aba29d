from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Session:
    id: str
    title: str = ""
    parent_session_id: Optional[str] = None
    message_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    summary_message_id: str = ""
    cost: float = 0.0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
