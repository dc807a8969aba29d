from __future__ import annotations

from typing import Mapping, Optional

MAX_RETRIES = 8
BASE_DELAY_MS = 2000
JITTER_RATIO = 0.2

# Only these statuses are retried with backoff; 401 is handled separately.
RETRYABLE_STATUS_CODES = frozenset({429, 500})


def backoff_delay_ms(attempt: int) -> int:
    """Exponential backoff for the given 1-based attempt, plus 20% jitter."""
    backoff = BASE_DELAY_MS * (1 << (max(attempt, 1) - 1))
    return backoff + int(backoff * JITTER_RATIO)


def retry_after_ms(headers: Optional[Mapping[str, str]]) -> Optional[int]:
    """Parse an integer-seconds Retry-After header into milliseconds."""
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if not value:
        return None
    try:
        return int(value.strip()) * 1000
    except ValueError:
        return None
