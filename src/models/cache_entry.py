# src/models/cache_entry.py

"""Cache entry model shared by all cache scopes."""

from dataclasses import dataclass
from typing import Any

SCOPE_PROCESS = "process"
SCOPE_GLOBAL = "global"
SCOPE_CALLER = "caller"


@dataclass
class CacheEntry:
    """A cached payload for one (scope, key) pair."""

    scope: str
    key: str
    payload: dict[str, Any]
    fetched_at: float
    expires_at: float
    source: str = ""

    def is_fresh(self, now: float) -> bool:
        """True while the entry is within its TTL."""
        return now < self.expires_at
