"""Usage counters consumed by external quota enforcement."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Dict, Optional


class Limit(str, Enum):
    COMMITS = "commits"


class UsageCounter:
    """Named counters. Incrementing never blocks or fails the caller's operation."""

    def __init__(self, maximums: Optional[Dict[Limit, int]] = None):
        self._counts: Dict[Limit, int] = {}
        self._maximums = dict(maximums or {})
        self._lock = threading.Lock()

    def increment(self, limit: Limit = Limit.COMMITS, amount: int = 1) -> None:
        with self._lock:
            self._counts[limit] = self._counts.get(limit, 0) + amount

    def get(self, limit: Limit = Limit.COMMITS) -> int:
        return self._counts.get(limit, 0)

    def is_limit_reached(self, limit: Limit = Limit.COMMITS) -> bool:
        maximum = self._maximums.get(limit)
        if maximum is None:
            return False
        return self.get(limit) >= maximum

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
