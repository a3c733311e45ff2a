"""
Request-to-model correlation.

Remembers which model served a request id, announced by a log line that
arrives before the request's completion line.
"""

import threading
from collections import OrderedDict
from typing import Optional

DEFAULT_CAPACITY = 1000


class CorrelationCache:
    """Bounded, thread-safe map from request id to model name.

    When the ceiling is exceeded the oldest-inserted half is evicted in one
    pass. This is approximate LRU: lookups do not refresh an entry.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 2:
            raise ValueError("capacity must be >= 2")
        self.capacity = capacity
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, request_id: str, model: str) -> None:
        with self._lock:
            self._entries[request_id] = model
            if len(self._entries) > self.capacity:
                for _ in range(self.capacity // 2):
                    self._entries.popitem(last=False)

    def get(self, request_id: str) -> Optional[str]:
        """Look up a model without removing the entry."""
        with self._lock:
            return self._entries.get(request_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._entries
