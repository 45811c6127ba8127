"""
Bounded insertion-ordered cache.

Entries never expire on their own; the oldest-inserted entry is evicted
once the cache is full, and the owner clears it when the data it was
derived from is replaced.
"""

import threading
from collections import OrderedDict
from typing import Any, Dict, Hashable, Optional


class BoundedCache:
    """Thread-safe FIFO cache with a max size limit."""

    def __init__(self, maxsize: int = 20):
        if maxsize <= 0:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self._cache: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            if key in self._cache:
                self._hits += 1
                return self._cache[key]
            self._misses += 1
            return None

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._cache

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._cache:
                # Re-setting keeps the original insertion position
                self._cache[key] = value
                return
            while len(self._cache) >= self._maxsize:
                self._cache.popitem(last=False)
            self._cache[key] = value

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        return {
            'size': len(self._cache),
            'maxsize': self._maxsize,
            'hits': self._hits,
            'misses': self._misses,
        }
