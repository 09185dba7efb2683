"""Bounded in-memory TTL cache used for lyrics lookups and parked auth tokens."""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import RLock
from typing import Any, Callable, Hashable, List, Tuple

MISSING = object()


class TTLCache:
    """Thread-safe TTL cache with LRU eviction.

    Instances are created per run and passed to the components that need them,
    so a test can hand in a fresh cache (or a fake clock) and get deterministic
    behaviour.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.maxsize = maxsize
        self.ttl = ttl
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()
        self._lock = RLock()

    def _evict_expired(self) -> None:
        now = self._clock()
        expired_keys = [key for key, (_, expiry) in self._data.items() if expiry <= now]
        for key in expired_keys:
            self._data.pop(key, None)

    def get(self, key: Hashable, default: Any = MISSING) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            value, expiry = entry
            if expiry <= self._clock():
                self._data.pop(key, None)
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            expiry = self._clock() + self.ttl
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (value, expiry)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def discard(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[Hashable]:
        with self._lock:
            self._evict_expired()
            return list(self._data.keys())

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, MISSING) is not MISSING

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._data)


__all__ = ["TTLCache", "MISSING"]
