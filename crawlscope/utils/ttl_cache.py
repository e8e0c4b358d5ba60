from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Generic, Optional, TypeVar


K = TypeVar('K')
V = TypeVar('V')

_MISSING = object()


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int


class TTLCache(Generic[K, V]):
    """Small in-process TTL cache with LRU eviction.

    - Best-effort only (safe to lose on restart)
    - Thread-safe
    - Stores ``None`` values (a negative lookup is still a lookup)
    - ``clock`` is injectable so expiry can be tested without sleeping
    """

    def __init__(self, ttl_seconds: float = 60, max_items: int = 2048, clock: Callable[[], float] = time.monotonic):
        self._ttl = max(0.001, float(ttl_seconds))
        self._max = max(1, int(max_items))
        self._clock = clock
        self._data: OrderedDict[K, _Entry[V]] = OrderedDict()
        self._lock = RLock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def _lookup(self, key: K):
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None or entry.expires_at <= now:
                if entry is not None:
                    self._data.pop(key, None)
                self._misses += 1
                return _MISSING
            self._data.move_to_end(key)
            self._hits += 1
            return entry.value

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: K, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self._ttl if ttl_seconds is None else max(0.001, float(ttl_seconds))
        expires_at = self._clock() + ttl
        with self._lock:
            self._data[key] = _Entry(value=value, expires_at=expires_at)
            self._data.move_to_end(key)
            if len(self._data) > self._max:
                self._prune_locked()
            while len(self._data) > self._max:
                self._data.popitem(last=False)

    def get_or_set(self, key: K, factory: Callable[[], V], ttl_seconds: Optional[float] = None) -> V:
        existing = self._lookup(key)
        if existing is not _MISSING:
            return existing
        value = factory()
        self.set(key, value, ttl_seconds=ttl_seconds)
        return value

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, size=len(self._data))

    def _prune_locked(self) -> None:
        now = self._clock()
        expired = [k for k, v in self._data.items() if v.expires_at <= now]
        for k in expired:
            self._data.pop(k, None)
