"""Bounded in-process cache for question lists fetched from the ENEM API."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Mapping


@dataclass(frozen=True)
class CacheKey:
    year: int
    options: tuple[tuple[str, Any], ...]
    fetch_all: bool


def make_cache_key(year: int, options: Mapping[str, Any] | None, fetch_all: bool) -> CacheKey:
    """Build a stable key; ``None`` valued options are ignored."""

    cleaned = tuple(
        sorted((name, value) for name, value in (options or {}).items() if value is not None)
    )
    return CacheKey(year=int(year), options=cleaned, fetch_all=bool(fetch_all))


class QuestionCache:
    """LRU cache with optional expiry and per-year invalidation."""

    def __init__(
        self,
        *,
        max_entries: int = 32,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds or None
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def put(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, year: int | None = None) -> int:
        """Drop every entry, or only the ones for ``year``. Returns the count removed."""

        with self._lock:
            if year is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            stale = [key for key in self._entries if key.year == int(year)]
            for key in stale:
                del self._entries[key]
            return len(stale)


__all__ = ["CacheKey", "QuestionCache", "make_cache_key"]
