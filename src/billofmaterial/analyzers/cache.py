"""In-memory response cache scoped to one analysis run."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Hashable

logger = logging.getLogger(__name__)


class ResponseCache:
    """Keyed TTL store shared by every in-flight task of one run.

    All reads and writes go through an ``asyncio.Lock`` so concurrent tasks
    never observe a half-evicted store.
    """

    def __init__(self, ttl_seconds: float = 300.0, max_entries: int = 1024) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, key: Hashable) -> tuple[bool, Any]:
        """Return ``(found, value)`` for a key, dropping it if expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return False, None
            stored_at, value = entry
            if time.monotonic() - stored_at > self._ttl:
                del self._entries[key]
                self.misses += 1
                return False, None
            self.hits += 1
            return True, value

    async def set(self, key: Hashable, value: Any) -> None:
        async with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict()
            self._entries[key] = (time.monotonic(), value)

    def _evict(self) -> None:
        """Drop expired entries, then the oldest until under the size limit."""
        now = time.monotonic()
        for key in [k for k, (ts, _) in self._entries.items() if now - ts > self._ttl]:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]
        logger.debug(f"Cache evicted down to {len(self._entries)} entries")

    def __len__(self) -> int:
        return len(self._entries)
