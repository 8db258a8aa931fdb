"""
In-process implementation of the usage counter store.

Suitable for a single server process. Every operation runs under one
asyncio lock, which gives per-key read-then-write atomicity for all requests
handled by the same event loop. Expired keys are dropped lazily on access.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from promptforge.store.base import UsageStore


class InMemoryUsageStore(UsageStore):
    """
    Dictionary-backed UsageStore with time-to-live.

    Args:
        clock: Monotonic time source in seconds (injectable for tests)

    Example:
        >>> store = InMemoryUsageStore()
        >>> await store.increment("llm_usage:gemini:2025-01-01", ttl_seconds=86400)
        1
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _read(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def _write(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._read(key)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._write(key, value, ttl_seconds)

    async def increment(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            current = self._read(key)
            count = (int(current) if current else 0) + 1
            self._write(key, str(count), ttl_seconds)
            return count

    def __len__(self) -> int:
        """Number of live (unexpired) keys."""
        now = self._clock()
        return sum(1 for _, expires_at in self._entries.values() if now < expires_at)
