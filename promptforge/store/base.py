"""
Usage counter store contract.

The quota gate, rate limiter and orchestrator share one key/value store with
per-key time-to-live. Counters are never decremented and never explicitly
reset: a counter starts over only when its key expires.

Key layout:
    ratelimit:{caller}                  per-hour request window
    daily_quota:{caller}:{YYYY-MM-DD}   free refine requests per day
    llm_usage:{provider}:{YYYY-MM-DD}   server-key calls per provider per day
    prompt:{sha256}                     cached refine responses
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any


def usage_bucket(now: datetime | None = None) -> str:
    """Calendar-day bucket (UTC) used in daily counter keys."""
    now = now or datetime.now(UTC)
    return now.strftime("%Y-%m-%d")


class UsageStore(ABC):
    """
    Abstract key/value store with per-key expiry.

    Implementations must make ``increment`` atomic per key from the caller's
    point of view. A store that can only offer eventual consistency turns
    every ceiling built on it into a soft limit.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if missing or expired."""

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key``, replacing any previous value and expiry."""

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: int) -> int:
        """
        Add one to the integer counter under ``key`` and return the new value.

        A missing or expired key counts as zero. The expiry is refreshed to
        ``ttl_seconds`` on every increment.
        """

    async def get_count(self, key: str) -> int:
        """Read an integer counter; missing keys read as zero."""
        value = await self.get(key)
        return int(value) if value else 0

    async def get_json(self, key: str) -> dict[str, Any] | None:
        value = await self.get(key)
        return json.loads(value) if value else None

    async def put_json(self, key: str, payload: dict[str, Any], ttl_seconds: int) -> None:
        await self.put(key, json.dumps(payload), ttl_seconds)
