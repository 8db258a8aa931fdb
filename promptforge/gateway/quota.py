"""
Quota, cache and rate-limit gates in front of the orchestrator.

QuotaGate (refine path only):
    1. Daily free-request quota per caller. Fails fast at the ceiling
       without touching the counter; otherwise increments it.
    2. Fingerprint cache of full refine responses, one hour TTL.

    The quota is consumed *before* the cache is consulted, so a cache hit
    still costs one of the day's free requests.

    Both steps apply only to server-key traffic with a usage store present.
    Requests carrying their own API key are unlimited and never cached, so
    one caller's key-specific output cannot be served to another caller.

RateLimiter (every /api/* route):
    Fixed window of N requests per caller per hour.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from promptforge.config.logging import get_logger
from promptforge.config.settings import QuotaSettings
from promptforge.gateway.utils import fingerprint, next_local_midnight
from promptforge.store.base import UsageStore, usage_bucket

logger = get_logger(__name__)

# Reported as quota_remaining when no quota applies.
UNLIMITED_REMAINING = 999

_DAILY_QUOTA_TTL_SECONDS = 86400


class QuotaExceeded(Exception):
    """The caller used up today's free refine requests."""

    def __init__(self, limit: int, reset_time: datetime):
        super().__init__(
            f"Daily limit reached ({limit} free requests/day). "
            "Please provide your own API key in Settings for unlimited access."
        )
        self.limit = limit
        self.reset_time = reset_time


class RateLimitExceeded(Exception):
    """The caller sent too many requests in the current window."""

    def __init__(self, window_seconds: int):
        hours = window_seconds // 3600
        window = f"{hours} hour" if hours == 1 else f"{window_seconds} seconds"
        super().__init__(f"Rate limit exceeded. Try again in {window}.")
        self.window_seconds = window_seconds


class QuotaStatus(BaseModel):
    """Outcome of a successful quota check."""

    limited: bool
    remaining: int

    model_config = ConfigDict(frozen=True)


class QuotaGate:
    """
    Daily quota and refine result cache.

    Args:
        store: Usage counter store; None bypasses the gate entirely
        settings: Daily limit and cache TTL
    """

    def __init__(self, store: UsageStore | None, settings: QuotaSettings):
        self._store = store
        self._settings = settings

    def applies(self, user_api_key: str | None) -> bool:
        """True when this request is subject to quota and caching."""
        has_user_key = bool(user_api_key and user_api_key.strip())
        return self._store is not None and not has_user_key

    @staticmethod
    def quota_key(caller_id: str, now: datetime | None = None) -> str:
        return f"daily_quota:{caller_id}:{usage_bucket(now)}"

    @staticmethod
    def cache_key(prompt: str) -> str:
        return f"prompt:{fingerprint(prompt)}"

    async def consume(self, caller_id: str, user_api_key: str | None = None) -> QuotaStatus:
        """
        Charge one request against the caller's daily quota.

        Raises:
            QuotaExceeded: If the caller already used every free request today.
                The counter is left unchanged.
        """
        if not self.applies(user_api_key):
            return QuotaStatus(limited=False, remaining=UNLIMITED_REMAINING)

        limit = self._settings.daily_free_requests
        key = self.quota_key(caller_id)
        used = await self._store.get_count(key)
        if used >= limit:
            logger.info(f"Daily quota exhausted for {caller_id} ({used}/{limit})")
            raise QuotaExceeded(limit, next_local_midnight())

        used = await self._store.increment(key, ttl_seconds=_DAILY_QUOTA_TTL_SECONDS)
        return QuotaStatus(limited=True, remaining=max(0, limit - used))

    async def lookup(self, prompt: str, user_api_key: str | None = None) -> dict[str, Any] | None:
        """Return the cached refine response for this prompt, if any."""
        if not self.applies(user_api_key):
            return None
        cached = await self._store.get_json(self.cache_key(prompt))
        if cached is not None:
            logger.debug("Refine cache hit")
        return cached

    async def remember(
        self,
        prompt: str,
        payload: dict[str, Any],
        user_api_key: str | None = None,
    ) -> None:
        """Cache a fresh refine response. No-op for caller-key requests."""
        if not self.applies(user_api_key):
            return
        await self._store.put_json(
            self.cache_key(prompt),
            payload,
            ttl_seconds=self._settings.cache_ttl_seconds,
        )


class RateLimiter:
    """
    Fixed-window request limiter keyed by caller identity.

    A request is rejected when the stored count already exceeds the limit,
    so the window admits ``limit + 1`` requests before the first 429.
    """

    def __init__(self, store: UsageStore | None, settings: QuotaSettings):
        self._store = store
        self._settings = settings

    async def check(self, caller_id: str) -> None:
        """
        Count this request against the caller's window.

        Raises:
            RateLimitExceeded: If the window is already over the limit
        """
        if self._store is None:
            return

        key = f"ratelimit:{caller_id}"
        count = await self._store.get_count(key)
        if count > self._settings.rate_limit_per_hour:
            logger.warning(f"Rate limit exceeded for {caller_id} ({count} requests)")
            raise RateLimitExceeded(self._settings.rate_limit_window_seconds)

        await self._store.increment(key, ttl_seconds=self._settings.rate_limit_window_seconds)
