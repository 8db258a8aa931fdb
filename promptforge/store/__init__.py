"""
Storage Layer.

- UsageStore / InMemoryUsageStore: TTL key/value store backing quotas,
  rate limits, provider usage counters and the refine result cache.
- SessionStore: SQLite-backed history of refine/generate sessions.
"""

from promptforge.store.base import UsageStore, usage_bucket
from promptforge.store.memory import InMemoryUsageStore
from promptforge.store.sessions import SessionNotFoundError, SessionStore

__all__ = [
    "UsageStore",
    "InMemoryUsageStore",
    "SessionStore",
    "SessionNotFoundError",
    "usage_bucket",
]
