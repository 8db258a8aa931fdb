"""
Gateway Layer.

Per-caller protections that run before the orchestrator: hourly rate
limiting, the daily free-request quota, and the refine result cache.
"""

from promptforge.gateway.quota import (
    QuotaExceeded,
    QuotaGate,
    QuotaStatus,
    RateLimiter,
    RateLimitExceeded,
)

__all__ = [
    "QuotaGate",
    "QuotaStatus",
    "QuotaExceeded",
    "RateLimiter",
    "RateLimitExceeded",
]
