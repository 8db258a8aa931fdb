"""Request helpers: input sanitizing, fingerprints, caller identity, timing."""

from __future__ import annotations

import hashlib
import re
import time
from collections.abc import Mapping
from datetime import datetime, timedelta

MAX_PROMPT_CHARS = 5000

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")


def sanitize_input(text: str) -> str:
    """Strip script blocks and markup, trim, and cap at MAX_PROMPT_CHARS."""
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    return text.strip()[:MAX_PROMPT_CHARS]


def fingerprint(text: str) -> str:
    """SHA-256 hex digest of the text, used as the cache key."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def caller_identity(
    headers: Mapping[str, str],
    client_host: str | None = None,
    trust_proxy_headers: bool = False,
) -> str:
    """
    Derive the quota/rate-limit partition key from the request origin.

    By default only the socket peer address counts; forwarding headers are
    client-controlled. Behind a trusted proxy, ``cf-connecting-ip`` and
    then the leftmost ``x-forwarded-for`` entry take precedence over the
    peer. Requests with no address at all share the ``ip_unknown`` bucket.
    """
    ip = None
    if trust_proxy_headers:
        ip = headers.get("cf-connecting-ip")
        if not ip:
            forwarded = headers.get("x-forwarded-for", "")
            ip = forwarded.split(",")[0].strip() or None
    ip = ip or client_host or "unknown"
    return f"ip_{ip.replace('.', '_')}"


def next_local_midnight(now: datetime | None = None) -> datetime:
    """
    The next midnight after ``now``, timezone-aware.

    Defaults to the server's local time. An aware ``now`` keeps its own
    timezone; a naive one is taken as server-local.
    """
    now = now or datetime.now()
    if now.tzinfo is None:
        now = now.astimezone()
    tomorrow = now + timedelta(days=1)
    return tomorrow.replace(hour=0, minute=0, second=0, microsecond=0)


def elapsed_ms(start: float) -> int:
    """Milliseconds since ``start`` (a time.perf_counter() reading)."""
    return int((time.perf_counter() - start) * 1000)
