"""Per-identity fixed-window rate limiting with bounded, LRU-evicted state."""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from feedback_api.config import get_settings

# Shared bucket for clients with no address information at all
UNKNOWN_IDENTITY = "unknown"


@dataclass
class RateLimitEntry:
    """Request count for one identity within its current window."""

    count: int
    reset_at: float


class RateLimiter:
    """In-memory fixed-window counter keyed by client identity.

    Usage::

        limiter = RateLimiter(limit=10, window=60)
        if not limiter.admit("203.0.113.7"):
            ...  # reject with 429

    State is per process. Multi-instance deployments need a shared store
    to get a global guarantee.
    """

    def __init__(
        self,
        limit: int = 10,
        window: float = 60,
        max_identities: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window
        self._max_identities = max_identities
        self._clock = clock
        self._lock = threading.Lock()
        # OrderedDict preserves recency order for LRU eviction
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()

    def admit(self, identity: str) -> bool:
        """Return True if the request is allowed, False if rate limited."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(identity)

            if entry is None or now > entry.reset_at:
                self._entries[identity] = RateLimitEntry(
                    count=1, reset_at=now + self.window
                )
                self._entries.move_to_end(identity)
                self._evict()
                return True

            self._entries.move_to_end(identity)
            if entry.count >= self.limit:
                return False

            entry.count += 1
            return True

    def _evict(self) -> None:
        while len(self._entries) > self._max_identities:
            self._entries.popitem(last=False)

    def reset(self) -> None:
        """Forget every identity."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def client_identity(headers: Mapping[str, str], peer: str | None = None) -> str:
    """Derive the rate-limit key for a request.

    Prefers the first ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the
    direct peer address. Anything without an address shares the
    ``"unknown"`` bucket.
    """
    forwarded = headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop

    real_ip = headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return peer or UNKNOWN_IDENTITY


# Lazy singleton — lives for the process lifetime
_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter, configured from settings on first use."""
    global _limiter
    if _limiter is None:
        settings = get_settings()
        _limiter = RateLimiter(
            limit=settings.rate_limit_max,
            window=settings.rate_limit_window_seconds,
            max_identities=settings.rate_limit_max_identities,
        )
    return _limiter
