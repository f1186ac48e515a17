"""Per-client rate limiting for IdeaVerdict.

Fixed-window request counters keyed by client identity. State lives in the
process only; limits are best-effort per instance, not globally exact.

Example:
    >>> limiter = InMemoryRateLimiter(limit=15, window=60)
    >>> result = limiter.check("ip:203.0.113.7")
    >>> result.allowed, result.remaining
    (True, 14)

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from ideaverdict.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

# Sweep expired windows once the store holds more keys than this
DEFAULT_MAX_KEYS = 10_000


@dataclass
class RateLimitRecord:
    """Request count for one key inside its current window."""

    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    reset_in: float


class InMemoryRateLimiter:
    """Thread-safe in-memory fixed window rate limiter.

    The check-and-increment for a key happens under a single lock, so
    concurrent callers never lose updates. Expired windows are replaced on
    access and swept in bulk once the store outgrows ``max_keys``.
    """

    def __init__(
        self,
        limit: int = 15,
        window: float = 60,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Callable[[], float] = time.monotonic,
        store: Optional[dict[str, RateLimitRecord]] = None,
    ):
        """Initialize rate limiter.

        Args:
            limit: Maximum requests per window.
            window: Window size in seconds.
            max_keys: Store size past which expired windows are swept.
            clock: Monotonic time source.
            store: Backing map of key to record.
        """
        self.limit = limit
        self.window = window
        self.max_keys = max_keys
        self._clock = clock
        self._records: dict[str, RateLimitRecord] = store if store is not None else {}
        self._lock = threading.Lock()

    def check(
        self, key: str, limit: int | None = None, window: float | None = None
    ) -> RateLimitResult:
        """Count a request against ``key`` and report whether it is allowed."""
        limit = self.limit if limit is None else limit
        window = self.window if window is None else window

        with self._lock:
            now = self._clock()

            if len(self._records) > self.max_keys:
                self._sweep(now)

            record = self._records.get(key)
            if record is None or record.window_reset_at <= now:
                self._records[key] = RateLimitRecord(count=1, window_reset_at=now + window)
                return RateLimitResult(allowed=True, remaining=limit - 1, reset_in=window)

            reset_in = record.window_reset_at - now
            if record.count >= limit:
                return RateLimitResult(allowed=False, remaining=0, reset_in=reset_in)

            record.count += 1
            return RateLimitResult(
                allowed=True, remaining=limit - record.count, reset_in=reset_in
            )

    def check_or_raise(self, key: str) -> RateLimitResult:
        """Check rate limit and raise if exceeded.

        Raises:
            RateLimitExceeded: If rate limit is exceeded.
        """
        result = self.check(key)
        if not result.allowed:
            raise RateLimitExceeded(key, result.reset_in)
        return result

    def _sweep(self, now: float) -> None:
        expired = [k for k, r in self._records.items() if r.window_reset_at <= now]
        for k in expired:
            del self._records[k]
        logger.debug(f"Rate limiter swept {len(expired)} expired keys")

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def __len__(self) -> int:
        return len(self._records)

    def get_stats(self) -> dict:
        """Get rate limiter statistics."""
        with self._lock:
            return {
                "backend": "memory",
                "active_keys": len(self._records),
                "limit": self.limit,
                "window": self.window,
            }
