"""TTL response cache for upstream model results.

A best-effort cost-reduction cache keyed by a content fingerprint. Two
concurrent identical requests may both miss and both call upstream; the
cache makes no deduplication promise.

Example:
    >>> cache = ResponseCache(ttl=300)
    >>> key = fingerprint("struct", "My idea is ...")
    >>> cache.put(key, '{"structured": {...}}')
    >>> cache.get(key)
    '{"structured": {...}}'

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
DEFAULT_MAX_ENTRIES = 500
FINGERPRINT_FIELD_CAP = 500

_WHITESPACE = re.compile(r"\s+")


@dataclass
class CacheEntry:
    """A cached payload and when it was stored."""

    payload: str
    stored_at: float


def normalize_field(value: str | None, cap: int = FINGERPRINT_FIELD_CAP) -> str:
    """Lowercase, trim, collapse whitespace and cap a field for fingerprinting."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.lower()).strip()[:cap]


def fingerprint(namespace: str, *fields: str | None, extra: Iterable[str] = ()) -> str:
    """Derive a fixed-size, non-reversible cache key from request content.

    Args:
        namespace: Capability prefix so different handlers never collide.
        *fields: Semantically relevant request fields.
        extra: Additional discriminators (e.g., a verdict category).

    Returns:
        ``"<namespace>_<sha256 hex>"``.
    """
    parts = [normalize_field(f) for f in fields]
    parts.extend(normalize_field(e) for e in extra)
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"{namespace}_{digest}"


class ResponseCache:
    """Thread-safe in-memory TTL cache with a soft size cap.

    Entries older than ``ttl`` are treated as absent and removed when read.
    When the store grows past ``max_entries`` a put first sweeps expired
    entries, then drops the oldest until back under the cap.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        store: Optional[dict[str, CacheEntry]] = None,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = store if store is not None else {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> str | None:
        """Return the payload for ``key`` if present and fresh."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() - entry.stored_at >= self.ttl:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.payload

    def put(self, key: str, payload: str) -> None:
        """Store ``payload`` under ``key``, overwriting any previous entry."""
        with self._lock:
            now = self._clock()
            if len(self._entries) >= self.max_entries and key not in self._entries:
                self._evict(now)
            self._entries[key] = CacheEntry(payload=payload, stored_at=now)

    def _evict(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if now - e.stored_at >= self.ttl]
        for k in expired:
            del self._entries[k]

        overflow = len(self._entries) - self.max_entries + 1
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].stored_at)
            for k, _ in oldest[:overflow]:
                del self._entries[k]

        logger.debug(
            f"Cache eviction: {len(expired)} expired, {max(overflow, 0)} oldest dropped"
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "ttl": self.ttl,
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
            }
