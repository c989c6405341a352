"""
File Analysis Cache - in-memory, content-addressed analysis results.

Entries are keyed by the SHA-256 of the file bytes plus the OWASP edition,
so renaming or copying a file still hits the cache while any edit misses.
Features:
- TTL expiry (an expired entry counts as one miss and is dropped)
- Bounded size with oldest-first batch eviction
- Thread-safe operations (one lock around every read and write)
- Hit/miss/eviction statistics
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from owasp_scanner.models import AnalysisResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_SIZE = 1000


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def make_key(content_hash: str, ruleset_version: str) -> str:
    return f"{content_hash}:{ruleset_version}"


@dataclass(frozen=True)
class CacheEntry:
    result: AnalysisResult
    content_hash: str
    timestamp: float


@dataclass(frozen=True)
class CacheStatistics:
    size: int
    hits: int
    misses: int
    evictions: int

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Union[int, float]]:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
            "total_requests": self.total_requests,
        }


class FileAnalysisCache:
    """Thread-safe cache of ``AnalysisResult`` objects.

    Args:
        ttl_seconds: Age after which an entry is treated as absent.
        max_size: Maximum number of entries.  Inserting a new key into a
            full cache first evicts the oldest ``max(1, max_size // 10)``
            entries.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # -- Path-based API --

    def get(self, file_path: Union[str, Path], ruleset_version: str) -> Optional[AnalysisResult]:
        """Return the cached result for the current contents of *file_path*."""
        try:
            data = Path(file_path).read_bytes()
        except OSError as e:
            logger.debug("Cache lookup could not read %s: %s", file_path, e)
            with self._lock:
                self._misses += 1
            return None
        return self.get_by_content(data, ruleset_version)

    def put(self, file_path: Union[str, Path], ruleset_version: str, result: AnalysisResult) -> None:
        try:
            data = Path(file_path).read_bytes()
        except OSError as e:
            logger.warning("Not caching %s: %s", file_path, e)
            return
        self.put_by_content(data, ruleset_version, result)

    # -- Content-based API --

    def get_by_content(self, data: bytes, ruleset_version: str) -> Optional[AnalysisResult]:
        key = make_key(compute_hash(data), ruleset_version)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry):
                del self._entries[key]
                self._misses += 1
                logger.debug("Cache entry %s expired", key[:16])
                return None
            self._hits += 1
            return entry.result

    def put_by_content(self, data: bytes, ruleset_version: str, result: AnalysisResult) -> None:
        content_hash = compute_hash(data)
        key = make_key(content_hash, ruleset_version)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest_unlocked()
            self._entries[key] = CacheEntry(result=result, content_hash=content_hash, timestamp=self._clock())

    # -- Maintenance --

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp > self.ttl_seconds

    def _evict_oldest_unlocked(self) -> None:
        count = max(1, self.max_size // 10)
        oldest = sorted(self._entries, key=lambda k: self._entries[k].timestamp)[:count]
        for key in oldest:
            del self._entries[key]
        self._evictions += len(oldest)
        logger.debug("Evicted %d cache entries", len(oldest))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def clear_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Removed %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def statistics(self) -> CacheStatistics:
        with self._lock:
            return CacheStatistics(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "DEFAULT_MAX_SIZE",
    "CacheEntry",
    "CacheStatistics",
    "FileAnalysisCache",
    "compute_hash",
    "make_key",
]
