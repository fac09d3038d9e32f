"""
In-process TTL cache for search responses.

There is no write-side invalidation: an entry may be up to ``ttl`` seconds
stale.
"""

from __future__ import annotations

import copy
import dataclasses
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    hit_rate: float
    oldest_entry: Optional[float]
    newest_entry: Optional[float]


def _json_default(obj):
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj):
        return dataclasses.asdict(obj)
    return str(obj)


def cache_key(query: str, options) -> str:
    """SHA-256 over the query and a canonical JSON rendering of ``options``."""
    payload = dataclasses.asdict(options) if dataclasses.is_dataclass(options) else options
    canonical = json.dumps(payload, sort_keys=True, default=_json_default, separators=(",", ":"))
    return hashlib.sha256(f"{query}\x1f{canonical}".encode("utf-8")).hexdigest()


class SearchCache:
    """
    Entries are kept in insertion order, which is also expiry order, so
    :meth:`put` drops stale entries from the front and evicts the oldest
    once ``max_entries`` is reached.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        *,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is not None:
            stored_at, value = entry
            if self._clock() - stored_at < self.ttl:
                self.hits += 1
                return copy.deepcopy(value)
            del self._entries[key]
        self.misses += 1
        return None

    def put(self, key: str, value: Any) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        self._prune(now)
        while len(self._entries) >= self.max_entries:
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (now, copy.deepcopy(value))

    def _prune(self, now: float) -> None:
        expired = []
        for key, (stored_at, _) in self._entries.items():
            if now - stored_at < self.ttl:
                break
            expired.append(key)
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired search cache entries", len(expired))

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Search cache cleared")

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def stats(self) -> CacheStats:
        stamps = [t for t, _ in self._entries.values()]
        return CacheStats(
            size=len(self._entries),
            hits=self.hits,
            misses=self.misses,
            hit_rate=self.hit_rate,
            oldest_entry=min(stamps, default=None),
            newest_entry=max(stamps, default=None),
        )


__all__ = ["SearchCache", "CacheStats", "cache_key"]
