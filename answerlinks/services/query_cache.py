"""Keyed query cache for registry reads made by the admin surface.

Entries are only ever replaced by a fresh fetch; mutations invalidate by key
prefix and the next read refetches from the registry.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("answerlinks.query_cache")

QueryKey = tuple

# Recent invalidated prefixes kept for inspection; older ones fall off.
INVALIDATION_HISTORY = 100


def links_key(subject_path: str, subject_id: str, trainee_ids: Optional[list[str]] = None) -> QueryKey:
    return (subject_path, "answer-links", subject_id, ",".join(trainee_ids or []))


def answered_key(subject_path: str, subject_id: str) -> QueryKey:
    return (subject_path, "answered-trainees", subject_id)


@dataclass
class CacheEntry:
    data: Any
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stale: bool = False


class QueryCache:
    """Thread-safe cache of query results keyed by tuples."""

    def __init__(self, history: int = INVALIDATION_HISTORY):
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self.invalidations: deque[QueryKey] = deque(maxlen=history)

    def get(self, key: QueryKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    async def fetch(self, key: QueryKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return cached data for ``key``, loading it when missing or stale."""
        entry = self.get(key)
        if entry is not None and not entry.stale:
            return entry.data
        data = await loader()
        with self._lock:
            self._entries[key] = CacheEntry(data=data)
        return data

    def invalidate(self, prefix: QueryKey) -> int:
        """Mark every entry whose key starts with ``prefix`` stale. Returns the match count."""
        prefix = tuple(prefix)
        with self._lock:
            self.invalidations.append(prefix)
            matched = 0
            for key, entry in self._entries.items():
                if key[: len(prefix)] == prefix:
                    entry.stale = True
                    matched += 1
        logger.debug("Invalidated %d queries for %s", matched, prefix)
        return matched

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.invalidations.clear()


# Global instance
query_cache = QueryCache()
