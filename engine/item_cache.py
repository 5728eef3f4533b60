"""Process-wide cache of canonical items keyed by media type and canonical id."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, NamedTuple

from config.settings import ITEM_CACHE_MAX_ENTRIES, ITEM_CACHE_TTL_SECONDS
from engine.canonical_ids import item_key
from metadata.types import CanonicalItem, MediaType

logger = logging.getLogger(__name__)


class CacheEntry(NamedTuple):
    item: CanonicalItem
    expires_at: float


class ItemCache:
    """Bounded TTL map. Expired entries are dropped on the read that finds them.

    Hits return the stored object itself, never a copy, and never refresh the
    entry. When the count bound is exceeded the oldest-inserted entries go
    first.
    """

    def __init__(
        self,
        *,
        max_entries: int = ITEM_CACHE_MAX_ENTRIES,
        ttl_seconds: float = ITEM_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max(1, int(max_entries))
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[tuple[str, str], CacheEntry] = OrderedDict()

    def get(self, item_id: str, media_type: MediaType) -> CanonicalItem | None:
        key = item_key(media_type, item_id)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                self._entries.pop(key, None)
                logger.debug("[ITEM_CACHE] expired type=%s id=%s", *key)
                return None
            return entry.item

    def has(self, item_id: str, media_type: MediaType) -> bool:
        return self.get(item_id, media_type) is not None

    def set(self, item: CanonicalItem, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        entry = CacheEntry(item=item, expires_at=self._clock() + ttl)
        with self._lock:
            # Replacing keeps the original insertion position.
            self._entries[item_key(item.type, item.id)] = entry
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("[ITEM_CACHE] evicted type=%s id=%s", *evicted_key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

