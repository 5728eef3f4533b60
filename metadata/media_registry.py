"""Client-side registry of every canonical item seen during a session.

Items are merged on re-registration (see ``metadata.merge``) and evicted
strictly in insertion order once the cap is exceeded; reads never refresh an
entry's position. Entries are keyed by media type and id, since upstream ids
only need to be unique within one provider and type.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Iterable

from config.settings import MEDIA_REGISTRY_MAX_ITEMS, MEDIA_REGISTRY_PATH
from engine.canonical_ids import item_key
from metadata.merge import merge_items
from metadata.types import CanonicalItem, MediaType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    item: CanonicalItem
    inserted_at_seq: int


class MediaRegistry:
    def __init__(self, *, max_items: int = MEDIA_REGISTRY_MAX_ITEMS) -> None:
        self.max_items = max(1, int(max_items))
        self._lock = threading.Lock()
        self._entries: OrderedDict[tuple[str, str], RegistryEntry] = OrderedDict()
        self._next_seq = 0

    def get_item(self, item_id: str, media_type: MediaType | None = None) -> CanonicalItem | None:
        """Look up an item; without ``media_type`` the oldest entry with that id wins."""
        with self._lock:
            if media_type is not None:
                entry = self._entries.get(item_key(media_type, item_id))
                return entry.item if entry else None
            for (_type, entry_id), entry in self._entries.items():
                if entry_id == item_id:
                    return entry.item
            return None

    def register_item(self, item: CanonicalItem) -> CanonicalItem:
        with self._lock:
            merged = self._register_locked(item)
            self._evict_locked()
            return merged

    def register_items(self, items: Iterable[CanonicalItem]) -> None:
        with self._lock:
            for item in items:
                self._register_locked(item)
            self._evict_locked()

    def _register_locked(self, item: CanonicalItem) -> CanonicalItem:
        key = item_key(item.type, item.id)
        entry = self._entries.get(key)
        if entry is not None:
            merged = merge_items(entry.item, item)
            if merged is not entry.item:
                # Position in the FIFO order is kept on update.
                self._entries[key] = RegistryEntry(merged, entry.inserted_at_seq)
            return merged
        self._entries[key] = RegistryEntry(item, self._next_seq)
        self._next_seq += 1
        return item

    def _evict_locked(self) -> None:
        overflow = len(self._entries) - self.max_items
        for _ in range(max(0, overflow)):
            evicted_key, _entry = self._entries.popitem(last=False)
            logger.debug("[REGISTRY] evicted type=%s id=%s", *evicted_key)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return any(entry_id == item_id for _type, entry_id in self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._next_seq = 0

    def to_records(self) -> list[dict[str, Any]]:
        """Oldest-first ``[{id, item, insertedAtSeq}]`` for persistence."""
        with self._lock:
            return [
                {"id": entry.item.id, "item": entry.item.to_dict(), "insertedAtSeq": entry.inserted_at_seq}
                for entry in self._entries.values()
            ]

    def load_records(self, records: Iterable[dict[str, Any]]) -> int:
        """Replace the contents with persisted records, trimming the oldest beyond the cap."""
        parsed: list[RegistryEntry] = []
        for record in records or []:
            try:
                item = CanonicalItem.from_dict(record["item"])
                seq = int(record.get("insertedAtSeq", 0))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("[REGISTRY] skipped persisted record error=%s", exc)
                continue
            parsed.append(RegistryEntry(item, seq))
        parsed.sort(key=lambda entry: entry.inserted_at_seq)
        if len(parsed) > self.max_items:
            logger.info("[REGISTRY] trimmed %s persisted records over cap", len(parsed) - self.max_items)
            parsed = parsed[len(parsed) - self.max_items :]
        with self._lock:
            self._entries = OrderedDict((item_key(entry.item.type, entry.item.id), entry) for entry in parsed)
            self._next_seq = (parsed[-1].inserted_at_seq + 1) if parsed else 0
            return len(self._entries)


class RegistryFileStore:
    """JSON file persistence for a :class:`MediaRegistry`."""

    def __init__(self, path: str = MEDIA_REGISTRY_PATH) -> None:
        self.path = path
        self._lock = threading.Lock()

    def load(self, registry: MediaRegistry) -> int:
        with self._lock:
            if not self.path or not os.path.exists(self.path):
                return 0
            try:
                with open(self.path, "r", encoding="utf-8") as handle:
                    payload = json.load(handle)
            except (OSError, ValueError) as exc:
                logger.warning("[REGISTRY] unreadable store path=%s error=%s", self.path, exc)
                return 0
        records = payload.get("records") if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            return 0
        return registry.load_records(records)

    def save(self, registry: MediaRegistry) -> None:
        records = registry.to_records()
        with self._lock:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump({"version": 1, "records": records}, handle)
            os.replace(tmp_path, self.path)
