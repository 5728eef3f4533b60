"""Out-of-band image enrichment."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from config.settings import ENRICHMENT_MAX_WORKERS
from engine.canonical_ids import item_key
from metadata.types import CanonicalItem

logger = logging.getLogger(__name__)


class EnrichmentRunner:
    """Resolve missing artwork on a small worker pool.

    A hit is written back through ``item_cache.set`` and
    ``media_registry.register_item``; a miss or failure leaves both untouched.
    """

    def __init__(self, waterfall, *, item_cache=None, media_registry=None, max_workers=ENRICHMENT_MAX_WORKERS, executor=None):
        self.waterfall = waterfall
        self.item_cache = item_cache
        self.media_registry = media_registry
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="enrichment",
        )
        self._lock = threading.Lock()
        self._in_flight: dict[tuple[str, str], object] = {}

    def schedule(self, item: CanonicalItem):
        if item.image_url:
            return None
        key = item_key(item.type, item.id)
        with self._lock:
            existing = self._in_flight.get(key)
            if existing is not None:
                return existing
            future = self._executor.submit(self._run, item)
            self._in_flight[key] = future
        future.add_done_callback(lambda _f, key=key: self._forget(key))
        return future

    def schedule_many(self, items) -> int:
        scheduled = 0
        for item in items:
            if self.schedule(item) is not None:
                scheduled += 1
        return scheduled

    def pending(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def _forget(self, key):
        with self._lock:
            self._in_flight.pop(key, None)

    def _run(self, item: CanonicalItem):
        try:
            url = self.waterfall.resolve(item)
        except Exception:
            logger.exception("[ENRICH] waterfall failed id=%s", item.id)
            return None
        if not url:
            return None
        enriched = item.with_image(url)
        if self.item_cache is not None:
            self.item_cache.set(enriched)
        if self.media_registry is not None:
            enriched = self.media_registry.register_item(enriched)
        logger.info("[ENRICH] image resolved id=%s", item.id)
        return enriched

    def shutdown(self, wait=True):
        self._executor.shutdown(wait=wait)
