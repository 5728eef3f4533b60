"""Canonical search and details entry points.

The service resolves a provider through the registry, runs the call, feeds
results into the client-side registry and hands items without artwork to the
enrichment runner. Identical concurrent searches share a single upstream call
and completed pages are cached for ``SEARCH_CACHE_TTL_SECONDS``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor

from config.settings import (
    DETAILS_CACHE_TTL_SECONDS,
    PREFETCH_MAX_WORKERS,
    SEARCH_CACHE_MAX_ENTRIES,
    SEARCH_CACHE_TTL_SECONDS,
)
from engine.canonical_ids import build_item_id, split_item_id
from engine.errors import ConfigError, MediaEngineError, UnsupportedTypeError
from metadata.types import CanonicalDetails, Category, MediaType, SearchQuery, SearchResult

logger = logging.getLogger(__name__)


class _TTLCache:
    def __init__(self, *, ttl_seconds, max_entries, clock=time.time):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = OrderedDict()

    def get(self, key):
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= now:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key, value):
        with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl_seconds)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


class SearchService:
    def __init__(
        self,
        registry,
        *,
        media_registry=None,
        enricher=None,
        executor=None,
        clock=time.time,
    ):
        self.registry = registry
        self.media_registry = media_registry
        self.enricher = enricher
        self._search_cache = _TTLCache(
            ttl_seconds=SEARCH_CACHE_TTL_SECONDS,
            max_entries=SEARCH_CACHE_MAX_ENTRIES,
            clock=clock,
        )
        self._details_cache = _TTLCache(
            ttl_seconds=DETAILS_CACHE_TTL_SECONDS,
            max_entries=SEARCH_CACHE_MAX_ENTRIES,
            clock=clock,
        )
        self._executor = executor or ThreadPoolExecutor(
            max_workers=PREFETCH_MAX_WORKERS,
            thread_name_prefix="prefetch",
        )
        self._lock = threading.Lock()
        self._in_flight: dict[tuple, Future] = {}

    def search(self, category, media_type, query: SearchQuery, provider_id=None) -> SearchResult:
        category = Category(category)
        media_type = MediaType(media_type)
        provider = self.registry.resolve(category, provider_id)
        _check_type(provider, media_type)
        key = (provider.id, media_type.value, query.cache_key())

        cached = self._search_cache.get(key)
        if cached is not None:
            logger.debug("[SEARCH] cache hit provider=%s type=%s page=%s", provider.id, media_type.value, query.page)
            return cached

        with self._lock:
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future
        if not owner:
            return future.result()

        try:
            result = provider.search(query, media_type)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            self._search_cache.set(key, result)
            future.set_result(result)
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

        logger.info(
            "[SEARCH] provider=%s type=%s page=%s/%s returned=%s",
            provider.id,
            media_type.value,
            result.page,
            result.total_pages,
            len(result.items),
        )
        self._after_search(result)
        return result

    def _after_search(self, result: SearchResult):
        if not result.items:
            return
        if self.media_registry is not None:
            self.media_registry.register_items(result.items)
        if self.enricher is not None:
            self.enricher.schedule_many(item for item in result.items if not item.image_url)

    def prefetch(self, category, media_type, query: SearchQuery, provider_id=None):
        """Warm the search cache for ``query`` without blocking the caller."""
        future = self._executor.submit(self.search, category, media_type, query, provider_id)
        future.add_done_callback(_log_prefetch_failure)
        return future

    def get_details(self, category, media_type, item_id, provider_id=None) -> CanonicalDetails:
        category = Category(category)
        media_type = MediaType(media_type)
        prefix, external = split_item_id(item_id)
        provider = self.registry.resolve(category, provider_id or prefix)
        _check_type(provider, media_type)
        canonical_id = build_item_id(provider.id, external)
        key = (canonical_id, media_type.value)

        cached = self._details_cache.get(key)
        if cached is not None:
            return cached
        try:
            details = provider.get_details(canonical_id, media_type)
        except ConfigError:
            raise
        except MediaEngineError as exc:
            logger.warning(
                "[DETAILS] degraded id=%s type=%s error=%s",
                canonical_id,
                media_type.value,
                exc,
            )
            return CanonicalDetails(
                id=canonical_id,
                external_id=external,
                type=media_type,
                provider_id=provider.id,
            )
        self._details_cache.set(key, details)
        return details

    def clear_caches(self):
        self._search_cache.clear()
        self._details_cache.clear()

    def shutdown(self, wait=True):
        self._executor.shutdown(wait=wait)
        if self.enricher is not None:
            self.enricher.shutdown(wait=wait)


def _check_type(provider, media_type):
    if media_type not in provider.supported_types():
        raise UnsupportedTypeError(provider.id, media_type.value)


def _log_prefetch_failure(future):
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("[SEARCH] prefetch failed error=%s", exc)
