"""Debounced, generation-tagged search driver for an interactive consumer."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from config.settings import SEARCH_DEBOUNCE_SECONDS
from engine.errors import MediaEngineError, classify_error
from engine.sorting import sort_items
from metadata.types import Category, MediaType, SearchQuery, SearchResult

logger = logging.getLogger(__name__)


class SearchSession:
    """Holds the consumer's current search inputs.

    ``update`` restarts the debounce timer; ``search_now`` cancels it and runs
    immediately. Every input change bumps ``generation`` and a result is only
    delivered when its generation is still current. ``on_results`` receives
    ``(result, generation)``; ``on_error`` receives ``(kind, exc, generation)``
    where ``kind`` comes from ``classify_error``.
    """

    def __init__(
        self,
        service,
        *,
        category=Category.MUSIC,
        media_type=MediaType.ALBUM,
        provider_id=None,
        on_results=None,
        on_error=None,
        debounce_seconds=SEARCH_DEBOUNCE_SECONDS,
        timer_factory=threading.Timer,
    ):
        self.service = service
        self.category = Category(category)
        self.media_type = MediaType(media_type)
        self.provider_id = provider_id
        self.query = SearchQuery()
        self.on_results = on_results
        self.on_error = on_error
        self.debounce_seconds = float(debounce_seconds)
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0
        self.last_result: SearchResult | None = None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def update(self, *, category=None, media_type=None, provider_id=None, **changes) -> int:
        """Apply input changes and (re)start the debounce timer.

        ``changes`` are ``SearchQuery`` fields. A change other than ``page``
        resets the page to 1.
        """
        with self._lock:
            if category is not None:
                self.category = Category(category)
            if media_type is not None:
                self.media_type = MediaType(media_type)
            if provider_id is not None:
                self.provider_id = provider_id or None
            if changes and "page" not in changes:
                changes["page"] = 1
            if changes:
                self.query = replace(self.query, **changes)
            self._generation += 1
            generation = self._generation
            self._cancel_timer_locked()
            timer = self._timer_factory(self.debounce_seconds, self._fire, args=(generation,))
            timer.daemon = True
            self._timer = timer
        timer.start()
        return generation

    def search_now(self) -> SearchResult | None:
        with self._lock:
            self._cancel_timer_locked()
            self._generation += 1
            generation = self._generation
        return self._run(generation)

    def next_page(self) -> int | None:
        last = self.last_result
        if last is None or not last.has_more:
            return None
        return self.update(page=last.page + 1)

    def cancel(self):
        with self._lock:
            self._cancel_timer_locked()
            self._generation += 1

    def _cancel_timer_locked(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self._run(generation)

    def _is_current(self, generation) -> bool:
        with self._lock:
            return generation == self._generation

    def _run(self, generation) -> SearchResult | None:
        with self._lock:
            category, media_type = self.category, self.media_type
            provider_id, query = self.provider_id, self.query
        try:
            result = self.service.search(category, media_type, query, provider_id)
        except MediaEngineError as exc:
            if not self._is_current(generation):
                return None
            kind = classify_error(exc)
            logger.warning("[SESSION] search failed generation=%s kind=%s error=%s", generation, kind, exc)
            if self.on_error is not None:
                self.on_error(kind, exc, generation)
            return None

        if not result.server_sorted:
            result = replace(result, items=tuple(sort_items(result.items, query.sort)))
        if not self._is_current(generation):
            logger.debug("[SESSION] stale result dropped generation=%s", generation)
            return None
        self.last_result = result
        if self.on_results is not None:
            self.on_results(result, generation)
        if result.has_more:
            self.service.prefetch(category, media_type, query.with_page(result.page + 1), provider_id)
        return result
