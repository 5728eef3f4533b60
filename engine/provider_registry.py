"""Category to provider resolution."""

from __future__ import annotations

import logging
import threading

from config.settings import MUSICBRAINZ_MIN_INTERVAL_SECONDS
from engine.fetch_client import FetchClient
from engine.item_cache import ItemCache
from metadata.providers.artwork import ImageWaterfall
from metadata.providers.base import MediaProvider
from metadata.providers.hardcover import HardcoverProvider
from metadata.providers.igdb import IGDBProvider
from metadata.providers.musicbrainz import MusicBrainzProvider
from metadata.providers.openlibrary import OpenLibraryProvider
from metadata.providers.rawg import RAWGProvider
from metadata.providers.tmdb import TMDBProvider
from metadata.types import Category

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = Category.MUSIC


class ProviderRegistry:
    def __init__(self, *, fallback_category: Category = FALLBACK_CATEGORY) -> None:
        self.fallback_category = Category(fallback_category)
        self._lock = threading.Lock()
        self._providers: dict[str, MediaProvider] = {}
        self._by_category: dict[Category, list[str]] = {}
        self._defaults: dict[Category, str] = {}

    def register(self, provider: MediaProvider, *, default: bool = False) -> None:
        provider_id = str(provider.id).lower()
        category = Category(provider.category)
        with self._lock:
            if provider_id in self._providers:
                raise ValueError(f"Provider already registered: {provider_id}")
            self._providers[provider_id] = provider
            self._by_category.setdefault(category, []).append(provider_id)
            if default or category not in self._defaults:
                self._defaults[category] = provider_id

    def get(self, provider_id: str) -> MediaProvider | None:
        with self._lock:
            return self._providers.get(str(provider_id or "").lower())

    def providers_for(self, category: Category) -> list[MediaProvider]:
        with self._lock:
            return [self._providers[pid] for pid in self._by_category.get(Category(category), [])]

    def categories(self) -> list[Category]:
        with self._lock:
            return list(self._by_category)

    def resolve(self, category: Category, provider_id: str | None = None) -> MediaProvider:
        """Pick the provider for a call.

        An explicit id that is unknown, or registered under another category,
        falls back to the category default with a warning. A category with no
        providers falls back to the fallback category.
        """
        category = Category(category)
        with self._lock:
            if provider_id:
                wanted = str(provider_id).lower()
                provider = self._providers.get(wanted)
                if provider is not None and Category(provider.category) == category:
                    return provider
                logger.warning(
                    "[REGISTRY] unknown provider=%s category=%s; using default",
                    provider_id,
                    category.value,
                )
            default_id = self._defaults.get(category)
            if default_id is None:
                logger.warning(
                    "[REGISTRY] no providers for category=%s; using %s",
                    category.value,
                    self.fallback_category.value,
                )
                default_id = self._defaults.get(self.fallback_category)
            if default_id is None:
                raise LookupError(f"No provider registered for {category.value}")
            return self._providers[default_id]


def build_default_registry(*, fetch_client=None, item_cache=None):
    """Wire every adapter with a shared fetch client and item cache.

    Returns ``(registry, image_waterfall)``.
    """
    fetch_client = fetch_client or FetchClient()
    item_cache = item_cache if item_cache is not None else ItemCache()
    mb_fetch_client = FetchClient(min_interval_seconds=MUSICBRAINZ_MIN_INTERVAL_SECONDS)
    waterfall = ImageWaterfall(fetch_client=fetch_client, mb_fetch_client=mb_fetch_client)

    registry = ProviderRegistry()
    registry.register(
        MusicBrainzProvider(fetch_client=mb_fetch_client, item_cache=item_cache, image_resolver=waterfall),
        default=True,
    )
    registry.register(OpenLibraryProvider(fetch_client=fetch_client, item_cache=item_cache), default=True)
    registry.register(HardcoverProvider(fetch_client=fetch_client, item_cache=item_cache))
    registry.register(TMDBProvider(fetch_client=fetch_client, item_cache=item_cache), default=True)
    registry.register(RAWGProvider(fetch_client=fetch_client, item_cache=item_cache), default=True)
    registry.register(IGDBProvider(fetch_client=fetch_client, item_cache=item_cache))
    return registry, waterfall
