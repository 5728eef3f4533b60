from __future__ import annotations

import threading
import time
from concurrent.futures import Future

import pytest

from engine.errors import ConfigError, UnsupportedTypeError, UpstreamError
from engine.item_cache import ItemCache
from engine.provider_registry import ProviderRegistry
from engine.search_service import SearchService
from metadata.media_registry import MediaRegistry
from metadata.providers.openlibrary import OpenLibraryProvider
from metadata.providers.tmdb import TMDBProvider
from metadata.types import CanonicalDetails, CanonicalItem, Category, MediaType, SearchQuery, SearchResult


class _InlineExecutor:
    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True):
        pass


class _NoNetworkFetchClient:
    def get_json(self, url, **kwargs):
        raise AssertionError(f"unexpected network call: {url}")

    post_json = get_json


def _item(external_id, image_url=None):
    return CanonicalItem(
        id=f"fake:{external_id}",
        external_id=external_id,
        type=MediaType.BOOK,
        title=f"Book {external_id}",
        provider_id="fake",
        image_url=image_url,
    )


class _FakeProvider:
    id = "fake"
    label = "Fake"
    category = Category.BOOK

    def __init__(self):
        self.search_calls = 0
        self.details_calls = 0
        self.details_error = None
        self.gate = None

    def supported_types(self):
        return (MediaType.BOOK,)

    def search(self, query, media_type):
        self.search_calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        items = (_item(f"{query.page}-1"), _item(f"{query.page}-2", image_url="https://img/2.jpg"))
        return SearchResult(items=items, page=query.page, total_pages=3, total_count=6)

    def get_details(self, item_id, media_type):
        self.details_calls += 1
        if self.details_error is not None:
            raise self.details_error
        return CanonicalDetails(
            id=item_id,
            external_id=item_id.split(":", 1)[1],
            type=media_type,
            provider_id=self.id,
            title="Dune",
            tags=("sf",),
        )


class _Enricher:
    def __init__(self):
        self.scheduled = []

    def schedule_many(self, items):
        items = list(items)
        self.scheduled.extend(item.id for item in items)
        return len(items)

    def shutdown(self, wait=True):
        pass


def _service(provider=None, **kwargs):
    registry = ProviderRegistry()
    provider = provider or _FakeProvider()
    registry.register(provider)
    kwargs.setdefault("executor", _InlineExecutor())
    return SearchService(registry, **kwargs), provider


def test_short_circuit_never_touches_the_network(monkeypatch) -> None:
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    registry = ProviderRegistry()
    registry.register(OpenLibraryProvider(fetch_client=_NoNetworkFetchClient()))
    registry.register(TMDBProvider(fetch_client=_NoNetworkFetchClient()))
    service = SearchService(registry, executor=_InlineExecutor())

    for category, media_type in ((Category.BOOK, MediaType.BOOK), (Category.CINEMA, MediaType.MOVIE)):
        result = service.search(category, media_type, SearchQuery(free_text="  "))
        assert result.items == ()
        assert result.total_pages == 0


def test_search_results_are_cached_and_registered() -> None:
    media_registry = MediaRegistry()
    enricher = _Enricher()
    service, provider = _service(media_registry=media_registry, enricher=enricher)
    query = SearchQuery(free_text="dune")

    first = service.search(Category.BOOK, MediaType.BOOK, query)
    second = service.search(Category.BOOK, MediaType.BOOK, SearchQuery(free_text="  dune "))

    assert first is second
    assert provider.search_calls == 1
    assert media_registry.size() == 2
    assert enricher.scheduled == ["fake:1-1"]


def test_concurrent_identical_searches_share_one_call() -> None:
    provider = _FakeProvider()
    provider.gate = threading.Event()
    service, _ = _service(provider)
    results = []

    def run():
        results.append(service.search(Category.BOOK, MediaType.BOOK, SearchQuery(free_text="dune")))

    threads = [threading.Thread(target=run) for _ in range(4)]
    for thread in threads:
        thread.start()
    while not service._in_flight:
        time.sleep(0.01)
    provider.gate.set()
    for thread in threads:
        thread.join(timeout=5)

    assert len(results) == 4
    assert provider.search_calls == 1
    assert all(result is results[0] for result in results)


def test_prefetch_warms_the_cache() -> None:
    service, provider = _service()
    next_page = SearchQuery(free_text="dune", page=2)

    service.prefetch(Category.BOOK, MediaType.BOOK, next_page).result()
    result = service.search(Category.BOOK, MediaType.BOOK, next_page)

    assert provider.search_calls == 1
    assert result.page == 2


def test_prefetch_failure_does_not_raise() -> None:
    provider = _FakeProvider()

    def fail(query, media_type):
        raise UpstreamError(503, "busy")

    provider.search = fail
    service, _ = _service(provider)

    future = service.prefetch(Category.BOOK, MediaType.BOOK, SearchQuery(free_text="dune", page=2))

    assert isinstance(future.exception(), UpstreamError)


def test_details_are_idempotent_and_accept_bare_ids() -> None:
    service, provider = _service()

    first = service.get_details(Category.BOOK, MediaType.BOOK, "fake:OL1W")
    second = service.get_details(Category.BOOK, MediaType.BOOK, "OL1W")

    assert first == second
    assert first.id == "fake:OL1W"
    assert provider.details_calls == 1


def test_details_degrade_to_skeleton_on_upstream_failure() -> None:
    provider = _FakeProvider()
    provider.details_error = UpstreamError(500, "boom")
    service, _ = _service(provider)

    details = service.get_details(Category.BOOK, MediaType.BOOK, "fake:OL1W")

    assert details.is_skeletal
    assert details.to_dict() == {"id": "fake:OL1W", "externalId": "OL1W", "type": "book", "providerId": "fake"}

    provider.details_error = None
    assert service.get_details(Category.BOOK, MediaType.BOOK, "fake:OL1W").title == "Dune"


def test_details_config_error_propagates() -> None:
    provider = _FakeProvider()
    provider.details_error = ConfigError("missing key", provider_id="fake")
    service, _ = _service(provider)

    with pytest.raises(ConfigError):
        service.get_details(Category.BOOK, MediaType.BOOK, "fake:OL1W")


def test_cached_items_keep_identity_across_provider_searches() -> None:
    cache = ItemCache()

    class _Client:
        def get_json(self, url, **kwargs):
            return {"numFound": 1, "docs": [{"key": "/works/OL1W", "title": "Dune"}]}

    registry = ProviderRegistry()
    registry.register(OpenLibraryProvider(fetch_client=_Client(), item_cache=cache))
    service = SearchService(registry, executor=_InlineExecutor())

    first = service.search(Category.BOOK, MediaType.BOOK, SearchQuery(free_text="dune", page=1))
    service.clear_caches()
    second = service.search(Category.BOOK, MediaType.BOOK, SearchQuery(free_text="dune", page=1))

    assert first is not second
    assert first.items[0] is second.items[0]


def test_type_outside_the_provider_fails_before_any_call() -> None:
    service, provider = _service()

    with pytest.raises(UnsupportedTypeError):
        service.search(Category.BOOK, MediaType.MOVIE, SearchQuery(free_text="dune"))
    with pytest.raises(UnsupportedTypeError):
        service.get_details(Category.BOOK, MediaType.MOVIE, "fake:1")

    assert provider.search_calls == 0
    assert provider.details_calls == 0
