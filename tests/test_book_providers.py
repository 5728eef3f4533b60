from __future__ import annotations

import pytest

from engine.errors import ConfigError, ValidationError
from engine.item_cache import ItemCache
from metadata.providers.hardcover import HardcoverProvider
from metadata.providers.openlibrary import OpenLibraryProvider
from metadata.types import MediaType, RangeFilter, SearchQuery, SortOption, TextFilter


class _FakeFetchClient:
    def __init__(self, responses):
        self._responses = responses
        self.calls = []

    def _respond(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        response = self._responses[url]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get_json(self, url, **kwargs):
        return self._respond("GET", url, kwargs)

    def post_json(self, url, **kwargs):
        return self._respond("POST", url, kwargs)


def _fellowship_docs():
    return [
        {
            "key": "/works/OL27448W",
            "title": "The Fellowship of the Ring",
            "author_name": ["J.R.R. Tolkien"],
            "first_publish_year": 1954,
            "cover_i": 8474036,
            "edition_count": 120,
        },
        {
            "key": "/works/OL1W",
            "title": "Fellowship  Point",
            "first_publish_year": 2022,
        },
        {"key": "/works/OL2W"},
    ]


def test_openlibrary_fellowship_search_pages_and_maps() -> None:
    url = "https://openlibrary.org/search.json"
    client = _FakeFetchClient({url: {"numFound": 45, "docs": _fellowship_docs()}})
    provider = OpenLibraryProvider(fetch_client=client)

    result = provider.search(SearchQuery(free_text="Fellowship"), MediaType.BOOK)

    assert [item.id for item in result.items] == ["openlibrary:OL27448W", "openlibrary:OL1W"]
    assert result.total_count == 45
    assert result.total_pages == 3
    assert result.server_sorted is False
    first, second = result.items
    assert first.subtitle == "J.R.R. Tolkien"
    assert first.image_url == "https://covers.openlibrary.org/b/id/8474036-M.jpg"
    assert first.year == 1954
    assert second.title == "Fellowship Point"
    assert second.subtitle == "Unknown Author"
    assert second.image_url is None
    params = client.calls[0][2]["params"]
    assert params["q"] == "Fellowship"
    assert params["page"] == 1
    assert params["limit"] == 20


def test_openlibrary_filters_and_sort_go_upstream() -> None:
    url = "https://openlibrary.org/search.json"
    client = _FakeFetchClient({url: {"numFound": 0, "docs": []}})
    provider = OpenLibraryProvider(fetch_client=client)
    query = SearchQuery(
        free_text="ring",
        sort=SortOption.DATE_DESC,
        filters={"author": TextFilter("Tolkien"), "year": RangeFilter(1950, None)},
    )

    result = provider.search(query, MediaType.BOOK)

    params = client.calls[0][2]["params"]
    assert params["q"] == 'ring AND author:"Tolkien" AND first_publish_year:[1950 TO *]'
    assert params["sort"] == "new"
    assert result.server_sorted is True
    assert result.items == ()


def test_openlibrary_repeat_search_reuses_cached_items() -> None:
    url = "https://openlibrary.org/search.json"
    payload = {"numFound": 2, "docs": _fellowship_docs()[:2]}
    client = _FakeFetchClient({url: [payload, payload]})
    provider = OpenLibraryProvider(fetch_client=client, item_cache=ItemCache())

    first = provider.search(SearchQuery(free_text="Fellowship"), MediaType.BOOK)
    second = provider.search(SearchQuery(free_text="Fellowship"), MediaType.BOOK)

    assert len(client.calls) == 2
    for before, after in zip(first.items, second.items):
        assert before is after


def test_openlibrary_short_query_makes_no_call() -> None:
    client = _FakeFetchClient({})
    provider = OpenLibraryProvider(fetch_client=client)

    result = provider.search(SearchQuery(free_text="lo"), MediaType.BOOK)

    assert result.items == ()
    assert result.total_pages == 0
    assert client.calls == []


def test_openlibrary_short_author_name_with_filters_makes_no_call() -> None:
    client = _FakeFetchClient({})
    provider = OpenLibraryProvider(fetch_client=client)
    query = SearchQuery(free_text="Le", filters={"year": RangeFilter(1950, None), "subject": TextFilter("fantasy")})

    result = provider.search(query, MediaType.AUTHOR)

    assert result.items == ()
    assert client.calls == []


def test_openlibrary_malformed_envelope_is_validation_error() -> None:
    url = "https://openlibrary.org/search.json"
    client = _FakeFetchClient({url: {"numFound": "many", "docs": []}})
    provider = OpenLibraryProvider(fetch_client=client)

    with pytest.raises(ValidationError):
        provider.search(SearchQuery(free_text="Fellowship"), MediaType.BOOK)


def test_openlibrary_details_accept_bare_and_canonical_ids() -> None:
    url = "https://openlibrary.org/works/OL27448W.json"
    work = {
        "title": "The Fellowship of the Ring",
        "description": {"type": "/type/text", "value": "Volume one."},
        "subjects": ["Fantasy", "Middle Earth"],
        "covers": [-1, 14625765],
        "first_publish_date": "1954",
    }
    client = _FakeFetchClient({url: [work, work]})
    provider = OpenLibraryProvider(fetch_client=client)

    canonical = provider.get_details("openlibrary:OL27448W", MediaType.BOOK)
    bare = provider.get_details("OL27448W", MediaType.BOOK)

    assert canonical == bare
    assert canonical.description == "Volume one."
    assert canonical.tags == ("Fantasy", "Middle Earth")
    assert canonical.image_url == "https://covers.openlibrary.org/b/id/14625765-L.jpg"
    assert canonical.year == 1954


def _hardcover_results(hits, found=None):
    return {
        "data": {
            "search": {
                "results": {"found": len(hits) if found is None else found, "hits": [{"document": d} for d in hits]}
            }
        }
    }


def test_hardcover_year_range_is_applied_in_memory(monkeypatch) -> None:
    monkeypatch.setenv("HARDCOVER_TOKEN", "secret")
    url = "https://api.hardcover.app/v1/graphql"
    hits = [
        {"id": 1, "title": "Old Edition", "release_year": 1995, "author_names": ["A"]},
        {"id": 2, "title": "New Edition", "release_year": 2020, "author_names": ["A"]},
        {"id": 3, "title": "Undated"},
    ]
    client = _FakeFetchClient({url: _hardcover_results(hits)})
    provider = HardcoverProvider(fetch_client=client)
    query = SearchQuery(free_text="edition", filters={"year": RangeFilter(1994, 1996)})

    result = provider.search(query, MediaType.BOOK)

    assert [item.title for item in result.items] == ["Old Edition"]
    assert result.server_sorted is False
    _method, _url, kwargs = client.calls[0]
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["json"]["variables"]["query_type"] == "Book"


def test_hardcover_accepts_stringified_results_and_excludes_compilations(monkeypatch) -> None:
    monkeypatch.setenv("HARDCOVER_TOKEN", "Bearer secret")
    url = "https://api.hardcover.app/v1/graphql"
    raw = '{"found": 2, "hits": [{"document": {"id": 7, "title": "Tales", "compilation": true}}, {"document": {"id": 8, "title": "Dune"}}]}'
    client = _FakeFetchClient({url: {"data": {"search": {"results": raw}}}})
    provider = HardcoverProvider(fetch_client=client)
    query = SearchQuery(free_text="tales", filters={"excludeCompilations": TextFilter("true")})

    result = provider.search(query, MediaType.BOOK)

    assert [item.id for item in result.items] == ["hardcover:8"]
    assert result.total_count == 2
    assert client.calls[0][2]["headers"]["Authorization"] == "Bearer secret"


def test_hardcover_missing_token_is_config_error(monkeypatch) -> None:
    monkeypatch.delenv("HARDCOVER_TOKEN", raising=False)
    provider = HardcoverProvider(fetch_client=_FakeFetchClient({}))

    with pytest.raises(ConfigError) as excinfo:
        provider.search(SearchQuery(free_text="dune"), MediaType.BOOK)

    assert excinfo.value.provider_id == "hardcover"


def test_hardcover_graphql_errors_raise(monkeypatch) -> None:
    monkeypatch.setenv("HARDCOVER_TOKEN", "secret")
    url = "https://api.hardcover.app/v1/graphql"
    client = _FakeFetchClient({url: {"errors": [{"message": "bad query"}]}})
    provider = HardcoverProvider(fetch_client=client)

    with pytest.raises(ValidationError):
        provider.search(SearchQuery(free_text="dune"), MediaType.AUTHOR)
