from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api import main
from engine.errors import ConfigError, NetworkError, UpstreamError
from engine.provider_registry import ProviderRegistry
from engine.search_service import SearchService
from metadata.providers.musicbrainz import MusicBrainzProvider
from metadata.types import CanonicalDetails, CanonicalItem, MediaType, RangeFilter, SearchResult


class _FakeService:
    def __init__(self):
        self.searches = []
        self.details = []
        self.error = None

    def search(self, category, media_type, query, provider_id=None):
        self.searches.append((category, media_type, query, provider_id))
        if self.error is not None:
            raise self.error
        item = CanonicalItem(
            id="musicbrainz:rg-1",
            external_id="rg-1",
            type=MediaType.ALBUM,
            title="OK Computer",
            provider_id="musicbrainz",
            year=1997,
        )
        return SearchResult(items=(item,), page=query.page, total_pages=1, total_count=1)

    def get_details(self, category, media_type, item_id, provider_id=None):
        self.details.append((category, media_type, item_id, provider_id))
        if self.error is not None:
            raise self.error
        return CanonicalDetails(id=item_id, external_id="rg-1", type=media_type, provider_id="musicbrainz")


@pytest.fixture
def service(monkeypatch):
    fake = _FakeService()
    monkeypatch.setattr(main.app.state, "search_service", fake, raising=False)
    return fake


@pytest.fixture
def client(service):
    return TestClient(main.app)


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_search_translates_params_into_query(client, service) -> None:
    response = client.get(
        "/api/search",
        params={
            "category": "music",
            "type": "album",
            "provider": "musicbrainz",
            "query": "ok computer",
            "page": "2",
            "fuzzy": "true",
            "sort": "date_desc",
            "minYear": "1994",
            "maxYear": "1996",
            "maxDuration": "240000",
            "secondaryTypes": "Live,Remix",
            "artistId": "a74b1b7f",
            "artist": "Radiohead",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["page"] == 2
    assert body["serverSorted"] is False
    assert body["items"][0]["id"] == "musicbrainz:rg-1"
    assert body["items"][0]["externalId"] == "rg-1"
    category, media_type, query, provider_id = service.searches[0]
    assert (category.value, media_type.value, provider_id) == ("music", "album", "musicbrainz")
    assert query.free_text == "ok computer"
    assert query.fuzzy is True
    assert query.sort.value == "date_desc"
    assert query.filters["year"] == RangeFilter(1994, 1996)
    assert query.filters["duration"] == RangeFilter(None, 240000)
    assert query.filters["secondaryTypes"].values == ("Live", "Remix")
    assert query.filters["artistId"].id == "a74b1b7f"
    assert query.filters["artist"].text == "Radiohead"


def test_invalid_type_is_rejected(client) -> None:
    response = client.get("/api/search", params={"category": "music", "type": "podcast"})

    assert response.status_code == 400


def test_details(client, service) -> None:
    response = client.get("/api/details", params={"category": "music", "type": "album", "id": "musicbrainz:rg-1"})

    assert response.status_code == 200
    assert response.json() == {
        "id": "musicbrainz:rg-1",
        "externalId": "rg-1",
        "type": "album",
        "providerId": "musicbrainz",
    }
    assert service.details[0][2] == "musicbrainz:rg-1"


def test_details_require_an_id(client) -> None:
    response = client.get("/api/details", params={"category": "music", "type": "album"})

    assert response.status_code == 400


def test_config_error_maps_to_feature_unavailable(client, service) -> None:
    service.error = ConfigError("TMDB_API_KEY is not configured", provider_id="tmdb")

    response = client.get("/api/search", params={"category": "cinema", "type": "movie", "query": "heat"})

    assert response.status_code == 503
    assert response.json() == {"kind": "config", "error": "feature unavailable"}


def test_rate_limit_maps_to_retry_banner(client, service) -> None:
    service.error = UpstreamError(429, "slow down")

    response = client.get("/api/search", params={"category": "music", "type": "album", "query": "ok computer"})

    assert response.status_code == 503
    assert response.json()["kind"] == "rate_limited"
    assert response.headers["Retry-After"] == "5"


@pytest.mark.parametrize("error", [UpstreamError(500, "boom"), NetworkError("reset")])
def test_other_failures_map_to_bad_gateway(client, service, error) -> None:
    service.error = error

    response = client.get("/api/details", params={"category": "music", "type": "album", "id": "rg-1"})

    assert response.status_code == 502
    assert response.json()["kind"] == "upstream"


class _RecordingFetchClient:
    def __init__(self):
        self.calls = []

    def get_json(self, url, **kwargs):
        self.calls.append(url)
        return {}


def test_type_outside_the_provider_is_bad_request(monkeypatch) -> None:
    fetch_client = _RecordingFetchClient()
    registry = ProviderRegistry()
    registry.register(MusicBrainzProvider(fetch_client=fetch_client))
    monkeypatch.setattr(main.app.state, "search_service", SearchService(registry), raising=False)
    client = TestClient(main.app)

    response = client.get("/api/search", params={"category": "music", "type": "movie", "query": "alien"})

    assert response.status_code == 400
    assert "movie" in response.json()["detail"]
    assert fetch_client.calls == []
