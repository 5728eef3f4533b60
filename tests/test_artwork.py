from __future__ import annotations

from engine.errors import UpstreamError
from metadata.providers.artwork import ImageWaterfall, fanart_preview_url, wikimedia_thumb_url
from metadata.types import CanonicalItem, MediaType


def _item(media_type=MediaType.ARTIST, external_id="mbid-1", provider_id="musicbrainz", **attributes):
    return CanonicalItem(
        id=f"{provider_id}:{external_id}",
        external_id=external_id,
        type=media_type,
        title="Radiohead",
        provider_id=provider_id,
        attributes=attributes,
    )


class _FakeFetchClient:
    def __init__(self, responses=None):
        self._responses = responses or {}
        self.calls = []

    def get_json(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self._responses.get(url)
        if response is None:
            raise UpstreamError(404, "", url=url)
        if isinstance(response, Exception):
            raise response
        return response


def test_first_hit_stops_the_waterfall() -> None:
    calls = []

    def _source(name, url):
        def run(item):
            calls.append(name)
            return url

        return run

    waterfall = ImageWaterfall(
        fetch_client=_FakeFetchClient(),
        sources=(("a", _source("a", None)), ("b", _source("b", "https://img/b.jpg")), ("c", _source("c", "https://img/c.jpg"))),
    )

    assert waterfall.resolve(_item()) == "https://img/b.jpg"
    assert calls == ["a", "b"]


def test_failures_are_soft_misses() -> None:
    def _boom(item):
        raise UpstreamError(500, "down")

    def _broken(item):
        raise KeyError("images")

    waterfall = ImageWaterfall(fetch_client=_FakeFetchClient(), sources=(("a", _boom), ("b", _broken)))

    assert waterfall.resolve(_item()) is None


def test_fanart_preview_and_wikimedia_urls() -> None:
    assert (
        fanart_preview_url("https://assets.fanart.tv/fanart/music/x/artistthumb/a.jpg")
        == "https://assets.fanart.tv/preview/music/x/artistthumb/a.jpg"
    )
    assert (
        wikimedia_thumb_url("Radiohead Live.jpg")
        == "https://commons.wikimedia.org/wiki/Special:FilePath/Radiohead%20Live.jpg?width=500"
    )


def test_fanart_needs_a_key(monkeypatch) -> None:
    monkeypatch.delenv("FANART_API_KEY", raising=False)
    client = _FakeFetchClient()
    waterfall = ImageWaterfall(fetch_client=client)

    assert waterfall.fanart_image(_item()) is None
    assert client.calls == []


def test_fanart_hit_uses_preview_size(monkeypatch) -> None:
    monkeypatch.setenv("FANART_API_KEY", "fk")
    url = "https://webservice.fanart.tv/v3/music/mbid-1"
    client = _FakeFetchClient({url: {"artistthumb": [{"url": "https://assets.fanart.tv/fanart/music/a.jpg"}]}})
    waterfall = ImageWaterfall(fetch_client=client)

    assert waterfall.resolve(_item()) == "https://assets.fanart.tv/preview/music/a.jpg"
    assert client.calls[0][1]["params"] == {"api_key": "fk"}


def test_artist_falls_through_to_wikidata(monkeypatch) -> None:
    monkeypatch.delenv("FANART_API_KEY", raising=False)
    mb = _FakeFetchClient(
        {
            "https://musicbrainz.org/ws/2/artist/mbid-1": {
                "relations": [{"type": "wikidata", "url": {"resource": "https://www.wikidata.org/wiki/Q44190"}}]
            }
        }
    )
    client = _FakeFetchClient(
        {
            "https://www.wikidata.org/w/api.php": {
                "claims": {"P18": [{"mainsnak": {"datavalue": {"value": "Radiohead.jpg"}}}]}
            }
        }
    )
    waterfall = ImageWaterfall(fetch_client=client, mb_fetch_client=mb)

    assert waterfall.resolve(_item()) == "https://commons.wikimedia.org/wiki/Special:FilePath/Radiohead.jpg?width=500"
    assert client.calls[0][1]["params"]["entity"] == "Q44190"


def test_track_prefers_release_group_then_release_cover(monkeypatch) -> None:
    monkeypatch.delenv("FANART_API_KEY", raising=False)
    client = _FakeFetchClient(
        {
            "https://coverartarchive.org/release/rel-1": {
                "images": [
                    {"front": False, "image": "https://caa/back.jpg"},
                    {"front": True, "thumbnails": {"small": "https://caa/front-250.jpg"}},
                ]
            }
        }
    )
    waterfall = ImageWaterfall(fetch_client=client)
    track = _item(MediaType.TRACK, "rec-1", albumId="rg-1", releaseId="rel-1")

    assert waterfall.resolve(track) == "https://caa/front-250.jpg"
    assert [call[0] for call in client.calls] == [
        "https://coverartarchive.org/release-group/rg-1",
        "https://coverartarchive.org/release/rel-1",
    ]


def test_non_musicbrainz_items_miss_without_network() -> None:
    client = _FakeFetchClient()
    waterfall = ImageWaterfall(fetch_client=client)

    assert waterfall.resolve(_item(MediaType.BOOK, "OL1W", provider_id="openlibrary")) is None
    assert client.calls == []


def test_resolve_artist_builds_a_canonical_item(monkeypatch) -> None:
    monkeypatch.delenv("FANART_API_KEY", raising=False)
    seen = []
    waterfall = ImageWaterfall(fetch_client=_FakeFetchClient(), sources=(("probe", lambda item: seen.append(item) or None),))

    assert waterfall.resolve_artist("mbid-9") is None
    assert seen[0].id == "musicbrainz:mbid-9"
    assert seen[0].type == MediaType.ARTIST
