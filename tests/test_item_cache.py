from __future__ import annotations

import threading

from engine.item_cache import ItemCache
from metadata.types import CanonicalItem, MediaType


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _item(external_id, title="Title", media_type=MediaType.ALBUM):
    return CanonicalItem(
        id=f"musicbrainz:{external_id}",
        external_id=external_id,
        type=media_type,
        title=title,
        provider_id="musicbrainz",
    )


def test_hit_returns_the_stored_object() -> None:
    cache = ItemCache()
    item = _item("rg-1")
    cache.set(item)

    assert cache.get("musicbrainz:rg-1", MediaType.ALBUM) is item
    assert cache.get("musicbrainz:rg-1", MediaType.ALBUM) is item


def test_expired_entry_is_a_miss_and_is_dropped_on_read() -> None:
    clock = _Clock()
    cache = ItemCache(ttl_seconds=60, clock=clock)
    cache.set(_item("rg-1"))
    cache.set(_item("rg-2"), ttl_seconds=600)

    clock.now += 61

    assert cache.get("musicbrainz:rg-1", MediaType.ALBUM) is None
    assert len(cache) == 1
    assert cache.has("musicbrainz:rg-2", MediaType.ALBUM)


def test_count_bound_drops_oldest_inserted() -> None:
    cache = ItemCache(max_entries=2)
    cache.set(_item("a"))
    cache.set(_item("b"))
    cache.set(_item("a", title="Replaced"))
    cache.set(_item("c"))

    assert cache.get("musicbrainz:a", MediaType.ALBUM) is None
    assert cache.get("musicbrainz:b", MediaType.ALBUM) is not None
    assert cache.get("musicbrainz:c", MediaType.ALBUM) is not None


def test_same_upstream_id_under_two_types_stays_separate() -> None:
    cache = ItemCache()
    album = _item("550", title="Fight Club")
    artist = _item("550", title="Fight Club Band", media_type=MediaType.ARTIST)
    cache.set(album)
    cache.set(artist)

    assert cache.get("musicbrainz:550", MediaType.ALBUM) is album
    assert cache.get("musicbrainz:550", MediaType.ARTIST) is artist
    assert cache.get("musicbrainz:550", MediaType.TRACK) is None
    assert len(cache) == 2


def test_concurrent_get_and_set_on_one_key_never_see_a_partial_entry() -> None:
    cache = ItemCache()
    versions = [_item("rg-1", title=f"Title {n}") for n in range(50)]
    errors = []
    start = threading.Barrier(8)

    def writer():
        start.wait()
        for _ in range(20):
            for item in versions:
                cache.set(item)

    def reader():
        start.wait()
        for _ in range(2000):
            found = cache.get("musicbrainz:rg-1", MediaType.ALBUM)
            if found is not None and not any(found is item for item in versions):
                errors.append(found)

    threads = [threading.Thread(target=writer) for _ in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(cache) == 1
    assert cache.get("musicbrainz:rg-1", MediaType.ALBUM) in versions
