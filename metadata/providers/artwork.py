"""Image resolution waterfall for items that arrive without artwork.

Sources are tried in order and the first non-empty URL wins. Every source
failure, 404 included, is a soft miss: ``resolve`` never raises.
"""

import logging
from urllib.parse import quote

from config.settings import (
    COVER_ART_ARCHIVE_BASE_URL,
    FANART_API_KEY_ENV,
    FANART_BASE_URL,
    MUSICBRAINZ_BASE_URL,
    WIKIDATA_API_URL,
    WIKIMEDIA_FILE_PATH_URL,
    WIKIMEDIA_THUMB_WIDTH,
    read_credential,
)
from engine.canonical_ids import build_item_id
from engine.errors import MediaEngineError
from engine.fetch_client import get_fetch_client
from metadata.types import CanonicalItem, MediaType

logger = logging.getLogger(__name__)


def fanart_preview_url(url):
    return str(url).replace("/fanart/", "/preview/")


def wikimedia_thumb_url(file_name, width=WIKIMEDIA_THUMB_WIDTH):
    return f"{WIKIMEDIA_FILE_PATH_URL}/{quote(str(file_name))}?width={width}"


def _pick_cover(payload):
    images = payload.get("images") if isinstance(payload, dict) else None
    if not images:
        return None
    front = next((img for img in images if isinstance(img, dict) and img.get("front")), None)
    first = front or (images[0] if isinstance(images[0], dict) else {})
    thumbs = first.get("thumbnails") if isinstance(first.get("thumbnails"), dict) else {}
    return thumbs.get("small") or thumbs.get("250") or first.get("image")


class ImageWaterfall:
    """Fanart.tv, then Wikidata P18, then the Cover Art Archive.

    ``mb_fetch_client`` is used for MusicBrainz lookups so they share the
    MusicBrainz rate limit; the other sources go through ``fetch_client``.
    """

    def __init__(self, *, fetch_client=None, mb_fetch_client=None, sources=None, mb_base_url=MUSICBRAINZ_BASE_URL):
        self.fetch_client = fetch_client or get_fetch_client()
        self.mb_fetch_client = mb_fetch_client or self.fetch_client
        self.mb_base_url = mb_base_url.rstrip("/")
        if sources is None:
            sources = (
                ("fanart", self.fanart_image),
                ("wikidata", self.wikidata_image),
                ("coverart", self.cover_art_image),
            )
        self.sources = tuple(sources)

    def resolve(self, item: CanonicalItem):
        for name, source in self.sources:
            try:
                url = source(item)
            except (MediaEngineError, AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.debug("[ARTWORK] source=%s id=%s miss error=%s", name, item.id, exc)
                continue
            if url:
                logger.debug("[ARTWORK] source=%s id=%s hit", name, item.id)
                return url
        logger.debug("[ARTWORK] id=%s all sources missed", item.id)
        return None

    def resolve_artist(self, mbid):
        item = CanonicalItem(
            id=build_item_id("musicbrainz", mbid),
            external_id=mbid,
            type=MediaType.ARTIST,
            title="",
            provider_id="musicbrainz",
        )
        return self.resolve(item)

    # Sources

    def fanart_image(self, item: CanonicalItem):
        if item.type != MediaType.ARTIST or item.provider_id != "musicbrainz":
            return None
        api_key = read_credential(FANART_API_KEY_ENV)
        if not api_key:
            return None
        payload = self.fetch_client.get_json(
            f"{FANART_BASE_URL}/{item.external_id}",
            params={"api_key": api_key},
            retry_limit=0,
        )
        thumbs = payload.get("artistthumb") if isinstance(payload, dict) else None
        url = thumbs[0].get("url") if thumbs and isinstance(thumbs[0], dict) else None
        return fanart_preview_url(url) if url else None

    def wikidata_image(self, item: CanonicalItem):
        if item.type != MediaType.ARTIST or item.provider_id != "musicbrainz":
            return None
        artist = self.mb_fetch_client.get_json(
            f"{self.mb_base_url}/artist/{item.external_id}",
            params={"inc": "url-rels", "fmt": "json"},
        )
        relation = next(
            (r for r in artist.get("relations") or [] if r.get("type") == "wikidata"),
            None,
        )
        resource = ((relation or {}).get("url") or {}).get("resource")
        if not resource:
            return None
        qid = resource.rstrip("/").rsplit("/", 1)[-1]
        if not qid:
            return None
        claims = self.fetch_client.get_json(
            WIKIDATA_API_URL,
            params={"action": "wbgetclaims", "property": "P18", "entity": qid, "format": "json"},
        )
        p18 = (claims.get("claims") or {}).get("P18") or []
        file_name = (((p18[0] if p18 else {}).get("mainsnak") or {}).get("datavalue") or {}).get("value")
        return wikimedia_thumb_url(file_name) if file_name else None

    def cover_art_image(self, item: CanonicalItem):
        if item.provider_id != "musicbrainz":
            return None
        release_group_id = None
        release_id = None
        if item.type == MediaType.ALBUM:
            release_group_id = item.external_id
        elif item.type == MediaType.TRACK:
            release_group_id = item.attributes.get("albumId")
            release_id = item.attributes.get("releaseId")
        elif item.type == MediaType.ARTIST:
            release_group_id = self._representative_release_group(item.external_id)
        if release_group_id:
            url = self._cover_art("release-group", release_group_id)
            if url:
                return url
        if release_id:
            return self._cover_art("release", release_id)
        return None

    def _cover_art(self, kind, mbid):
        try:
            payload = self.fetch_client.get_json(f"{COVER_ART_ARCHIVE_BASE_URL}/{kind}/{mbid}", retry_limit=0)
        except MediaEngineError as exc:
            logger.debug("[ARTWORK] cover art miss %s=%s error=%s", kind, mbid, exc)
            return None
        return _pick_cover(payload)

    def _representative_release_group(self, artist_mbid):
        payload = self.mb_fetch_client.get_json(
            f"{self.mb_base_url}/release-group",
            params={"artist": artist_mbid, "type": "album", "limit": 1, "fmt": "json"},
        )
        groups = payload.get("release-groups") or []
        return groups[0].get("id") if groups else None
