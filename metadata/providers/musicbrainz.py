import logging

from config.settings import (
    COVER_ART_ARCHIVE_BASE_URL,
    MUSICBRAINZ_BASE_URL,
    MUSICBRAINZ_MIN_INTERVAL_SECONDS,
    MUSICBRAINZ_SEARCH_LIMIT,
)
from engine.errors import UpstreamError
from engine.fetch_client import FetchClient
from engine.query_builder import LuceneDialect, build_query, escape_lucene, filter_clause, is_short_circuit
from metadata.normalize import (
    format_duration,
    map_records,
    normalize_text,
    total_pages,
    validate_envelope,
    year_from_date,
)
from metadata.providers.base import BaseProvider
from metadata.schemas import MBArtist, MBArtistCredit, MBRecording, MBReleaseGroup, MBSearchEnvelope
from metadata.types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    EnumFilter,
    ExternalUrl,
    LifeSpan,
    MediaType,
    SearchQuery,
    SearchResult,
    TextFilter,
    TrackEntry,
)

logger = logging.getLogger(__name__)

SECONDARY_TYPES = (
    "Compilation",
    "Soundtrack",
    "Spokenword",
    "Interview",
    "Audiobook",
    "Audio drama",
    "Live",
    "Remix",
    "DJ-mix",
    "Mixtape/Street",
    "Demo",
)

_ENDPOINTS = {
    MediaType.ARTIST: "artist",
    MediaType.ALBUM: "release-group",
    MediaType.TRACK: "recording",
}

_ENVELOPE_KEYS = {
    MediaType.ARTIST: "artists",
    MediaType.ALBUM: "release_groups",
    MediaType.TRACK: "recordings",
}

_DATE_FIELDS = {
    MediaType.ARTIST: "begin",
    MediaType.ALBUM: "firstreleasedate",
    MediaType.TRACK: "firstreleasedate",
}

_TEXT_FIELDS = {
    MediaType.ARTIST: "artist",
    MediaType.ALBUM: "releasegroup",
    MediaType.TRACK: "recording",
}

_ARTIST_URL_TYPES = {"wikidata", "wikipedia", "youtube", "social network", "streaming"}
_ARTIST_TAG_LIMIT = 10


def format_artist_credit(credits) -> str:
    if not credits:
        return "Unknown"
    return "".join(f"{credit.name}{credit.joinphrase or ''}" for credit in credits)


def release_group_cover_url(release_group_id):
    return f"{COVER_ART_ARCHIVE_BASE_URL}/release-group/{release_group_id}/front-250"


def release_cover_url(release_id):
    return f"{COVER_ART_ARCHIVE_BASE_URL}/release/{release_id}/front-250"


class MusicBrainzProvider(BaseProvider):
    id = "musicbrainz"
    label = "MusicBrainz"
    category = Category.MUSIC
    types = (MediaType.TRACK, MediaType.ALBUM, MediaType.ARTIST)

    def __init__(self, *, fetch_client=None, item_cache=None, base_url=MUSICBRAINZ_BASE_URL, image_resolver=None):
        if fetch_client is None:
            # MusicBrainz rejects clients that exceed one request per second.
            fetch_client = FetchClient(min_interval_seconds=MUSICBRAINZ_MIN_INTERVAL_SECONDS)
        super().__init__(fetch_client=fetch_client, item_cache=item_cache)
        self.base_url = base_url.rstrip("/")
        self.image_resolver = image_resolver

    def _get(self, path, params):
        url = f"{self.base_url}/{path}"
        payload = dict(params or {})
        payload["fmt"] = "json"
        logger.debug("[MUSICBRAINZ] request=%s params=%s", path, payload)
        return self.fetch_client.get_json(url, params=payload)

    # Query construction

    def _dialect(self, media_type):
        fields = {"year": _DATE_FIELDS[media_type], "tag": "tag"}
        if media_type != MediaType.ARTIST:
            fields["artistId"] = "arid"
        if media_type == MediaType.ARTIST:
            fields["country"] = "country"
        if media_type == MediaType.ALBUM:
            fields["primaryTypes"] = "primarytype"
            fields["secondaryTypes"] = "secondarytype"
        if media_type == MediaType.TRACK:
            fields["albumId"] = "rgid"
            fields["duration"] = "dur"
        return LuceneDialect(joiner=" AND ", text_field=_TEXT_FIELDS[media_type], fields=fields)

    def build_query(self, query: SearchQuery, media_type: MediaType) -> str:
        """Lucene string for ``query``, or ``""`` when no clause applies to this type.

        The default album exclusion only narrows a search; on its own it is
        not something to search for.
        """
        extra = []
        artist = query.filter("artist")
        if media_type != MediaType.ARTIST and isinstance(artist, TextFilter) and not query.filter("artistId"):
            extra.append(filter_clause("artist", artist))
        if media_type == MediaType.ARTIST:
            artist_type = query.filter("artistType")
            if isinstance(artist_type, EnumFilter):
                lowered = EnumFilter(tuple(v.lower() for v in artist_type.values))
                extra.append(filter_clause("type", lowered))
        searchable = build_query(query, self._dialect(media_type), extra_clauses=extra)
        if not searchable:
            return ""
        if media_type == MediaType.ALBUM and not query.filter("secondaryTypes"):
            excluded = " OR ".join(f'"{t}"' for t in SECONDARY_TYPES)
            return f"{searchable} AND NOT secondarytype:({excluded})"
        return searchable

    # Search

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        media_type = self._require_type(media_type)
        if is_short_circuit(query):
            return SearchResult.empty(query.page)
        lucene = self.build_query(query, media_type)
        if not lucene:
            logger.debug("[MUSICBRAINZ] no searchable clause type=%s", media_type.value)
            return SearchResult.empty(query.page)
        limit = MUSICBRAINZ_SEARCH_LIMIT
        offset = (query.page - 1) * limit
        payload = self._get(_ENDPOINTS[media_type], {"query": lucene, "limit": limit, "offset": offset})
        envelope = validate_envelope(MBSearchEnvelope, payload, provider_id=self.id)
        raw_records = getattr(envelope, _ENVELOPE_KEYS[media_type]) or []
        schema, mapper = {
            MediaType.ALBUM: (MBReleaseGroup, self._map_release_group),
            MediaType.ARTIST: (MBArtist, self._map_artist),
            MediaType.TRACK: (MBRecording, self._map_recording),
        }[media_type]
        items = map_records(
            raw_records,
            schema,
            mapper,
            provider_id=self.id,
            external_id_of=lambda r: r.id,
            media_type=media_type,
            cache=self.item_cache,
        )
        logger.info(
            "[MUSICBRAINZ] search type=%s page=%s count=%s returned=%s",
            media_type.value,
            query.page,
            envelope.count,
            len(items),
        )
        return SearchResult(
            items=tuple(items),
            page=query.page,
            total_pages=total_pages(envelope.count, limit),
            total_count=envelope.count,
            server_sorted=False,
        )

    # Mappers

    def _map_release_group(self, record: MBReleaseGroup) -> CanonicalItem:
        attributes = {}
        if record.primary_type:
            attributes["primaryType"] = record.primary_type
        if record.secondary_types:
            attributes["secondaryTypes"] = list(record.secondary_types)
        if record.first_release_date:
            attributes["date"] = record.first_release_date
        return CanonicalItem(
            id=self._item_id(record.id),
            external_id=record.id,
            type=MediaType.ALBUM,
            title=normalize_text(record.title) or record.title,
            provider_id=self.id,
            year=year_from_date(record.first_release_date),
            image_url=release_group_cover_url(record.id),
            subtitle=format_artist_credit(record.artist_credit),
            attributes=attributes,
        )

    def _map_artist(self, record: MBArtist) -> CanonicalItem:
        begin = record.life_span.begin if record.life_span else None
        attributes = {}
        if record.disambiguation:
            attributes["disambiguation"] = record.disambiguation
        if record.country:
            attributes["country"] = record.country
        if record.type:
            attributes["artistType"] = record.type
        return CanonicalItem(
            id=self._item_id(record.id),
            external_id=record.id,
            type=MediaType.ARTIST,
            title=normalize_text(record.name) or record.name,
            provider_id=self.id,
            year=year_from_date(begin),
            subtitle=record.disambiguation or None,
            attributes=attributes,
        )

    def _map_recording(self, record: MBRecording) -> CanonicalItem:
        release = record.releases[0] if record.releases else None
        album_id = release.release_group.id if release and release.release_group else None
        release_id = release.id if release else None
        image_url = None
        if album_id:
            image_url = release_group_cover_url(album_id)
        elif release_id:
            image_url = release_cover_url(release_id)
        attributes = {}
        if release and release.title:
            attributes["album"] = release.title
        if album_id:
            attributes["albumId"] = album_id
        if release_id:
            attributes["releaseId"] = release_id
        duration = format_duration(record.length)
        if duration:
            attributes["duration"] = duration
        return CanonicalItem(
            id=self._item_id(record.id),
            external_id=record.id,
            type=MediaType.TRACK,
            title=normalize_text(record.title) or record.title,
            provider_id=self.id,
            year=year_from_date(record.first_release_date),
            image_url=image_url,
            subtitle=format_artist_credit(record.artist_credit),
            attributes=attributes,
        )

    # Details

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        media_type = self._require_type(media_type)
        mbid = self._external_id(item_id)
        if media_type == MediaType.ALBUM:
            return self._album_details(mbid)
        if media_type == MediaType.ARTIST:
            return self._artist_details(mbid)
        return self._track_details(mbid)

    def _best_release_id(self, release_group_id):
        try:
            data = self._get(
                "release",
                {"query": f"rgid:{escape_lucene(release_group_id)} AND status:official", "limit": 1},
            )
            releases = data.get("releases") or []
            if releases:
                return releases[0].get("id")
        except UpstreamError as exc:
            logger.warning("[MUSICBRAINZ] release search failed rgid=%s status=%s", release_group_id, exc.status)
        data = self._get(f"release-group/{release_group_id}", {"inc": "releases"})
        releases = data.get("releases") or []
        return releases[0].get("id") if releases else None

    def _album_details(self, mbid):
        skeleton = self._skeleton(mbid, MediaType.ALBUM)
        release_id = self._best_release_id(mbid)
        if not release_id:
            logger.info("[MUSICBRAINZ] no release for rgid=%s", mbid)
            return skeleton
        data = self._get(f"release/{release_id}", {"inc": "recordings+media+labels"})
        media = data.get("media") or []
        tracks = []
        for track in (media[0].get("tracks") or []) if media else []:
            try:
                position = int(track.get("position") or 0)
            except (TypeError, ValueError):
                position = 0
            recording = track.get("recording") or {}
            tracks.append(
                TrackEntry(
                    position=position,
                    title=str(track.get("title") or ""),
                    length=format_duration(track.get("length")) or "--:--",
                    id=recording.get("id") or track.get("id"),
                )
            )
        label_info = data.get("label-info") or []
        label = ((label_info[0] or {}).get("label") or {}).get("name") if label_info else None
        attributes = {"releaseId": release_id}
        if label:
            attributes["label"] = label
        if data.get("date"):
            attributes["date"] = data.get("date")
        return CanonicalDetails(
            id=skeleton.id,
            external_id=mbid,
            type=MediaType.ALBUM,
            provider_id=self.id,
            title=data.get("title"),
            year=year_from_date(data.get("date")),
            image_url=release_group_cover_url(mbid),
            tracklist=tuple(tracks),
            urls=(ExternalUrl("MusicBrainz", f"https://musicbrainz.org/release-group/{mbid}"),),
            attributes=attributes,
        )

    def _artist_details(self, mbid):
        data = self._get(f"artist/{mbid}", {"inc": "url-rels+tags"})
        tags = sorted(data.get("tags") or [], key=lambda t: int(t.get("count") or 0), reverse=True)
        life = data.get("life-span") or {}
        urls = [ExternalUrl("MusicBrainz", f"https://musicbrainz.org/artist/{mbid}")]
        for relation in data.get("relations") or []:
            if relation.get("type") in _ARTIST_URL_TYPES:
                resource = (relation.get("url") or {}).get("resource")
                if resource:
                    urls.append(ExternalUrl(relation["type"], resource))
        attributes = {}
        area = (data.get("area") or {}).get("name")
        if area:
            attributes["area"] = area
        image_url = None
        if self.image_resolver is not None:
            image_url = self.image_resolver.resolve_artist(mbid)
        return CanonicalDetails(
            id=self._item_id(mbid),
            external_id=mbid,
            type=MediaType.ARTIST,
            provider_id=self.id,
            title=data.get("name"),
            year=year_from_date(life.get("begin")),
            image_url=image_url,
            tags=tuple(t.get("name") for t in tags[:_ARTIST_TAG_LIMIT] if t.get("name")),
            life_span=LifeSpan(begin=life.get("begin"), end=life.get("end"), ended=life.get("ended")),
            urls=tuple(urls),
            attributes=attributes,
        )

    def _track_details(self, mbid):
        data = self._get(f"recording/{mbid}", {"inc": "releases+release-groups+artist-credits+tags"})
        releases = data.get("releases") or []
        release = releases[0] if releases else {}
        album_id = (release.get("release-group") or {}).get("id")
        attributes = {}
        if release.get("title"):
            attributes["album"] = release["title"]
        if album_id:
            attributes["albumId"] = album_id
        duration = format_duration(data.get("length"))
        if duration:
            attributes["duration"] = duration
        credits = [MBArtistCredit.model_validate(c) for c in data.get("artist-credit") or [] if c.get("name")]
        if credits:
            attributes["artist"] = format_artist_credit(credits)
        return CanonicalDetails(
            id=self._item_id(mbid),
            external_id=mbid,
            type=MediaType.TRACK,
            provider_id=self.id,
            title=data.get("title"),
            year=year_from_date(data.get("first-release-date")),
            image_url=release_group_cover_url(album_id) if album_id else None,
            tags=tuple(t.get("name") for t in data.get("tags") or [] if t.get("name")),
            urls=(ExternalUrl("MusicBrainz", f"https://musicbrainz.org/recording/{mbid}"),),
            attributes=attributes,
        )
