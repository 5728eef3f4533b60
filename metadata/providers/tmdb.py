import logging

from config.settings import TMDB_API_KEY_ENV, TMDB_BASE_URL, TMDB_IMAGE_BASE_URL
from engine.query_builder import effective_text, is_short_circuit
from metadata.normalize import map_records, normalize_text, validate_envelope, year_from_date
from metadata.providers.base import BaseProvider
from metadata.schemas import TMDBPage, TMDBRecord
from metadata.types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    EnumFilter,
    ExternalUrl,
    LifeSpan,
    MediaType,
    RangeFilter,
    SearchQuery,
    SearchResult,
    SortOption,
)

logger = logging.getLogger(__name__)

_PATHS = {
    MediaType.MOVIE: "movie",
    MediaType.SHOW: "tv",
    MediaType.PERSON: "person",
}

_DATE_FIELDS = {
    MediaType.MOVIE: "primary_release_date",
    MediaType.SHOW: "first_air_date",
}

_TITLE_FIELDS = {
    MediaType.MOVIE: "original_title",
    MediaType.SHOW: "original_name",
}

# Filters /discover/* can apply; people have no discovery endpoint.
_DISCOVERY_FILTERS = {
    MediaType.MOVIE: frozenset({"year", "genre"}),
    MediaType.SHOW: frozenset({"year", "genre"}),
    MediaType.PERSON: frozenset(),
}


def _discover_sort(sort: SortOption, media_type: MediaType) -> str | None:
    date_field = _DATE_FIELDS[media_type]
    title_field = _TITLE_FIELDS[media_type]
    return {
        SortOption.RATING_DESC: "vote_average.desc",
        SortOption.RATING_ASC: "vote_average.asc",
        SortOption.REVIEWS_DESC: "vote_count.desc",
        SortOption.REVIEWS_ASC: "vote_count.asc",
        SortOption.DATE_DESC: f"{date_field}.desc",
        SortOption.DATE_ASC: f"{date_field}.asc",
        SortOption.TITLE_ASC: f"{title_field}.asc",
        SortOption.TITLE_DESC: f"{title_field}.desc",
    }.get(sort)


def _image_url(path):
    return f"{TMDB_IMAGE_BASE_URL}{path}" if path else None


class TMDBProvider(BaseProvider):
    """The Movie Database adapter.

    ``/search/*`` ignores ordering and only knows single years, so ranges are
    applied to the page in memory there. ``/discover/*`` handles both.
    """

    id = "tmdb"
    label = "TMDB"
    category = Category.CINEMA
    types = (MediaType.MOVIE, MediaType.SHOW, MediaType.PERSON)

    def __init__(self, *, fetch_client=None, item_cache=None, base_url=TMDB_BASE_URL):
        super().__init__(fetch_client=fetch_client, item_cache=item_cache)
        self.base_url = base_url.rstrip("/")

    def _get(self, path, params=None):
        api_key = self._require_credential(TMDB_API_KEY_ENV)
        payload = dict(params or {})
        payload["api_key"] = api_key
        return self.fetch_client.get_json(f"{self.base_url}{path}", params=payload)

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        media_type = self._require_type(media_type)
        if is_short_circuit(query, supported_filters=_DISCOVERY_FILTERS[media_type]):
            return SearchResult.empty(query.page)
        self._require_credential(TMDB_API_KEY_ENV)
        text = effective_text(query.free_text)
        year_filter = query.filter("year")
        server_sorted = False
        if text:
            path = f"/search/{_PATHS[media_type]}"
            params = {"query": text, "page": query.page}
        elif media_type in _DATE_FIELDS:
            path = f"/discover/{_PATHS[media_type]}"
            params = {"page": query.page}
            sort_by = _discover_sort(query.sort, media_type)
            if sort_by:
                params["sort_by"] = sort_by
                server_sorted = True
            if isinstance(year_filter, RangeFilter):
                field = _DATE_FIELDS[media_type]
                if year_filter.min is not None:
                    params[f"{field}.gte"] = f"{int(year_filter.min)}-01-01"
                if year_filter.max is not None:
                    params[f"{field}.lte"] = f"{int(year_filter.max)}-12-31"
                year_filter = None
            genre = query.filter("genre")
            if isinstance(genre, EnumFilter):
                params["with_genres"] = ",".join(genre.values)
        else:
            # People have no discovery endpoint.
            return SearchResult.empty(query.page)

        payload = self._get(path, params)
        envelope = validate_envelope(TMDBPage, payload, provider_id=self.id)
        records = envelope.results
        # People carry no release or air date to compare against.
        if isinstance(year_filter, RangeFilter) and media_type in _DATE_FIELDS:
            records = [r for r in records if self._in_year_range(r, year_filter)]
        items = map_records(
            records,
            TMDBRecord,
            lambda record: self._map(record, media_type),
            provider_id=self.id,
            external_id_of=lambda r: r.id,
            media_type=media_type,
            cache=self.item_cache,
        )
        logger.info("[TMDB] %s page=%s total=%s returned=%s", path, envelope.page, envelope.total_results, len(items))
        return SearchResult(
            items=tuple(items),
            page=envelope.page or query.page,
            total_pages=envelope.total_pages,
            total_count=envelope.total_results,
            server_sorted=server_sorted,
        )

    @staticmethod
    def _in_year_range(raw, year_filter: RangeFilter) -> bool:
        if not isinstance(raw, dict):
            return True
        year = year_from_date(raw.get("release_date") or raw.get("first_air_date"))
        if year is None:
            return False
        if year_filter.min is not None and year < int(year_filter.min):
            return False
        if year_filter.max is not None and year > int(year_filter.max):
            return False
        return True

    def _map(self, record: TMDBRecord, media_type: MediaType) -> CanonicalItem:
        external = str(record.id)
        attributes = {}
        if record.known_for_department:
            attributes["knownFor"] = record.known_for_department
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=media_type,
            title=normalize_text(record.title or record.name) or "Unknown",
            provider_id=self.id,
            year=year_from_date(record.release_date or record.first_air_date),
            image_url=_image_url(record.poster_path or record.profile_path),
            rating=record.vote_average,
            review_count=record.vote_count,
            attributes=attributes,
        )

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        media_type = self._require_type(media_type)
        external = self._external_id(item_id)
        path = _PATHS[media_type]
        data = self._get(f"/{path}/{external}")
        date = data.get("release_date") or data.get("first_air_date") or data.get("birthday")
        genres = [g.get("name") for g in data.get("genres") or [] if isinstance(g, dict) and g.get("name")]
        attributes = {}
        if data.get("tagline"):
            attributes["tagline"] = data["tagline"]
        if date:
            attributes["date"] = date
        if data.get("runtime"):
            attributes["runtime"] = data["runtime"]
        life_span = None
        if media_type == MediaType.PERSON and (data.get("birthday") or data.get("deathday")):
            life_span = LifeSpan(
                begin=data.get("birthday"),
                end=data.get("deathday"),
                ended=bool(data.get("deathday")),
            )
        urls = [ExternalUrl("TMDB", f"https://www.themoviedb.org/{path}/{external}")]
        if data.get("homepage"):
            urls.append(ExternalUrl("homepage", data["homepage"]))
        return CanonicalDetails(
            id=self._item_id(external),
            external_id=external,
            type=media_type,
            provider_id=self.id,
            title=data.get("title") or data.get("name"),
            year=year_from_date(date),
            image_url=_image_url(data.get("poster_path") or data.get("profile_path")),
            description=data.get("overview") or data.get("biography") or None,
            tags=tuple(genres),
            life_span=life_span,
            urls=tuple(urls),
            attributes=attributes,
        )
