import logging

from config.settings import RAWG_API_KEY_ENV, RAWG_BASE_URL
from engine.query_builder import effective_text, is_short_circuit
from metadata.normalize import (
    map_records,
    normalize_text,
    total_pages,
    validate_envelope,
    year_from_date,
)
from metadata.providers.base import BaseProvider
from metadata.schemas import RAWGDeveloper, RAWGGame, RAWGPage
from metadata.types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    EnumFilter,
    ExternalUrl,
    MediaType,
    RangeFilter,
    SearchQuery,
    SearchResult,
    SortOption,
    TextFilter,
)

logger = logging.getLogger(__name__)

RAWG_PAGE_SIZE = 20

_ORDERING = {
    SortOption.RATING_DESC: "-rating",
    SortOption.RATING_ASC: "rating",
    SortOption.REVIEWS_DESC: "-ratings_count",
    SortOption.REVIEWS_ASC: "ratings_count",
    SortOption.DATE_DESC: "-released",
    SortOption.DATE_ASC: "released",
    SortOption.TITLE_ASC: "name",
    SortOption.TITLE_DESC: "-name",
}

_DEFAULT_MIN_DATE = "1970-01-01"
_DEFAULT_MAX_DATE = "2030-12-31"
_TAG_LIMIT = 10

_FILTERS = {
    MediaType.GAME: frozenset({"year", "platform", "genre", "tag"}),
    MediaType.DEVELOPER: frozenset(),
}


def _filter_values(value) -> list[str]:
    if isinstance(value, EnumFilter):
        return [str(v).strip() for v in value.values if str(v).strip()]
    if isinstance(value, TextFilter) and value.text:
        return [value.text.strip()]
    return []


class RAWGProvider(BaseProvider):
    id = "rawg"
    label = "RAWG"
    category = Category.GAME
    types = (MediaType.GAME, MediaType.DEVELOPER)

    def __init__(self, *, fetch_client=None, item_cache=None, base_url=RAWG_BASE_URL):
        super().__init__(fetch_client=fetch_client, item_cache=item_cache)
        self.base_url = base_url.rstrip("/")

    def _get(self, path, params=None):
        api_key = self._require_credential(RAWG_API_KEY_ENV)
        payload = dict(params or {})
        payload["key"] = api_key
        return self.fetch_client.get_json(f"{self.base_url}{path}", params=payload)

    def build_params(self, query: SearchQuery, media_type: MediaType) -> dict:
        params = {"page": query.page, "page_size": RAWG_PAGE_SIZE}
        text = effective_text(query.free_text)
        if text:
            params["search"] = text
            params["search_precise"] = "true"
        ordering = _ORDERING.get(query.sort)
        if ordering:
            params["ordering"] = ordering
        if media_type != MediaType.GAME:
            return params
        year_filter = query.filter("year")
        if isinstance(year_filter, RangeFilter):
            start = f"{int(year_filter.min)}-01-01" if year_filter.min is not None else _DEFAULT_MIN_DATE
            end = f"{int(year_filter.max)}-12-31" if year_filter.max is not None else _DEFAULT_MAX_DATE
            params["dates"] = f"{start},{end}"
        platforms = _filter_values(query.filter("platform"))
        if platforms:
            params["platforms"] = ",".join(platforms)
        genres = _filter_values(query.filter("genre")) or _filter_values(query.filter("tag"))
        if genres:
            params["genres"] = ",".join(g.lower() for g in genres)
        return params

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        media_type = self._require_type(media_type)
        if is_short_circuit(query, supported_filters=_FILTERS[media_type]):
            return SearchResult.empty(query.page)
        path = "/developers" if media_type == MediaType.DEVELOPER else "/games"
        params = self.build_params(query, media_type)
        payload = self._get(path, params)
        envelope = validate_envelope(RAWGPage, payload, provider_id=self.id)
        if media_type == MediaType.DEVELOPER:
            items = map_records(
                envelope.results,
                RAWGDeveloper,
                self._map_developer,
                provider_id=self.id,
                external_id_of=lambda r: r.id,
                media_type=media_type,
                cache=self.item_cache,
            )
        else:
            items = map_records(
                envelope.results,
                RAWGGame,
                self._map_game,
                provider_id=self.id,
                external_id_of=lambda r: r.id,
                media_type=media_type,
                cache=self.item_cache,
            )
        logger.info("[RAWG] %s page=%s count=%s returned=%s", path, query.page, envelope.count, len(items))
        return SearchResult(
            items=tuple(items),
            page=query.page,
            total_pages=total_pages(envelope.count, RAWG_PAGE_SIZE),
            total_count=envelope.count,
            server_sorted=query.sort != SortOption.RELEVANCE,
        )

    def _map_game(self, game: RAWGGame) -> CanonicalItem:
        external = str(game.id)
        attributes = {}
        platforms = [p.platform.name for p in game.parent_platforms]
        if platforms:
            attributes["platforms"] = platforms
        if game.slug:
            attributes["slug"] = game.slug
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.GAME,
            title=normalize_text(game.name) or game.name,
            provider_id=self.id,
            year=year_from_date(game.released),
            image_url=game.background_image,
            rating=game.rating,
            review_count=game.ratings_count,
            subtitle=game.developers[0].name if game.developers else None,
            attributes=attributes,
        )

    def _map_developer(self, dev: RAWGDeveloper) -> CanonicalItem:
        external = str(dev.id)
        attributes = {}
        if dev.games_count:
            attributes["gamesCount"] = dev.games_count
        if dev.slug:
            attributes["slug"] = dev.slug
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.DEVELOPER,
            title=normalize_text(dev.name) or "Unknown",
            provider_id=self.id,
            image_url=dev.image_background,
            attributes=attributes,
        )

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        media_type = self._require_type(media_type)
        external = self._external_id(item_id)
        if media_type == MediaType.DEVELOPER:
            dev = self._get(f"/developers/{external}")
            slug = dev.get("slug") or external
            return CanonicalDetails(
                id=self._item_id(external),
                external_id=external,
                type=MediaType.DEVELOPER,
                provider_id=self.id,
                title=dev.get("name"),
                image_url=dev.get("image_background"),
                description=dev.get("description") or None,
                urls=(ExternalUrl("RAWG", f"https://rawg.io/developers/{slug}"),),
            )

        game = self._get(f"/games/{external}")
        platforms = [
            ((p or {}).get("platform") or {}).get("name")
            for p in (game.get("parent_platforms") or game.get("platforms") or [])
        ]
        tags = [g.get("name") for g in game.get("genres") or [] if g.get("name")]
        english_tags = [t.get("name") for t in game.get("tags") or [] if t.get("language") == "eng" and t.get("name")]
        tags.extend(english_tags[:_TAG_LIMIT])
        attributes = {}
        if platforms:
            attributes["platforms"] = [p for p in platforms if p]
        developers = game.get("developers") or []
        if developers:
            attributes["developer"] = developers[0].get("name")
        publishers = game.get("publishers") or []
        if publishers:
            attributes["publisher"] = publishers[0].get("name")
        if game.get("metacritic") is not None:
            attributes["metacritic"] = game["metacritic"]
        if game.get("released"):
            attributes["date"] = game["released"]
        slug = game.get("slug") or external
        urls = [ExternalUrl("RAWG", f"https://rawg.io/games/{slug}")]
        if game.get("website"):
            urls.append(ExternalUrl("website", game["website"]))
        return CanonicalDetails(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.GAME,
            provider_id=self.id,
            title=game.get("name"),
            year=year_from_date(game.get("released")),
            image_url=game.get("background_image"),
            description=game.get("description_raw") or None,
            tags=tuple(tags),
            urls=tuple(urls),
            attributes=attributes,
        )
