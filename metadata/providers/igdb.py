import calendar
import logging
import threading
import time

from pydantic import ValidationError as PydanticValidationError

from config.settings import IGDB_BASE_URL, IGDB_CLIENT_ID_ENV, IGDB_CLIENT_SECRET_ENV, TWITCH_AUTH_URL
from engine.errors import UpstreamError, ValidationError
from engine.query_builder import effective_text, is_short_circuit
from metadata.normalize import (
    map_records,
    normalize_text,
    total_pages,
    validate_envelope,
    year_from_timestamp,
)
from metadata.providers.base import BaseProvider
from metadata.schemas import IGDBCompany, IGDBCount, IGDBGame, TwitchToken
from metadata.types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    ExternalUrl,
    MediaType,
    RangeFilter,
    SearchQuery,
    SearchResult,
    SortOption,
)

logger = logging.getLogger(__name__)

IGDB_PAGE_SIZE = 20
_COVER_URL = "https://images.igdb.com/igdb/image/upload/t_cover_big/{image_id}.jpg"
_LOGO_URL = "https://images.igdb.com/igdb/image/upload/t_logo_med/{image_id}.png"
_TOKEN_EXPIRY_MARGIN_SECONDS = 60

_FILTERS = {
    MediaType.GAME: frozenset({"year"}),
    MediaType.DEVELOPER: frozenset(),
}

_GAME_FIELDS = (
    "name, first_release_date, cover.image_id, total_rating, total_rating_count, "
    "involved_companies.company.name, involved_companies.developer, platforms.name"
)
_GAME_DETAIL_FIELDS = _GAME_FIELDS + ", summary, genres.name, themes.name, url"
_COMPANY_FIELDS = "name, start_date, country, logo.image_id"
_COMPANY_DETAIL_FIELDS = _COMPANY_FIELDS + ", description, url, developed"

_SORTS = {
    SortOption.RATING_DESC: "total_rating desc",
    SortOption.RATING_ASC: "total_rating asc",
    SortOption.REVIEWS_DESC: "total_rating_count desc",
    SortOption.REVIEWS_ASC: "total_rating_count asc",
    SortOption.DATE_DESC: "first_release_date desc",
    SortOption.DATE_ASC: "first_release_date asc",
    SortOption.TITLE_ASC: "name asc",
    SortOption.TITLE_DESC: "name desc",
}


def _quote(text: str) -> str:
    return '"' + str(text).replace("\\", "").replace('"', "") + '"'


def _year_start(year) -> int:
    return calendar.timegm((int(year), 1, 1, 0, 0, 0, 0, 0, 0))


def _year_end(year) -> int:
    return calendar.timegm((int(year), 12, 31, 23, 59, 59, 0, 0, 0))


class IGDBProvider(BaseProvider):
    """IGDB (apicalypse over POST) with Twitch client-credentials auth.

    Text search cannot be combined with ``sort`` upstream, so ordering is
    only sent (and reported as server-side) for discovery queries.
    """

    id = "igdb"
    label = "IGDB"
    category = Category.GAME
    types = (MediaType.GAME, MediaType.DEVELOPER)

    def __init__(self, *, fetch_client=None, item_cache=None, base_url=IGDB_BASE_URL, auth_url=TWITCH_AUTH_URL, clock=time.time):
        super().__init__(fetch_client=fetch_client, item_cache=item_cache)
        self.base_url = base_url.rstrip("/")
        self.auth_url = auth_url
        self._clock = clock
        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._access_token_expire_at = 0.0

    def _credentials(self) -> tuple[str, str]:
        return (
            self._require_credential(IGDB_CLIENT_ID_ENV),
            self._require_credential(IGDB_CLIENT_SECRET_ENV),
        )

    def _get_access_token(self) -> str:
        client_id, client_secret = self._credentials()
        with self._token_lock:
            now = self._clock()
            if self._access_token and now < self._access_token_expire_at:
                return self._access_token
            payload = self.fetch_client.post_json(
                self.auth_url,
                params={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "grant_type": "client_credentials",
                },
            )
            try:
                token = TwitchToken.model_validate(payload)
            except PydanticValidationError as exc:
                raise ValidationError("igdb: malformed token response") from exc
            self._access_token = token.access_token
            self._access_token_expire_at = now + max(0, token.expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS)
            logger.info("[IGDB] access token refreshed expires_in=%s", token.expires_in)
            return self._access_token

    def _post_once(self, endpoint: str, body: str):
        client_id, _ = self._credentials()
        headers = {
            "Client-ID": client_id,
            "Authorization": f"Bearer {self._get_access_token()}",
            "Content-Type": "text/plain",
        }
        return self.fetch_client.post_json(f"{self.base_url}{endpoint}", data=body.encode("utf-8"), headers=headers)

    def _post(self, endpoint: str, body: str):
        try:
            return self._post_once(endpoint, body)
        except UpstreamError as exc:
            if exc.status != 401:
                raise
            logger.warning("[IGDB] token rejected, refreshing")
            with self._token_lock:
                self._access_token = None
        return self._post_once(endpoint, body)

    # Query construction

    def _where_clauses(self, query: SearchQuery, media_type: MediaType) -> list[str]:
        clauses = []
        year_filter = query.filter("year")
        if media_type == MediaType.GAME and isinstance(year_filter, RangeFilter):
            if year_filter.min is not None:
                clauses.append(f"first_release_date >= {_year_start(year_filter.min)}")
            if year_filter.max is not None:
                clauses.append(f"first_release_date <= {_year_end(year_filter.max)}")
        if media_type == MediaType.DEVELOPER:
            text = effective_text(query.free_text)
            for word in text.split():
                clauses.append(f"name ~ *{_quote(word)}*")
            clauses.append("developed != null")
        return clauses

    def build_body(self, query: SearchQuery, media_type: MediaType, *, count: bool = False) -> tuple[str, bool]:
        """Return the apicalypse body and whether the ordering is applied upstream."""
        text = effective_text(query.free_text)
        parts = []
        if not count:
            fields = _GAME_FIELDS if media_type == MediaType.GAME else _COMPANY_FIELDS
            offset = (query.page - 1) * IGDB_PAGE_SIZE
            parts.append(f"fields {fields};")
            parts.append(f"limit {IGDB_PAGE_SIZE};")
            parts.append(f"offset {offset};")
        server_sorted = False
        if media_type == MediaType.GAME and text:
            parts.append(f"search {_quote(text)};")
        elif not count:
            order = _SORTS.get(query.sort)
            if order is None and media_type == MediaType.DEVELOPER:
                order = "name asc"
            if order:
                parts.append(f"sort {order};")
                server_sorted = query.sort != SortOption.RELEVANCE
        clauses = self._where_clauses(query, media_type)
        if clauses:
            parts.append(f"where {' & '.join(clauses)};")
        return " ".join(parts), server_sorted

    # Search

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        media_type = self._require_type(media_type)
        if is_short_circuit(query, supported_filters=_FILTERS[media_type]):
            return SearchResult.empty(query.page)
        endpoint = "/games" if media_type == MediaType.GAME else "/companies"
        body, server_sorted = self.build_body(query, media_type)
        payload = self._post(endpoint, body)
        if not isinstance(payload, list):
            raise ValidationError(f"igdb: {endpoint} response is not a list")
        if media_type == MediaType.GAME:
            items = map_records(
                payload,
                IGDBGame,
                self._map_game,
                provider_id=self.id,
                external_id_of=lambda r: r.id,
                media_type=media_type,
                cache=self.item_cache,
            )
        else:
            items = map_records(
                payload,
                IGDBCompany,
                self._map_company,
                provider_id=self.id,
                external_id_of=lambda r: r.id,
                media_type=media_type,
                cache=self.item_cache,
            )
        total = self._count(endpoint, query, media_type, fallback=len(items))
        logger.info("[IGDB] %s page=%s count=%s returned=%s", endpoint, query.page, total, len(items))
        return SearchResult(
            items=tuple(items),
            page=query.page,
            total_pages=total_pages(total, IGDB_PAGE_SIZE),
            total_count=total,
            server_sorted=server_sorted,
        )

    def _count(self, endpoint, query, media_type, *, fallback):
        body, _ = self.build_body(query, media_type, count=True)
        try:
            payload = self._post(f"{endpoint}/count", body)
            return validate_envelope(IGDBCount, payload, provider_id=self.id).count
        except (UpstreamError, ValidationError) as exc:
            logger.warning("[IGDB] count failed endpoint=%s error=%s", endpoint, exc)
            offset = (query.page - 1) * IGDB_PAGE_SIZE
            return offset + fallback

    def _map_game(self, game: IGDBGame) -> CanonicalItem:
        external = str(game.id)
        developer = next(
            (c.company.name for c in game.involved_companies if c.developer and c.company and c.company.name),
            None,
        )
        attributes = {}
        platforms = [p.name for p in game.platforms]
        if platforms:
            attributes["platforms"] = platforms
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.GAME,
            title=normalize_text(game.name) or game.name,
            provider_id=self.id,
            year=year_from_timestamp(game.first_release_date),
            image_url=_COVER_URL.format(image_id=game.cover.image_id) if game.cover and game.cover.image_id else None,
            # IGDB rates on 0-100; canonical ratings are 0-10.
            rating=game.total_rating / 10 if game.total_rating else None,
            review_count=game.total_rating_count,
            subtitle=developer,
            attributes=attributes,
        )

    def _map_company(self, company: IGDBCompany) -> CanonicalItem:
        external = str(company.id)
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.DEVELOPER,
            title=normalize_text(company.name) or company.name,
            provider_id=self.id,
            year=year_from_timestamp(company.start_date),
            image_url=_LOGO_URL.format(image_id=company.logo.image_id) if company.logo and company.logo.image_id else None,
        )

    # Details

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        media_type = self._require_type(media_type)
        external = self._external_id(item_id)
        if not external.isdigit():
            raise ValidationError(f"igdb: invalid id {external!r}")
        if media_type == MediaType.DEVELOPER:
            rows = self._post("/companies", f"fields {_COMPANY_DETAIL_FIELDS}; where id = {external};")
            if not rows:
                return self._skeleton(external, media_type)
            company = rows[0]
            logo = (company.get("logo") or {}).get("image_id")
            attributes = {"gameCount": len(company.get("developed") or [])}
            return CanonicalDetails(
                id=self._item_id(external),
                external_id=external,
                type=MediaType.DEVELOPER,
                provider_id=self.id,
                title=company.get("name"),
                year=year_from_timestamp(company.get("start_date")),
                image_url=_LOGO_URL.format(image_id=logo) if logo else None,
                description=company.get("description"),
                urls=(ExternalUrl("IGDB", company["url"]),) if company.get("url") else (),
                attributes=attributes,
            )

        rows = self._post("/games", f"fields {_GAME_DETAIL_FIELDS}; where id = {external};")
        if not rows:
            return self._skeleton(external, media_type)
        game = rows[0]
        companies = game.get("involved_companies") or []
        developer = next((c["company"].get("name") for c in companies if c.get("developer") and c.get("company")), None)
        publisher = next((c["company"].get("name") for c in companies if not c.get("developer") and c.get("company")), None)
        cover = (game.get("cover") or {}).get("image_id")
        tags = [g.get("name") for g in (game.get("genres") or []) + (game.get("themes") or []) if g.get("name")]
        attributes = {}
        if developer:
            attributes["developer"] = developer
        if publisher:
            attributes["publisher"] = publisher
        platforms = [p.get("name") for p in game.get("platforms") or [] if p.get("name")]
        if platforms:
            attributes["platforms"] = platforms
        return CanonicalDetails(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.GAME,
            provider_id=self.id,
            title=game.get("name"),
            year=year_from_timestamp(game.get("first_release_date")),
            image_url=_COVER_URL.format(image_id=cover) if cover else None,
            description=game.get("summary"),
            tags=tuple(tags),
            urls=(ExternalUrl("IGDB", game["url"]),) if game.get("url") else (),
            attributes=attributes,
        )
