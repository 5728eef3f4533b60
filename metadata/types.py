"""Canonical data model shared by every provider adapter."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from config.settings import DEFAULT_PAGE_SIZE


class MediaType(str, Enum):
    TRACK = "track"
    ALBUM = "album"
    ARTIST = "artist"
    BOOK = "book"
    AUTHOR = "author"
    SERIES = "series"
    MOVIE = "movie"
    SHOW = "show"
    PERSON = "person"
    GAME = "game"
    DEVELOPER = "developer"


class Category(str, Enum):
    MUSIC = "music"
    BOOK = "book"
    CINEMA = "cinema"
    GAME = "game"


class SortOption(str, Enum):
    RELEVANCE = "relevance"
    RATING_DESC = "rating_desc"
    RATING_ASC = "rating_asc"
    REVIEWS_DESC = "reviews_desc"
    REVIEWS_ASC = "reviews_asc"
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    TITLE_ASC = "title_asc"
    TITLE_DESC = "title_desc"


def _strip_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class CanonicalItem:
    """One search hit in the unified schema.

    Identity is ``(provider_id, external_id)``; ``id`` is the namespaced
    ``"<provider_id>:<external_id>"`` form built by ``engine.canonical_ids``.
    Records are never mutated in place: enrichment builds a replacement via
    ``with_image``.
    """

    id: str
    external_id: str
    type: MediaType
    title: str
    provider_id: str
    year: int | None = None
    image_url: str | None = None
    rating: float | None = None
    review_count: int | None = None
    subtitle: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def with_image(self, image_url: str) -> "CanonicalItem":
        return replace(self, image_url=image_url)

    def to_dict(self) -> dict[str, Any]:
        return _strip_none(
            {
                "id": self.id,
                "externalId": self.external_id,
                "type": self.type.value,
                "title": self.title,
                "providerId": self.provider_id,
                "year": self.year,
                "imageUrl": self.image_url,
                "rating": self.rating,
                "reviewCount": self.review_count,
                "subtitle": self.subtitle,
                "attributes": dict(self.attributes) if self.attributes else None,
            }
        )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CanonicalItem":
        return cls(
            id=str(payload["id"]),
            external_id=str(payload["externalId"]),
            type=MediaType(payload["type"]),
            title=str(payload.get("title") or ""),
            provider_id=str(payload["providerId"]),
            year=payload.get("year"),
            image_url=payload.get("imageUrl"),
            rating=payload.get("rating"),
            review_count=payload.get("reviewCount"),
            subtitle=payload.get("subtitle"),
            attributes=dict(payload.get("attributes") or {}),
        )


@dataclass(frozen=True)
class TrackEntry:
    position: int
    title: str
    length: str | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _strip_none(
            {"position": self.position, "title": self.title, "length": self.length, "id": self.id}
        )


@dataclass(frozen=True)
class LifeSpan:
    begin: str | None = None
    end: str | None = None
    ended: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return _strip_none({"begin": self.begin, "end": self.end, "ended": self.ended})


@dataclass(frozen=True)
class ExternalUrl:
    type: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "url": self.url}


@dataclass(frozen=True)
class CanonicalDetails:
    """Extended record fetched lazily by ``get_details``.

    A details call that fails upstream still yields a skeletal record holding
    only the identity fields.
    """

    id: str
    external_id: str
    type: MediaType
    provider_id: str
    title: str | None = None
    year: int | None = None
    image_url: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()
    tracklist: tuple[TrackEntry, ...] = ()
    life_span: LifeSpan | None = None
    urls: tuple[ExternalUrl, ...] = ()
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_skeletal(self) -> bool:
        return self.title is None and self.description is None and not self.tags

    def to_dict(self) -> dict[str, Any]:
        return _strip_none(
            {
                "id": self.id,
                "externalId": self.external_id,
                "type": self.type.value,
                "providerId": self.provider_id,
                "title": self.title,
                "year": self.year,
                "imageUrl": self.image_url,
                "description": self.description,
                "tags": list(self.tags) if self.tags else None,
                "tracklist": [t.to_dict() for t in self.tracklist] if self.tracklist else None,
                "lifeSpan": self.life_span.to_dict() if self.life_span else None,
                "urls": [u.to_dict() for u in self.urls] if self.urls else None,
                "attributes": dict(self.attributes) if self.attributes else None,
            }
        )


@dataclass(frozen=True)
class RangeFilter:
    min: float | int | None = None
    max: float | int | None = None

    @property
    def is_active(self) -> bool:
        return self.min is not None or self.max is not None


@dataclass(frozen=True)
class EnumFilter:
    values: tuple[str, ...] = ()

    @property
    def is_active(self) -> bool:
        return any(str(v).strip() for v in self.values)


@dataclass(frozen=True)
class ReferenceFilter:
    id: str | None = None

    @property
    def is_active(self) -> bool:
        return bool(str(self.id or "").strip())


@dataclass(frozen=True)
class TextFilter:
    text: str | None = None

    @property
    def is_active(self) -> bool:
        return bool(str(self.text or "").strip())


FilterValue = RangeFilter | EnumFilter | ReferenceFilter | TextFilter


@dataclass(frozen=True)
class SearchQuery:
    free_text: str = ""
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    fuzzy: bool = False
    wildcard: bool = False
    sort: SortOption = SortOption.RELEVANCE
    filters: dict[str, FilterValue] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return " ".join(str(self.free_text or "").split())

    def active_filters(self) -> dict[str, FilterValue]:
        return {name: value for name, value in self.filters.items() if value is not None and value.is_active}

    def filter(self, name: str) -> FilterValue | None:
        value = self.filters.get(name)
        if value is None or not value.is_active:
            return None
        return value

    def with_page(self, page: int) -> "SearchQuery":
        return replace(self, page=max(1, int(page)))

    def cache_key(self) -> tuple:
        filters = tuple(sorted((name, repr(value)) for name, value in self.active_filters().items()))
        return (self.text, self.page, self.page_size, self.fuzzy, self.wildcard, self.sort.value, filters)


@dataclass(frozen=True)
class SearchResult:
    items: tuple[CanonicalItem, ...] = ()
    page: int = 1
    total_pages: int = 0
    total_count: int = 0
    server_sorted: bool = False

    @classmethod
    def empty(cls, page: int = 1, *, server_sorted: bool = False) -> "SearchResult":
        return cls(items=(), page=page, total_pages=0, total_count=0, server_sorted=server_sorted)

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "page": self.page,
            "totalPages": self.total_pages,
            "totalCount": self.total_count,
            "serverSorted": self.server_sorted,
        }


__all__ = [
    "CanonicalDetails",
    "CanonicalItem",
    "Category",
    "EnumFilter",
    "ExternalUrl",
    "FilterValue",
    "LifeSpan",
    "MediaType",
    "RangeFilter",
    "ReferenceFilter",
    "SearchQuery",
    "SearchResult",
    "SortOption",
    "TextFilter",
    "TrackEntry",
]
