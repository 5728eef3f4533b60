"""Pydantic models for the upstream payloads each adapter consumes.

Envelopes are validated as a whole; a failing envelope is a
``ValidationError``. Records inside an envelope are kept raw and validated one
by one so a single malformed record is skipped instead of failing the page.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Upstream(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# MusicBrainz


class MBArtistRef(_Upstream):
    id: str | None = None
    name: str | None = None


class MBArtistCredit(_Upstream):
    name: str
    joinphrase: str | None = None
    artist: MBArtistRef | None = None


class MBReleaseGroupRef(_Upstream):
    id: str
    title: str | None = None
    primary_type: str | None = Field(default=None, alias="primary-type")


class MBReleaseRef(_Upstream):
    id: str
    title: str | None = None
    date: str | None = None
    release_group: MBReleaseGroupRef | None = Field(default=None, alias="release-group")


class MBReleaseGroup(_Upstream):
    id: str
    title: str
    first_release_date: str | None = Field(default=None, alias="first-release-date")
    primary_type: str | None = Field(default=None, alias="primary-type")
    secondary_types: list[str] = Field(default_factory=list, alias="secondary-types")
    artist_credit: list[MBArtistCredit] = Field(default_factory=list, alias="artist-credit")


class MBLifeSpan(_Upstream):
    begin: str | None = None
    end: str | None = None
    ended: bool | None = None


class MBArtist(_Upstream):
    id: str
    name: str
    type: str | None = None
    country: str | None = None
    disambiguation: str | None = None
    life_span: MBLifeSpan | None = Field(default=None, alias="life-span")


class MBRecording(_Upstream):
    id: str
    title: str
    length: int | None = None
    first_release_date: str | None = Field(default=None, alias="first-release-date")
    artist_credit: list[MBArtistCredit] = Field(default_factory=list, alias="artist-credit")
    releases: list[MBReleaseRef] = Field(default_factory=list)


class MBSearchEnvelope(_Upstream):
    count: int = 0
    offset: int = 0
    artists: list[dict[str, Any]] | None = None
    release_groups: list[dict[str, Any]] | None = Field(default=None, alias="release-groups")
    recordings: list[dict[str, Any]] | None = None


# Open Library


class OLDoc(_Upstream):
    key: str
    title: str
    author_name: list[str] = Field(default_factory=list)
    first_publish_year: int | None = None
    cover_i: int | None = None
    ratings_average: float | None = None
    ratings_count: int | None = None
    edition_count: int | None = None


class OLAuthorDoc(_Upstream):
    key: str
    name: str
    birth_date: str | None = None
    top_work: str | None = None
    work_count: int | None = None


class OLSearchEnvelope(_Upstream):
    num_found: int = Field(default=0, alias="numFound")
    docs: list[dict[str, Any]] = Field(default_factory=list)


# Hardcover


class HCImage(_Upstream):
    url: str | None = None


class HCBookDocument(_Upstream):
    id: int | str
    title: str
    author_names: list[str] = Field(default_factory=list)
    release_year: int | None = None
    rating: float | None = None
    ratings_count: int | None = None
    image: HCImage | None = None
    compilation: bool | None = None


class HCAuthorDocument(_Upstream):
    id: int | str
    name: str
    image: HCImage | None = None
    books_count: int | None = None


class HCSeriesDocument(_Upstream):
    id: int | str
    name: str
    author_name: str | None = None
    books_count: int | None = None


class HCSearchResults(_Upstream):
    found: int = 0
    hits: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> "HCSearchResults":
        # The GraphQL field is typed as JSON and sometimes arrives stringified.
        if isinstance(raw, str):
            raw = json.loads(raw) if raw.strip() else {}
        return cls.model_validate(raw or {})


# TMDB


class TMDBRecord(_Upstream):
    id: int
    title: str | None = None
    name: str | None = None
    poster_path: str | None = None
    profile_path: str | None = None
    release_date: str | None = None
    first_air_date: str | None = None
    vote_average: float | None = None
    vote_count: int | None = None
    known_for_department: str | None = None


class TMDBPage(_Upstream):
    page: int = 1
    total_pages: int = 0
    total_results: int = 0
    results: list[dict[str, Any]] = Field(default_factory=list)


# RAWG


class RAWGNamed(_Upstream):
    name: str


class RAWGPlatformRef(_Upstream):
    platform: RAWGNamed


class RAWGGame(_Upstream):
    id: int
    name: str
    slug: str | None = None
    released: str | None = None
    background_image: str | None = None
    rating: float | None = None
    ratings_count: int | None = None
    parent_platforms: list[RAWGPlatformRef] = Field(default_factory=list)
    developers: list[RAWGNamed] = Field(default_factory=list)


class RAWGDeveloper(_Upstream):
    id: int
    name: str
    slug: str | None = None
    image_background: str | None = None
    games_count: int | None = None


class RAWGPage(_Upstream):
    count: int = 0
    results: list[dict[str, Any]] = Field(default_factory=list)


# IGDB


class IGDBCompanyRef(_Upstream):
    name: str | None = None


class IGDBInvolvedCompany(_Upstream):
    company: IGDBCompanyRef | None = None
    developer: bool = False


class IGDBCover(_Upstream):
    image_id: str | None = None


class IGDBGame(_Upstream):
    id: int
    name: str
    first_release_date: int | None = None
    cover: IGDBCover | None = None
    total_rating: float | None = None
    total_rating_count: int | None = None
    involved_companies: list[IGDBInvolvedCompany] = Field(default_factory=list)
    platforms: list[RAWGNamed] = Field(default_factory=list)


class IGDBCompany(_Upstream):
    id: int
    name: str
    start_date: int | None = None
    country: int | None = None
    logo: IGDBCover | None = None


class IGDBCount(_Upstream):
    count: int = 0


class TwitchToken(_Upstream):
    access_token: str
    expires_in: int = 0

    @field_validator("access_token")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("access_token must be non-empty")
        return value
