from __future__ import annotations

import logging
from typing import ClassVar, Protocol

from config.settings import read_credential
from engine.canonical_ids import build_item_id, external_id_from
from engine.errors import ConfigError, UnsupportedTypeError, ValidationError
from engine.fetch_client import FetchClient, get_fetch_client
from metadata.types import (
    CanonicalDetails,
    Category,
    MediaType,
    SearchQuery,
    SearchResult,
)

logger = logging.getLogger(__name__)


class MediaProvider(Protocol):
    id: ClassVar[str]
    label: ClassVar[str]
    category: ClassVar[Category]

    def supported_types(self) -> tuple[MediaType, ...]:
        raise NotImplementedError

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        raise NotImplementedError

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        raise NotImplementedError


class BaseProvider:
    """Plumbing shared by the concrete adapters."""

    id: ClassVar[str] = ""
    label: ClassVar[str] = ""
    category: ClassVar[Category]
    types: ClassVar[tuple[MediaType, ...]] = ()

    def __init__(self, *, fetch_client: FetchClient | None = None, item_cache=None) -> None:
        self.fetch_client = fetch_client or get_fetch_client()
        self.item_cache = item_cache

    def supported_types(self) -> tuple[MediaType, ...]:
        return self.types

    def _require_type(self, media_type: MediaType) -> MediaType:
        media_type = MediaType(media_type)
        if media_type not in self.types:
            raise UnsupportedTypeError(self.id, media_type.value)
        return media_type

    def _require_credential(self, env_name: str) -> str:
        # Read on every call so rotated or late-provided keys are picked up.
        value = read_credential(env_name)
        if not value:
            logger.warning("[%s] missing credential %s", self.id.upper(), env_name)
            raise ConfigError(f"{env_name} is not configured", provider_id=self.id)
        return value

    def _item_id(self, external_id) -> str:
        return build_item_id(self.id, external_id)

    def _external_id(self, item_id: str) -> str:
        external = external_id_from(item_id, self.id)
        if not external:
            raise ValidationError(f"{self.id}: empty item id")
        return external

    def _skeleton(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        external = self._external_id(item_id)
        return CanonicalDetails(
            id=self._item_id(external),
            external_id=external,
            type=media_type,
            provider_id=self.id,
        )
