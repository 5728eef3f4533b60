"""Application settings constants."""

from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


USER_AGENT = os.getenv(
    "MEDIA_ENGINE_USER_AGENT",
    "MediaEngine/1.0 (+https://github.com/media-engine/media-engine)",
)

# Outbound HTTP.
HTTP_TIMEOUT_SECONDS = _env_float("MEDIA_ENGINE_HTTP_TIMEOUT_SECONDS", 10.0)
HTTP_RETRY_LIMIT = 2
HTTP_RETRY_BACKOFF_SECONDS = 1.0
HTTP_RETRY_STATUSES = frozenset({429, 503, 504})

# MusicBrainz asks for at most one request per second per client.
MUSICBRAINZ_BASE_URL = os.getenv("MUSICBRAINZ_BASE_URL", "https://musicbrainz.org/ws/2")
MUSICBRAINZ_MIN_INTERVAL_SECONDS = _env_float("MUSICBRAINZ_MIN_INTERVAL_SECONDS", 1.0)
MUSICBRAINZ_SEARCH_LIMIT = 15

COVER_ART_ARCHIVE_BASE_URL = "https://coverartarchive.org"
FANART_BASE_URL = "https://webservice.fanart.tv/v3/music"
WIKIDATA_API_URL = "https://www.wikidata.org/w/api.php"
WIKIMEDIA_FILE_PATH_URL = "https://commons.wikimedia.org/wiki/Special:FilePath"
WIKIMEDIA_THUMB_WIDTH = 500

OPEN_LIBRARY_BASE_URL = "https://openlibrary.org"
OPEN_LIBRARY_COVERS_URL = "https://covers.openlibrary.org"
HARDCOVER_API_URL = "https://api.hardcover.app/v1/graphql"
TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
RAWG_BASE_URL = "https://api.rawg.io/api"
IGDB_BASE_URL = "https://api.igdb.com/v4"
TWITCH_AUTH_URL = "https://id.twitch.tv/oauth2/token"

DEFAULT_PAGE_SIZE = 20

# Caches.
ITEM_CACHE_TTL_SECONDS = _env_int("MEDIA_ENGINE_ITEM_CACHE_TTL_SECONDS", 24 * 60 * 60)
ITEM_CACHE_MAX_ENTRIES = _env_int("MEDIA_ENGINE_ITEM_CACHE_MAX_ENTRIES", 5000)
SEARCH_CACHE_TTL_SECONDS = 60 * 60
SEARCH_CACHE_MAX_ENTRIES = 512
DETAILS_CACHE_TTL_SECONDS = 24 * 60 * 60
MEDIA_REGISTRY_MAX_ITEMS = 2000
MEDIA_REGISTRY_PATH = os.getenv("MEDIA_REGISTRY_PATH", ".cache/media_registry.json")

# Search heuristics. Both are product decisions pending confirmation.
MIN_QUERY_LENGTH = 3
FUZZY_MIN_TOKEN_LENGTH = 3
FUZZY_EDIT_DISTANCE = 1

SEARCH_DEBOUNCE_SECONDS = 0.3
ENRICHMENT_MAX_WORKERS = 3
PREFETCH_MAX_WORKERS = 2

# Credential environment variable names.
TMDB_API_KEY_ENV = "TMDB_API_KEY"
RAWG_API_KEY_ENV = "RAWG_API_KEY"
HARDCOVER_TOKEN_ENV = "HARDCOVER_TOKEN"
IGDB_CLIENT_ID_ENV = "IGDB_CLIENT_ID"
IGDB_CLIENT_SECRET_ENV = "IGDB_CLIENT_SECRET"
FANART_API_KEY_ENV = "FANART_API_KEY"


def read_credential(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    if not value or value.upper() == "CHANGE_ME":
        return None
    return value
