from .errors import (
    ConfigError,
    MediaEngineError,
    NetworkError,
    UnsupportedTypeError,
    UpstreamError,
    ValidationError,
    classify_error,
)
from .fetch_client import FetchClient, get_fetch_client
from .item_cache import ItemCache
from .search_service import SearchService

__all__ = [
    "ConfigError",
    "FetchClient",
    "ItemCache",
    "MediaEngineError",
    "NetworkError",
    "SearchService",
    "UnsupportedTypeError",
    "UpstreamError",
    "ValidationError",
    "classify_error",
    "get_fetch_client",
]
