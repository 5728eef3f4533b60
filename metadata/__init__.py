from .types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    MediaType,
    SearchQuery,
    SearchResult,
    SortOption,
)

__all__ = [
    "CanonicalDetails",
    "CanonicalItem",
    "Category",
    "MediaType",
    "SearchQuery",
    "SearchResult",
    "SortOption",
]
