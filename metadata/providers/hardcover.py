import logging

from config.settings import HARDCOVER_API_URL, HARDCOVER_TOKEN_ENV
from engine.errors import ValidationError
from engine.query_builder import effective_text
from metadata.normalize import map_records, normalize_text, total_pages
from metadata.providers.base import BaseProvider
from metadata.schemas import HCAuthorDocument, HCBookDocument, HCSearchResults, HCSeriesDocument
from metadata.types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    ExternalUrl,
    MediaType,
    RangeFilter,
    SearchQuery,
    SearchResult,
)

logger = logging.getLogger(__name__)

_SEARCH_GQL = """
query Search($query: String!, $query_type: String!, $page: Int!, $per_page: Int!) {
  search(query: $query, query_type: $query_type, page: $page, per_page: $per_page) {
    results
  }
}
"""

_SERIES_IMAGES_GQL = """
query SeriesBooks($ids: [Int!]!) {
  book_series(where: {series_id: {_in: $ids}, position: {_eq: 1}}) {
    series_id
    book { image { url } }
  }
}
"""

_BOOK_GQL = """
query Book($id: Int!) {
  books_by_pk(id: $id) {
    id
    title
    slug
    description
    release_year
    rating
    ratings_count
    image { url }
    contributions { author { name } }
    cached_tags
  }
}
"""

_QUERY_TYPES = {
    MediaType.BOOK: "Book",
    MediaType.AUTHOR: "Author",
    MediaType.SERIES: "Series",
}

_TAG_LIMIT = 8


def _document(hit):
    if isinstance(hit, dict) and isinstance(hit.get("document"), dict):
        return hit["document"]
    return hit


def _year_in_range(document, year_filter: RangeFilter) -> bool:
    year = document.get("release_year") if isinstance(document, dict) else None
    if not year:
        return False
    try:
        year = int(year)
    except (TypeError, ValueError):
        return False
    if year_filter.min is not None and year < int(year_filter.min):
        return False
    if year_filter.max is not None and year > int(year_filter.max):
        return False
    return True


class HardcoverProvider(BaseProvider):
    """Hardcover GraphQL adapter.

    The ``search`` field only does text search, so year bounds and the
    compilation flag are applied to the returned page in memory.
    """

    id = "hardcover"
    label = "Hardcover"
    category = Category.BOOK
    types = (MediaType.BOOK, MediaType.AUTHOR, MediaType.SERIES)

    def __init__(self, *, fetch_client=None, item_cache=None, api_url=HARDCOVER_API_URL):
        super().__init__(fetch_client=fetch_client, item_cache=item_cache)
        self.api_url = api_url

    def _graphql(self, gql, variables):
        token = self._require_credential(HARDCOVER_TOKEN_ENV)
        auth = token if token.startswith("Bearer ") else f"Bearer {token}"
        payload = self.fetch_client.post_json(
            self.api_url,
            json={"query": gql, "variables": variables},
            headers={"Authorization": auth, "Content-Type": "application/json"},
        )
        if not isinstance(payload, dict):
            raise ValidationError("hardcover: response is not an object")
        errors = payload.get("errors")
        if errors:
            message = errors[0].get("message") if isinstance(errors[0], dict) else str(errors[0])
            logger.error("[HARDCOVER] graphql error=%s", message)
            raise ValidationError(f"hardcover: {message}")
        return payload.get("data") or {}

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        media_type = self._require_type(media_type)
        text = effective_text(query.free_text)
        if not text:
            # No discovery endpoint: filters alone cannot be searched.
            return SearchResult.empty(query.page)
        data = self._graphql(
            _SEARCH_GQL,
            {
                "query": text,
                "query_type": _QUERY_TYPES[media_type],
                "page": query.page,
                "per_page": query.page_size,
            },
        )
        try:
            results = HCSearchResults.from_raw((data.get("search") or {}).get("results"))
        except ValueError as exc:
            raise ValidationError("hardcover: malformed search results") from exc
        hits = [_document(hit) for hit in results.hits]

        if media_type == MediaType.BOOK:
            hits = self._filter_books(hits, query)
            items = map_records(
                hits,
                HCBookDocument,
                self._map_book,
                provider_id=self.id,
                external_id_of=lambda d: d.id,
                media_type=media_type,
                cache=self.item_cache,
            )
        elif media_type == MediaType.AUTHOR:
            items = map_records(
                hits,
                HCAuthorDocument,
                self._map_author,
                provider_id=self.id,
                external_id_of=lambda d: d.id,
                media_type=media_type,
                cache=self.item_cache,
            )
        else:
            items = map_records(
                hits,
                HCSeriesDocument,
                self._map_series,
                provider_id=self.id,
                external_id_of=lambda d: d.id,
                media_type=media_type,
                cache=self.item_cache,
            )
            items = self._attach_series_images(items)

        found = results.found or len(items)
        logger.info("[HARDCOVER] search type=%s page=%s found=%s returned=%s", media_type.value, query.page, found, len(items))
        return SearchResult(
            items=tuple(items),
            page=query.page,
            total_pages=total_pages(found, query.page_size),
            total_count=found,
            server_sorted=False,
        )

    def _filter_books(self, hits, query: SearchQuery):
        year_filter = query.filter("year")
        exclude = query.filter("excludeCompilations")
        kept = []
        for hit in hits:
            if exclude is not None and isinstance(hit, dict) and hit.get("compilation") is True:
                continue
            if isinstance(year_filter, RangeFilter) and not _year_in_range(hit, year_filter):
                continue
            kept.append(hit)
        if len(kept) != len(hits):
            logger.debug("[HARDCOVER] in-memory filter kept=%s of=%s", len(kept), len(hits))
        return kept

    def _attach_series_images(self, items):
        ids = [int(item.external_id) for item in items if item.external_id.isdigit() and not item.image_url]
        if not ids:
            return items
        try:
            data = self._graphql(_SERIES_IMAGES_GQL, {"ids": ids})
        except ValidationError as exc:
            logger.warning("[HARDCOVER] series image lookup failed error=%s", exc)
            return items
        images = {}
        for row in data.get("book_series") or []:
            url = (((row or {}).get("book") or {}).get("image") or {}).get("url")
            if url and row.get("series_id") is not None:
                images.setdefault(str(row["series_id"]), url)
        out = []
        for item in items:
            url = images.get(item.external_id)
            if url and not item.image_url:
                item = item.with_image(url)
                if self.item_cache is not None:
                    self.item_cache.set(item)
            out.append(item)
        return out

    def _map_book(self, doc: HCBookDocument) -> CanonicalItem:
        external = str(doc.id)
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.BOOK,
            title=normalize_text(doc.title) or doc.title,
            provider_id=self.id,
            year=doc.release_year,
            image_url=doc.image.url if doc.image else None,
            rating=doc.rating,
            review_count=doc.ratings_count,
            subtitle=", ".join(doc.author_names) if doc.author_names else "Unknown Author",
        )

    def _map_author(self, doc: HCAuthorDocument) -> CanonicalItem:
        external = str(doc.id)
        attributes = {"bookCount": doc.books_count} if doc.books_count else {}
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.AUTHOR,
            title=normalize_text(doc.name) or doc.name,
            provider_id=self.id,
            image_url=doc.image.url if doc.image else None,
            attributes=attributes,
        )

    def _map_series(self, doc: HCSeriesDocument) -> CanonicalItem:
        external = str(doc.id)
        attributes = {"bookCount": doc.books_count} if doc.books_count else {}
        return CanonicalItem(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.SERIES,
            title=normalize_text(doc.name) or doc.name,
            provider_id=self.id,
            subtitle=doc.author_name,
            attributes=attributes,
        )

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        media_type = self._require_type(media_type)
        external = self._external_id(item_id)
        if media_type != MediaType.BOOK or not external.isdigit():
            self._require_credential(HARDCOVER_TOKEN_ENV)
            return self._skeleton(external, media_type)
        data = self._graphql(_BOOK_GQL, {"id": int(external)})
        book = data.get("books_by_pk") or {}
        if not book:
            return self._skeleton(external, media_type)
        authors = [
            ((c or {}).get("author") or {}).get("name")
            for c in book.get("contributions") or []
        ]
        authors = [name for name in authors if name]
        tags = []
        cached_tags = book.get("cached_tags")
        if isinstance(cached_tags, dict):
            for entries in cached_tags.values():
                for entry in entries or []:
                    tag = entry.get("tag") if isinstance(entry, dict) else None
                    if tag and tag not in tags:
                        tags.append(tag)
        attributes = {}
        if authors:
            attributes["authors"] = authors
        if book.get("rating") is not None:
            attributes["rating"] = book["rating"]
        urls = ()
        if book.get("slug"):
            urls = (ExternalUrl("Hardcover", f"https://hardcover.app/books/{book['slug']}"),)
        return CanonicalDetails(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.BOOK,
            provider_id=self.id,
            title=book.get("title"),
            year=book.get("release_year"),
            image_url=((book.get("image") or {}).get("url")),
            description=book.get("description"),
            tags=tuple(tags[:_TAG_LIMIT]),
            urls=urls,
            attributes=attributes,
        )
