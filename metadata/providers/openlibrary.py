import logging

from config.settings import OPEN_LIBRARY_BASE_URL, OPEN_LIBRARY_COVERS_URL
from engine.query_builder import LuceneDialect, build_query, effective_text, is_short_circuit
from metadata.normalize import (
    map_records,
    normalize_text,
    total_pages,
    validate_envelope,
    year_from_date,
)
from metadata.providers.base import BaseProvider
from metadata.schemas import OLAuthorDoc, OLDoc, OLSearchEnvelope
from metadata.types import (
    CanonicalDetails,
    CanonicalItem,
    Category,
    ExternalUrl,
    MediaType,
    SearchQuery,
    SearchResult,
    SortOption,
)

logger = logging.getLogger(__name__)

_BOOK_FIELDS = "key,title,author_name,first_publish_year,cover_i,edition_count,ratings_average,ratings_count"

_SORTS = {
    SortOption.RATING_DESC: "rating",
    SortOption.REVIEWS_DESC: "editions",
    SortOption.DATE_DESC: "new",
    SortOption.DATE_ASC: "old",
}

_DIALECT = LuceneDialect(
    joiner=" ",
    fields={
        "author": "author",
        "year": "first_publish_year",
        "subject": "subject",
        "language": "language",
        "publisher": "publisher",
        "person": "person",
        "place": "place",
    },
)

_SUBJECT_LIMIT = 8


def _work_id(key):
    return str(key or "").replace("/works/", "").strip("/")


def _author_id(key):
    return str(key or "").replace("/authors/", "").strip("/")


class OpenLibraryProvider(BaseProvider):
    id = "openlibrary"
    label = "Open Library"
    category = Category.BOOK
    types = (MediaType.BOOK, MediaType.AUTHOR)

    def __init__(self, *, fetch_client=None, item_cache=None, base_url=OPEN_LIBRARY_BASE_URL):
        super().__init__(fetch_client=fetch_client, item_cache=item_cache)
        self.base_url = base_url.rstrip("/")

    def build_query(self, query: SearchQuery) -> str:
        return build_query(query, _DIALECT)

    def search(self, query: SearchQuery, media_type: MediaType) -> SearchResult:
        media_type = self._require_type(media_type)
        if is_short_circuit(query):
            return SearchResult.empty(query.page)
        if media_type == MediaType.AUTHOR:
            return self._search_authors(query)
        return self._search_books(query)

    def _search_books(self, query: SearchQuery) -> SearchResult:
        q = self.build_query(query)
        if len(q) < 3:
            return SearchResult.empty(query.page)
        params = {
            "q": q,
            "page": query.page,
            "limit": query.page_size,
            "fields": _BOOK_FIELDS,
        }
        api_sort = _SORTS.get(query.sort)
        if api_sort:
            params["sort"] = api_sort
        payload = self.fetch_client.get_json(f"{self.base_url}/search.json", params=params)
        envelope = validate_envelope(OLSearchEnvelope, payload, provider_id=self.id)
        items = map_records(
            envelope.docs,
            OLDoc,
            self._map_book,
            provider_id=self.id,
            external_id_of=lambda d: _work_id(d.key),
            media_type=MediaType.BOOK,
            cache=self.item_cache,
        )
        logger.info("[OPENLIBRARY] search q=%s page=%s found=%s", q, query.page, envelope.num_found)
        return SearchResult(
            items=tuple(items),
            page=query.page,
            total_pages=total_pages(envelope.num_found, query.page_size),
            total_count=envelope.num_found,
            server_sorted=api_sort is not None,
        )

    def _search_authors(self, query: SearchQuery) -> SearchResult:
        # Author search has no filters; the name alone must be long enough.
        text = effective_text(query.free_text)
        if not text:
            return SearchResult.empty(query.page)
        params = {"q": text, "page": query.page, "limit": query.page_size}
        payload = self.fetch_client.get_json(f"{self.base_url}/search/authors.json", params=params)
        envelope = validate_envelope(OLSearchEnvelope, payload, provider_id=self.id)
        items = map_records(
            envelope.docs,
            OLAuthorDoc,
            self._map_author,
            provider_id=self.id,
            external_id_of=lambda d: _author_id(d.key),
            media_type=MediaType.AUTHOR,
            cache=self.item_cache,
        )
        return SearchResult(
            items=tuple(items),
            page=query.page,
            total_pages=total_pages(envelope.num_found, query.page_size),
            total_count=envelope.num_found,
            server_sorted=False,
        )

    def _map_book(self, doc: OLDoc) -> CanonicalItem:
        work_id = _work_id(doc.key)
        attributes = {}
        if doc.edition_count:
            attributes["editionCount"] = doc.edition_count
        return CanonicalItem(
            id=self._item_id(work_id),
            external_id=work_id,
            type=MediaType.BOOK,
            title=normalize_text(doc.title) or doc.title,
            provider_id=self.id,
            year=doc.first_publish_year,
            image_url=f"{OPEN_LIBRARY_COVERS_URL}/b/id/{doc.cover_i}-M.jpg" if doc.cover_i else None,
            rating=doc.ratings_average,
            review_count=doc.ratings_count or doc.edition_count,
            subtitle=doc.author_name[0] if doc.author_name else "Unknown Author",
            attributes=attributes,
        )

    def _map_author(self, doc: OLAuthorDoc) -> CanonicalItem:
        author_id = _author_id(doc.key)
        attributes = {}
        if doc.top_work:
            attributes["topWork"] = doc.top_work
        if doc.work_count:
            attributes["workCount"] = doc.work_count
        birth_year = None
        if doc.birth_date and doc.birth_date[-4:].isdigit():
            birth_year = int(doc.birth_date[-4:])
        return CanonicalItem(
            id=self._item_id(author_id),
            external_id=author_id,
            type=MediaType.AUTHOR,
            title=normalize_text(doc.name) or doc.name,
            provider_id=self.id,
            year=birth_year,
            image_url=f"{OPEN_LIBRARY_COVERS_URL}/a/olid/{author_id}-M.jpg",
            attributes=attributes,
        )

    def get_details(self, item_id: str, media_type: MediaType) -> CanonicalDetails:
        media_type = self._require_type(media_type)
        external = self._external_id(item_id)
        if media_type == MediaType.AUTHOR:
            return self._author_details(external)
        data = self.fetch_client.get_json(f"{self.base_url}/works/{external}.json")
        description = data.get("description")
        if isinstance(description, dict):
            description = description.get("value")
        covers = [c for c in data.get("covers") or [] if isinstance(c, int) and c > 0]
        attributes = {}
        places = data.get("subject_places") or []
        if places:
            attributes["places"] = list(places[:5])
        excerpts = data.get("excerpts") or []
        if excerpts and isinstance(excerpts[0], dict) and excerpts[0].get("excerpt"):
            attributes["firstSentence"] = excerpts[0]["excerpt"]
        if data.get("first_publish_date"):
            attributes["date"] = data["first_publish_date"]
        urls = [ExternalUrl("Open Library", f"{self.base_url}/works/{external}")]
        for link in data.get("links") or []:
            if isinstance(link, dict) and link.get("url"):
                urls.append(ExternalUrl(str(link.get("title") or "link"), link["url"]))
        return CanonicalDetails(
            id=self._item_id(external),
            external_id=external,
            type=MediaType.BOOK,
            provider_id=self.id,
            title=data.get("title"),
            year=year_from_date(data.get("first_publish_date")),
            image_url=f"{OPEN_LIBRARY_COVERS_URL}/b/id/{covers[0]}-L.jpg" if covers else None,
            description=description if isinstance(description, str) else None,
            tags=tuple((data.get("subjects") or [])[:_SUBJECT_LIMIT]),
            urls=tuple(urls),
            attributes=attributes,
        )

    def _author_details(self, author_id):
        data = self.fetch_client.get_json(f"{self.base_url}/authors/{author_id}.json")
        bio = data.get("bio")
        if isinstance(bio, dict):
            bio = bio.get("value")
        photos = [p for p in data.get("photos") or [] if isinstance(p, int) and p > 0]
        return CanonicalDetails(
            id=self._item_id(author_id),
            external_id=author_id,
            type=MediaType.AUTHOR,
            provider_id=self.id,
            title=data.get("name"),
            image_url=f"{OPEN_LIBRARY_COVERS_URL}/a/id/{photos[0]}-L.jpg" if photos else None,
            description=bio if isinstance(bio, str) else None,
            urls=(ExternalUrl("Open Library", f"{self.base_url}/authors/{author_id}"),),
        )
