#!/usr/bin/env python3
"""HTTP facade over the canonical search and details service."""

import logging
import os

import anyio
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from config.settings import DEFAULT_PAGE_SIZE, MEDIA_REGISTRY_PATH
from engine.enrichment import EnrichmentRunner
from engine.errors import ConfigError, MediaEngineError, UnsupportedTypeError, UpstreamError, classify_error
from engine.item_cache import ItemCache
from engine.provider_registry import build_default_registry
from engine.search_service import SearchService
from metadata.media_registry import MediaRegistry, RegistryFileStore
from metadata.types import (
    Category,
    EnumFilter,
    MediaType,
    RangeFilter,
    ReferenceFilter,
    SearchQuery,
    SortOption,
    TextFilter,
)

APP_NAME = "Media Engine"
LOG_LEVEL = os.environ.get("MEDIA_ENGINE_LOG_LEVEL", "INFO").upper()
RETRY_AFTER_SECONDS = 5

# Query parameters translated into filters, by filter kind.
RANGE_PARAMS = {
    "year": ("minYear", "maxYear"),
    "duration": ("minDuration", "maxDuration"),
}
REFERENCE_PARAMS = ("artistId", "albumId")
ENUM_PARAMS = ("artistType", "primaryTypes", "secondaryTypes", "genre", "platform")
TEXT_PARAMS = (
    "artist",
    "tag",
    "country",
    "author",
    "subject",
    "language",
    "publisher",
    "person",
    "place",
)
FLAG_PARAMS = ("excludeCompilations",)

_TRUTHY = {"1", "true", "yes", "on"}


def _setup_logging(level=LOG_LEVEL):
    root = logging.getLogger("")
    root.setLevel(level)
    has_stream = any(
        isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)
        for handler in root.handlers
    )
    if not has_stream:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(stream_handler)


def build_search_service(*, registry_store=None):
    item_cache = ItemCache()
    registry, waterfall = build_default_registry(item_cache=item_cache)
    media_registry = MediaRegistry()
    if registry_store is not None:
        registry_store.load(media_registry)
    enricher = EnrichmentRunner(waterfall, item_cache=item_cache, media_registry=media_registry)
    return SearchService(
        registry,
        media_registry=media_registry,
        enricher=enricher,
    )


app = FastAPI(
    title=APP_NAME,
    description="Unified search and details across music, book, cinema and game catalogs.",
)


@app.on_event("startup")
async def startup():
    _setup_logging()
    app.state.registry_store = RegistryFileStore(MEDIA_REGISTRY_PATH)
    if getattr(app.state, "search_service", None) is None:
        app.state.search_service = build_search_service(registry_store=app.state.registry_store)
    logging.info("%s started", APP_NAME)


@app.on_event("shutdown")
async def shutdown():
    service = getattr(app.state, "search_service", None)
    store = getattr(app.state, "registry_store", None)
    if service is None:
        return
    media_registry = getattr(service, "media_registry", None)
    if store is not None and media_registry is not None:
        try:
            store.save(media_registry)
        except OSError:
            logging.exception("Failed to persist media registry")
    service.shutdown(wait=False)


def _service():
    service = getattr(app.state, "search_service", None)
    if service is None:
        service = build_search_service()
        app.state.search_service = service
    return service


@app.exception_handler(MediaEngineError)
async def media_engine_error_handler(request: Request, exc: MediaEngineError):
    kind = classify_error(exc)
    if isinstance(exc, ConfigError):
        logging.warning("Feature unavailable path=%s error=%s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"kind": "config", "error": "feature unavailable"})
    if isinstance(exc, UpstreamError) and exc.is_rate_limited:
        logging.warning("Upstream busy path=%s status=%s", request.url.path, exc.status)
        return JSONResponse(
            status_code=503,
            content={"kind": "rate_limited", "error": "upstream busy, retry shortly"},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    logging.error("Upstream failure path=%s kind=%s error=%s", request.url.path, kind, exc)
    return JSONResponse(status_code=502, content={"kind": "upstream", "error": str(exc)})


@app.exception_handler(UnsupportedTypeError)
async def unsupported_type_handler(request: Request, exc: UnsupportedTypeError):
    logging.warning("Unsupported type path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def _parse_enum(raw, enum_cls, name):
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw}") from None


def _parse_number(raw, name):
    if raw is None or str(raw).strip() == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw}") from None
    return int(value) if value.is_integer() else value


def _parse_int(raw, name, default):
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw}") from None
    if value < 1:
        raise HTTPException(status_code=400, detail=f"{name} must be >= 1")
    return value


def _split_values(params, name):
    values = []
    for raw in params.getlist(name):
        values.extend(part.strip() for part in raw.split(",") if part.strip())
    return tuple(values)


def build_filters(params) -> dict:
    filters = {}
    for name, (min_key, max_key) in RANGE_PARAMS.items():
        low = _parse_number(params.get(min_key), min_key)
        high = _parse_number(params.get(max_key), max_key)
        if low is not None or high is not None:
            filters[name] = RangeFilter(low, high)
    for name in REFERENCE_PARAMS:
        value = (params.get(name) or "").strip()
        if value:
            filters[name] = ReferenceFilter(value)
    for name in ENUM_PARAMS:
        values = _split_values(params, name)
        if values:
            filters[name] = EnumFilter(values)
    for name in TEXT_PARAMS:
        value = (params.get(name) or "").strip()
        if value:
            filters[name] = TextFilter(value)
    for name in FLAG_PARAMS:
        if (params.get(name) or "").strip().lower() in _TRUTHY:
            filters[name] = EnumFilter(("true",))
    return filters


def build_search_query(params) -> SearchQuery:
    sort = _parse_enum(params.get("sort") or SortOption.RELEVANCE.value, SortOption, "sort")
    return SearchQuery(
        free_text=params.get("query") or "",
        page=_parse_int(params.get("page"), "page", 1),
        page_size=_parse_int(params.get("pageSize"), "pageSize", DEFAULT_PAGE_SIZE),
        fuzzy=(params.get("fuzzy") or "").lower() in _TRUTHY,
        wildcard=(params.get("wildcard") or "").lower() in _TRUTHY,
        sort=sort,
        filters=build_filters(params),
    )


@app.get("/api/health")
async def api_health():
    return {"ok": True, "app": APP_NAME}


@app.get("/api/search")
async def api_search(request: Request):
    params = request.query_params
    category = _parse_enum(params.get("category") or Category.MUSIC.value, Category, "category")
    media_type = _parse_enum(params.get("type") or "", MediaType, "type")
    query = build_search_query(params)
    provider_id = params.get("provider") or None
    result = await anyio.to_thread.run_sync(
        _service().search,
        category,
        media_type,
        query,
        provider_id,
    )
    return result.to_dict()


@app.get("/api/details")
async def api_details(request: Request):
    params = request.query_params
    category = _parse_enum(params.get("category") or Category.MUSIC.value, Category, "category")
    media_type = _parse_enum(params.get("type") or "", MediaType, "type")
    item_id = (params.get("id") or "").strip()
    if not item_id:
        raise HTTPException(status_code=400, detail="id is required")
    provider_id = params.get("provider") or None
    details = await anyio.to_thread.run_sync(
        _service().get_details,
        category,
        media_type,
        item_id,
        provider_id,
    )
    return details.to_dict()


if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("MEDIA_ENGINE_HOST", "127.0.0.1")
    port = int(os.environ.get("MEDIA_ENGINE_PORT", "8000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
