"""Normalization helpers shared by the provider mappers."""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from engine.canonical_ids import build_item_id
from engine.errors import ValidationError
from metadata.types import CanonicalItem, MediaType

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_YEAR_RE = re.compile(r"^(\d{4})")

RecordT = TypeVar("RecordT", bound=BaseModel)
EnvelopeT = TypeVar("EnvelopeT", bound=BaseModel)


def normalize_text(value: Any) -> str | None:
    """NFC-normalize and collapse whitespace; empty becomes ``None``."""
    if value is None:
        return None
    text = unicodedata.normalize("NFC", str(value))
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text or None


def year_from_date(value: Any) -> int | None:
    """Leading four-digit year of a ``YYYY[-MM[-DD]]`` string."""
    text = normalize_text(value)
    if not text:
        return None
    match = _YEAR_RE.match(text)
    if not match:
        return None
    return int(match.group(1))


def year_from_timestamp(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).year
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def format_duration(milliseconds: Any) -> str | None:
    """Convert a millisecond duration to ``m:ss``."""
    if milliseconds is None:
        return None
    try:
        total_seconds = int(round(int(milliseconds) / 1000))
    except (TypeError, ValueError):
        return None
    if total_seconds < 0:
        return None
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


def total_pages(count: int, page_size: int) -> int:
    if count <= 0 or page_size <= 0:
        return 0
    return int(math.ceil(count / page_size))


def validate_envelope(schema: type[EnvelopeT], payload: Any, *, provider_id: str) -> EnvelopeT:
    """Validate a whole upstream response; failure is terminal."""
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        logger.error(
            "[NORMALIZE] invalid envelope provider=%s schema=%s errors=%s",
            provider_id,
            schema.__name__,
            exc.error_count(),
        )
        raise ValidationError(f"{provider_id}: malformed {schema.__name__} response") from exc


def map_records(
    raw_records: Iterable[Any],
    schema: type[RecordT],
    mapper: Callable[[RecordT], CanonicalItem],
    *,
    provider_id: str,
    external_id_of: Callable[[RecordT], Any],
    media_type: MediaType,
    cache=None,
) -> list[CanonicalItem]:
    """Validate and map upstream records, consulting the item cache first.

    A cached item of the same ``media_type`` is returned as-is (same
    object); a miss is mapped and stored. Records that fail validation are skipped with a warning.
    """
    items: list[CanonicalItem] = []
    skipped = 0
    for raw in raw_records or []:
        try:
            record = schema.model_validate(raw)
        except PydanticValidationError as exc:
            skipped += 1
            logger.warning(
                "[NORMALIZE] skipped record provider=%s schema=%s errors=%s",
                provider_id,
                schema.__name__,
                exc.error_count(),
            )
            continue
        item_id = build_item_id(provider_id, external_id_of(record))
        if cache is not None:
            cached = cache.get(item_id, media_type)
            if cached is not None:
                items.append(cached)
                continue
        item = mapper(record)
        if cache is not None:
            cache.set(item)
        items.append(item)
    if skipped:
        logger.info("[NORMALIZE] provider=%s mapped=%s skipped=%s", provider_id, len(items), skipped)
    return items
