from __future__ import annotations

from typing import Any

_SEPARATOR = ":"


def _strip_or_none(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def build_item_id(provider_id: Any, external_id: Any) -> str:
    """Build the namespaced canonical id ``"<provider>:<external id>"``."""
    provider = _strip_or_none(provider_id)
    external = _strip_or_none(external_id)
    if not provider:
        raise ValueError("provider_id is required")
    if not external:
        raise ValueError("external_id is required")
    return f"{provider.lower()}{_SEPARATOR}{external}"


def split_item_id(item_id: Any) -> tuple[str | None, str | None]:
    """Split a canonical id into ``(provider_id, external_id)``.

    A bare upstream id (no provider prefix) yields ``(None, external_id)``.
    Only the first separator counts, so external ids may contain colons.
    """
    text = _strip_or_none(item_id)
    if not text:
        return None, None
    provider, sep, external = text.partition(_SEPARATOR)
    if not sep or not provider or not external or "/" in provider:
        return None, text
    return provider.lower(), external


def external_id_from(item_id: Any, provider_id: str) -> str | None:
    """Return the upstream id for ``provider_id`` from a canonical or bare id."""
    provider, external = split_item_id(item_id)
    if provider is not None and provider != provider_id.lower():
        # Foreign prefix: treat the whole value as the upstream id.
        return _strip_or_none(item_id)
    return external


def item_key(media_type: Any, item_id: str) -> tuple[str, str]:
    """Store key for an item: ids are unique per provider and type only."""
    return (str(getattr(media_type, "value", media_type)), item_id)
