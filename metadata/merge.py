"""Field-level merge rules for re-registering a known canonical item."""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any

from metadata.types import CanonicalItem

_LOG = logging.getLogger(__name__)

_IDENTITY_FIELDS = {"id", "external_id", "provider_id", "type"}


def merge_items(existing: CanonicalItem | None, incoming: CanonicalItem) -> CanonicalItem:
    """Merge ``incoming`` over ``existing`` without losing populated fields.

    Non-empty incoming values win field by field; a field that is empty in
    ``incoming`` keeps the existing value. ``attributes`` merge key by key
    with the same rule.
    """
    if existing is None:
        return incoming
    if existing.id != incoming.id or existing.type != incoming.type:
        raise ValueError(
            f"Cannot merge {incoming.type.value} {incoming.id!r} into {existing.type.value} {existing.id!r}"
        )

    updates: dict[str, Any] = {}
    for f in fields(CanonicalItem):
        if f.name in _IDENTITY_FIELDS or f.name == "attributes":
            continue
        new_value = getattr(incoming, f.name)
        if _has_value(new_value):
            updates[f.name] = new_value
        else:
            updates[f.name] = getattr(existing, f.name)
    updates["attributes"] = merge_attributes(existing.attributes, incoming.attributes)
    changed = sorted(name for name, value in updates.items() if value != getattr(existing, name))
    if not changed:
        return existing
    _LOG.debug("registry_merge id=%s fields=%s", existing.id, ",".join(changed))
    return replace(existing, **updates)


def merge_attributes(existing: dict[str, Any] | None, incoming: dict[str, Any] | None) -> dict[str, Any]:
    merged = dict(existing or {})
    for key, value in (incoming or {}).items():
        if _has_value(value):
            merged[key] = value
        else:
            merged.setdefault(key, value)
    return merged


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True
