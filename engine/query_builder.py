"""Lucene-style query construction shared by the Lucene-speaking providers.

Each provider supplies a :class:`LuceneDialect` (how free-text tokens are
joined, whether the text is field-wrapped) and a filter field map; the
builder emits one escaped query string. Non-Lucene providers reuse the
tokenizing and short-circuit helpers and translate filters to parameters
themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from config.settings import FUZZY_EDIT_DISTANCE, FUZZY_MIN_TOKEN_LENGTH, MIN_QUERY_LENGTH
from metadata.types import (
    EnumFilter,
    FilterValue,
    RangeFilter,
    ReferenceFilter,
    SearchQuery,
    TextFilter,
)

_LUCENE_SPECIAL_RE = re.compile(r'(&&|\|\||[+\-!(){}\[\]^"~*?:\\/])')


@dataclass(frozen=True)
class LuceneDialect:
    """How one provider spells a query.

    ``joiner`` is the implicit AND between free-text tokens (MusicBrainz
    defaults to OR, so it needs an explicit one). ``text_field`` wraps the
    tokens as ``field:(...)``. ``fields`` maps filter names to index fields.
    """

    joiner: str = " AND "
    text_field: str | None = None
    fields: dict[str, str] = field(default_factory=dict)


def escape_lucene(value: str) -> str:
    """Escape every Lucene reserved character, including ``&&`` and ``||``."""
    return _LUCENE_SPECIAL_RE.sub(r"\\\1", str(value))


def tokenize(text: str | None) -> list[str]:
    return [token for token in str(text or "").split() if token]


def effective_text(text: str | None, *, min_length: int = MIN_QUERY_LENGTH) -> str:
    """Collapsed free text, or ``""`` when it is too short to search on."""
    collapsed = " ".join(tokenize(text))
    if len(collapsed) < min_length:
        return ""
    return collapsed


def is_short_circuit(
    query: SearchQuery,
    *,
    min_length: int = MIN_QUERY_LENGTH,
    supported_filters=None,
) -> bool:
    """True when the query has no usable text and no active filter.

    With ``supported_filters`` only those filter names count; a provider that
    cannot translate any of the active filters has nothing to search on.
    Sort order alone never justifies a network call.
    """
    if effective_text(query.free_text, min_length=min_length):
        return False
    active = query.active_filters()
    if supported_filters is not None:
        active = {name: value for name, value in active.items() if name in supported_filters}
    return not active


def decorate_tokens(
    tokens: list[str],
    *,
    fuzzy: bool = False,
    wildcard: bool = False,
    min_fuzzy_length: int = FUZZY_MIN_TOKEN_LENGTH,
) -> list[str]:
    escaped = [escape_lucene(token) for token in tokens]
    out: list[str] = []
    last = len(escaped) - 1
    for index, (raw, token) in enumerate(zip(tokens, escaped)):
        if wildcard and index == last:
            out.append(f"{token}*")
        elif fuzzy and len(raw) >= min_fuzzy_length:
            out.append(f"{token}~{FUZZY_EDIT_DISTANCE}")
        else:
            out.append(token)
    return out


def _format_bound(value) -> str:
    if value is None:
        return "*"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def filter_clause(field_name: str, value: FilterValue) -> str | None:
    if value is None or not value.is_active:
        return None
    if isinstance(value, RangeFilter):
        return f"{field_name}:[{_format_bound(value.min)} TO {_format_bound(value.max)}]"
    if isinstance(value, ReferenceFilter):
        return f"{field_name}:{escape_lucene(str(value.id).strip())}"
    if isinstance(value, EnumFilter):
        quoted = [f'"{escape_lucene(str(v).strip())}"' for v in value.values if str(v).strip()]
        if len(quoted) == 1:
            return f"{field_name}:{quoted[0]}"
        return f"{field_name}:({' OR '.join(quoted)})"
    if isinstance(value, TextFilter):
        return f'{field_name}:"{escape_lucene(str(value.text).strip())}"'
    raise TypeError(f"Unsupported filter value: {value!r}")


def build_query(
    query: SearchQuery,
    dialect: LuceneDialect,
    *,
    extra_clauses: list[str] | None = None,
) -> str:
    """Build the provider query string, or ``""`` when nothing is searchable.

    Filters missing from ``dialect.fields`` are ignored; callers translate
    those themselves and pass them through ``extra_clauses``.
    """
    clauses: list[str] = []
    text = effective_text(query.free_text)
    if text:
        tokens = decorate_tokens(tokenize(text), fuzzy=query.fuzzy, wildcard=query.wildcard)
        joined = dialect.joiner.join(tokens)
        if dialect.text_field:
            joined = f"{dialect.text_field}:({joined})"
        clauses.append(joined)
    for name, value in query.active_filters().items():
        field_name = dialect.fields.get(name)
        if not field_name:
            continue
        clause = filter_clause(field_name, value)
        if clause:
            clauses.append(clause)
    for clause in extra_clauses or []:
        if clause:
            clauses.append(clause)
    if not clauses:
        return ""
    if len(clauses) == 1:
        return clauses[0]
    return " AND ".join(clauses)
