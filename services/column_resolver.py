"""
Column Resolver
Looks up logical fields across rows whose headers differ between exporters.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence

from services.value_parser import clean_text

RawRow = Mapping[str, Any]

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_WORD_SPLIT = re.compile(r"[^A-Za-z0-9]+")

FEE_WORDS = frozenset({"fee", "fees"})


def normalize_header(name: Any) -> str:
    """'Order ID', 'order_id' and 'OrderID' all normalize to 'orderid'."""
    if name is None:
        return ""
    return _NON_ALNUM.sub("", str(name).lower())


@lru_cache(maxsize=512)
def _alias_keys(aliases: Sequence[str]) -> FrozenSet[str]:
    return frozenset(normalize_header(a) for a in aliases)


def _keys_for(aliases: Sequence[str]) -> FrozenSet[str]:
    if isinstance(aliases, tuple):
        return _alias_keys(aliases)
    return frozenset(normalize_header(a) for a in aliases)


def resolve(row: RawRow, aliases: Sequence[str]) -> Optional[Any]:
    """
    Return the value of the first column (in row order) whose header matches any alias.
    None when no column matches.
    """
    keys = _keys_for(aliases)
    for header, value in row.items():
        if normalize_header(header) in keys:
            return value
    return None


def resolve_text(row: RawRow, aliases: Sequence[str]) -> Optional[str]:
    """First matching column with a non-blank value, stripped."""
    keys = _keys_for(aliases)
    for header, value in row.items():
        if normalize_header(header) in keys:
            text = clean_text(value)
            if text:
                return text
    return None


def header_set(headers: Iterable[Any]) -> FrozenSet[str]:
    return frozenset(normalize_header(h) for h in headers if h is not None)


def has_any(normalized_headers: FrozenSet[str], aliases: Sequence[str]) -> bool:
    return not normalized_headers.isdisjoint(_keys_for(aliases))


def header_words(name: Any) -> list[str]:
    """Split a header into lowercase words at punctuation and camelCase boundaries."""
    if name is None:
        return []
    spaced = _CAMEL_BOUNDARY.sub(" ", str(name))
    return [w.lower() for w in _WORD_SPLIT.split(spaced) if w]


def is_fee_header(name: Any) -> bool:
    """
    True when 'fee'/'fees' appears as a whole word ('Coffee' does not count).
    Words split on separators and camelCase only, so an all-lowercase run-together
    header like 'processingfee' is not a fee column; add it to a FEE_GROUPS alias list instead.
    """
    return any(word in FEE_WORDS for word in header_words(name))


def fee_columns(row: RawRow, strict_aliases: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """
    Columns of a row that carry fees.  With strict_aliases only those headers count,
    otherwise any header with a 'fee' word does.
    """
    if strict_aliases is not None:
        keys = _keys_for(strict_aliases)
        return {h: v for h, v in row.items() if normalize_header(h) in keys}
    return {h: v for h, v in row.items() if is_fee_header(h)}
