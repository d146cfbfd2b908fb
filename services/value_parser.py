"""
Cell value parsing for marketplace exports.

Exports mix currency symbols, thousands separators, accounting-style
negatives and several date layouts.  None of the helpers here raise: a value
that cannot be parsed degrades to a neutral default.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser as date_parser

ZERO = Decimal("0")

_AMOUNT_STRIP = re.compile(r"[^0-9.\-]")
_QUANTITY_STRIP = re.compile(r"[^0-9\-]")
_BARE_NUMBER = re.compile(r"[\-+$]?[\d,]*\.?\d+")


def _finite(value: Decimal) -> Optional[Decimal]:
    return value if value.is_finite() else None


def _clean_amount(raw: Any) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return _finite(raw)
    if isinstance(raw, (int, float)):
        try:
            return _finite(Decimal(str(raw)))
        except InvalidOperation:
            return None

    text = str(raw).strip()
    if not text:
        return None

    negative = text.startswith("(") and text.endswith(")")
    cleaned = _AMOUNT_STRIP.sub("", text)
    if not cleaned or cleaned in {"-", ".", "-."}:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    if negative and value > 0:
        value = -value
    return value


def parse_amount(raw: Any) -> Decimal:
    """Parse a money cell; "(1.23)" is -1.23, "$1,234.56" is 1234.56, junk is 0."""
    value = _clean_amount(raw)
    return value if value is not None else ZERO


def parse_optional_amount(raw: Any) -> Optional[Decimal]:
    """Like parse_amount but returns None when nothing numeric is present."""
    return _clean_amount(raw)


def parse_quantity(raw: Any) -> int:
    """Parse a quantity cell, defaulting to 1 unless the result is a positive integer."""
    if isinstance(raw, bool) or raw is None:
        return 1
    if isinstance(raw, int):
        return raw if raw > 0 else 1
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() and raw > 0 else 1

    cleaned = _QUANTITY_STRIP.sub("", str(raw).split(".")[0])
    try:
        value = int(cleaned)
    except ValueError:
        return 1
    return value if value > 0 else 1


def parse_date(raw: Any) -> Optional[date]:
    """Best-effort calendar date; None when the value is not a date."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = str(raw).strip()
    if not text:
        return None
    # Bare numbers ("42", "1001") are ids or amounts, never dates.
    if _BARE_NUMBER.fullmatch(text):
        return None
    try:
        return date_parser.parse(text, dayfirst=False, fuzzy=False).date()
    except (ValueError, OverflowError, TypeError):
        return None


def clean_text(raw: Any) -> Optional[str]:
    """Stringify a cell and strip it; blank cells become None."""
    if raw is None:
        return None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    text = str(raw).strip()
    return text or None
