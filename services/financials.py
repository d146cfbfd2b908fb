"""
Financial Deriver
Canonical revenue, fees, date and store for one grouped order.

Every function here is a pure function of the grouped rows:
S = summary rows, I = item rows, P = payment rows (any may be empty).
Each fallback chain takes the first level that yields a non-zero value.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence

from schemas import DerivedOrder, GroupedRows, RawRow
from services import field_aliases as fa
from services.column_resolver import fee_columns, normalize_header, resolve, resolve_text
from services.value_parser import ZERO, parse_amount, parse_date, parse_quantity

logger = logging.getLogger(__name__)

DEFAULT_STORE_NAME = "CSV Import"

_REGULATORY_KEYS = frozenset(normalize_header(a) for a in fa.REGULATORY_FEE)


def _first_non_zero(levels: Iterable[Callable[[], Decimal]]) -> Decimal:
    for level in levels:
        value = level()
        if value != ZERO:
            return value
    return ZERO


def item_line_total(row: RawRow) -> Decimal:
    """Line total when present, else unit price x quantity."""
    line_total = parse_amount(resolve(row, fa.LINE_TOTAL))
    if line_total != ZERO:
        return line_total
    unit_price = parse_amount(resolve(row, fa.UNIT_PRICE))
    return unit_price * parse_quantity(resolve(row, fa.QUANTITY))


def items_revenue(items: Sequence[RawRow]) -> Decimal:
    return sum((item_line_total(row) for row in items), ZERO)


def payments_net(payments: Sequence[RawRow]) -> Decimal:
    return sum((parse_amount(resolve(row, fa.PAYMENT_NET)) for row in payments), ZERO)


def derive_revenue(
    summary: Sequence[RawRow],
    items: Sequence[RawRow],
    payments: Sequence[RawRow],
) -> Decimal:
    """
    Revenue fallback chain:
      1. net amount (first S row)
      2. order total / gross (first S row)
      3. sum of item line totals
      4. adjusted net (first S row)
      5. sum of payment net amounts
    Without summary rows only levels 3 and 5 apply.
    """
    if not summary:
        return _first_non_zero((
            lambda: items_revenue(items),
            lambda: payments_net(payments),
        ))

    head = summary[0]
    return _first_non_zero((
        lambda: parse_amount(resolve(head, fa.NET_AMOUNT)),
        lambda: parse_amount(resolve(head, fa.TOTAL_AMOUNT)),
        lambda: items_revenue(items),
        lambda: parse_amount(resolve(head, fa.ADJUSTED_NET)),
        lambda: payments_net(payments),
    ))


def summary_named_fees(row: RawRow) -> Decimal:
    """One column per named fee group, summed."""
    return sum((parse_amount(resolve(row, group)) for group in fa.FEE_GROUPS), ZERO)


def payment_row_fees(row: RawRow, strict_fee_columns: bool = False) -> Decimal:
    strict = fa.NAMED_FEES if strict_fee_columns else None
    columns = fee_columns(row, strict_aliases=strict)
    for header, value in row.items():
        if header not in columns and normalize_header(header) in _REGULATORY_KEYS:
            columns[header] = value
    return sum((parse_amount(v) for v in columns.values()), ZERO)


def payments_fees(payments: Sequence[RawRow], strict_fee_columns: bool = False) -> Decimal:
    return sum((payment_row_fees(row, strict_fee_columns) for row in payments), ZERO)


def items_fees(items: Sequence[RawRow], strict_fee_columns: bool = False) -> Decimal:
    strict = fa.ITEM_FEES + fa.NAMED_FEES if strict_fee_columns else None
    total = ZERO
    for row in items:
        for value in fee_columns(row, strict_aliases=strict).values():
            total += parse_amount(value)
    return total


def derive_fees(
    summary: Sequence[RawRow],
    items: Sequence[RawRow],
    payments: Sequence[RawRow],
    strict_fee_columns: bool = False,
) -> Decimal:
    """
    Fees fallback chain:
      1. named fee columns (first S row)
      2. every fee column across P rows, plus the regulatory fee
      3. fee columns across I rows
      4. adjusted fees (first S row)
    Without summary rows: P, else I, else 0.
    """
    if not summary:
        return _first_non_zero((
            lambda: payments_fees(payments, strict_fee_columns),
            lambda: items_fees(items, strict_fee_columns),
        ))

    head = summary[0]
    return _first_non_zero((
        lambda: summary_named_fees(head),
        lambda: payments_fees(payments, strict_fee_columns),
        lambda: items_fees(items, strict_fee_columns),
        lambda: parse_amount(resolve(head, fa.ADJUSTED_FEES)),
    ))


def _head_rows(
    summary: Sequence[RawRow],
    items: Sequence[RawRow],
    payments: Sequence[RawRow],
) -> List[RawRow]:
    return [rows[0] for rows in (summary, items, payments) if rows]


def derive_order_date(
    summary: Sequence[RawRow],
    items: Sequence[RawRow],
    payments: Sequence[RawRow],
) -> Optional[date]:
    for row in _head_rows(summary, items, payments):
        parsed = parse_date(resolve_text(row, fa.ORDER_DATE))
        if parsed:
            return parsed
    return None


def derive_store_name(
    summary: Sequence[RawRow],
    items: Sequence[RawRow],
    payments: Sequence[RawRow],
    default: str = DEFAULT_STORE_NAME,
) -> str:
    for row in _head_rows(summary, items, payments):
        name = resolve_text(row, fa.STORE_NAME)
        if name:
            return name
    return default


def derive_order(
    order_key: str,
    grouped: GroupedRows,
    default_store: str = DEFAULT_STORE_NAME,
    strict_fee_columns: bool = False,
) -> DerivedOrder:
    """Header fields for one order. Cost of goods is unknown at import time."""
    summary, items, payments = grouped.rows_for(order_key)
    return DerivedOrder(
        order_id=order_key,
        order_date=derive_order_date(summary, items, payments),
        store_name=derive_store_name(summary, items, payments, default_store),
        total_price=derive_revenue(summary, items, payments),
        total_fees=derive_fees(summary, items, payments, strict_fee_columns),
        total_cogs=ZERO,
        has_item_rows=bool(items),
    )
