"""
Line-Item Deduplicator
Turns an order's item rows into line items, collapsing rows that describe the
same product variant (normalized name + size + SKU).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from schemas import DEDUP_MERGE, DEDUP_POLICIES, DEDUP_PREFER_RICHER, DerivedOrder, LineItemDraft, RawRow
from services import field_aliases as fa
from services.column_resolver import resolve, resolve_text
from services.financials import item_line_total, items_fees
from services.value_parser import parse_quantity

logger = logging.getLogger(__name__)

UNKNOWN_ITEM_NAME = "Unknown item"
PLACEHOLDER_ITEM_NAME = "Order Summary"
PLACEHOLDER_NAME_TOKENS = frozenset({"", "item", "items", "title", "product", "name", "unknown", "n/a", "-"})

# Stored size is "<size> | Color: <color>" when a variation carries both.
SIZE_COLOR_SEPARATOR = " | "

_SIZE_TOKEN = re.compile(r"\bsize\s*[:=]\s*([^,;|]+)", re.IGNORECASE)
_COLOR_TOKEN = re.compile(r"\bcolou?r\s*[:=]\s*([^,;|]+)", re.IGNORECASE)


@dataclass
class LineItemBuild:
    items: List[LineItemDraft] = field(default_factory=list)
    duplicates: int = 0


def is_placeholder_name(name: Optional[str]) -> bool:
    return (name or "").strip().lower() in PLACEHOLDER_NAME_TOKENS


def split_variation(variation: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """'Size: M, Color: Blue' -> ('M', 'Blue'); returns (None, None) when no tokens are present."""
    if not variation:
        return None, None
    size_match = _SIZE_TOKEN.search(variation)
    color_match = _COLOR_TOKEN.search(variation)
    size = size_match.group(1).strip() if size_match else None
    color = color_match.group(1).strip() if color_match else None
    return size or None, color or None


def compose_size(size_column: Optional[str], variation: Optional[str]) -> Optional[str]:
    """Merge a Size column with an in-band variation string into the stored size field."""
    var_size, color = split_variation(variation)
    size = size_column or var_size
    if size is None and color is None and variation:
        # Free-form variation text with no recognizable tokens.
        return variation.strip() or None
    if size and color:
        return f"{size}{SIZE_COLOR_SEPARATOR}Color: {color}"
    if color:
        return f"Color: {color}"
    return size


def _fallback_name(rows: Sequence[RawRow]) -> str:
    for row in rows:
        name = resolve_text(row, fa.ITEM_NAME)
        if name and not is_placeholder_name(name):
            return name
    return UNKNOWN_ITEM_NAME


def draft_from_row(row: RawRow, fallback_name: str, strict_fee_columns: bool = False) -> LineItemDraft:
    name = resolve_text(row, fa.ITEM_NAME)
    if is_placeholder_name(name):
        name = fallback_name
    return LineItemDraft(
        product_name=name,
        sku=resolve_text(row, fa.SKU),
        size=compose_size(resolve_text(row, fa.SIZE), resolve_text(row, fa.VARIATION)),
        quantity=parse_quantity(resolve(row, fa.QUANTITY)),
        price=item_line_total(row),
        fees=items_fees([row], strict_fee_columns),
    )


def build_line_items(
    item_rows: Sequence[RawRow],
    policy: str = DEDUP_MERGE,
    strict_fee_columns: bool = False,
) -> LineItemBuild:
    """
    Deduplicate one order's item rows.

    merge:          colliding rows are summed (quantity, price, fees).
    prefer_richer:  the candidate with the larger absolute price is kept.
    Each collision counts as one duplicate.
    """
    if policy not in DEDUP_POLICIES:
        raise ValueError(f"Unknown dedup policy: {policy}")

    result = LineItemBuild()
    if not item_rows:
        return result

    fallback = _fallback_name(item_rows)
    by_key: Dict[Tuple[str, str, str], LineItemDraft] = {}

    for row in item_rows:
        draft = draft_from_row(row, fallback, strict_fee_columns)
        key = draft.dedupe_key
        existing = by_key.get(key)
        if existing is None:
            by_key[key] = draft
            result.items.append(draft)
            continue

        result.duplicates += 1
        if policy == DEDUP_MERGE:
            existing.quantity += draft.quantity
            existing.price += draft.price
            existing.fees += draft.fees
        elif policy == DEDUP_PREFER_RICHER and abs(draft.price) > abs(existing.price):
            index = next(i for i, item in enumerate(result.items) if item is existing)
            result.items[index] = draft
            by_key[key] = draft

    return result


def placeholder_line_item(order: DerivedOrder) -> LineItemDraft:
    """Single stand-in line for an order that arrived without item rows."""
    return LineItemDraft(
        product_name=PLACEHOLDER_ITEM_NAME,
        sku=None,
        size=None,
        quantity=1,
        price=order.total_price,
        fees=order.total_fees,
    )
