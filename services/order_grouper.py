"""
Grouper/Joiner
Buckets rows from every classified file by their shared order identifier.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from schemas import ClassifiedFile, GroupedRows, RawRow
from services import field_aliases as fa
from services.column_resolver import resolve
from services.value_parser import clean_text

logger = logging.getLogger(__name__)


def extract_order_key(row: RawRow) -> Optional[str]:
    """Trimmed order identifier, or None when the row has no usable key."""
    return clean_text(resolve(row, fa.ORDER_ID))


def group_rows(classified: Iterable[ClassifiedFile]) -> GroupedRows:
    """
    Build OrderKey -> rows maps for summary, items and payments.
    Files are walked in canonical (name, fingerprint) order so upload order never matters.
    """
    grouped = GroupedRows()
    ordered = sorted(classified, key=lambda cf: cf.parsed.sort_key)

    for cf in ordered:
        targets = []
        if cf.roles.summary:
            targets.append(grouped.summary)
        if cf.roles.items:
            targets.append(grouped.items)
        if cf.roles.payments:
            targets.append(grouped.payments)

        dropped = 0
        for row in cf.parsed.rows:
            key = extract_order_key(row)
            if not key:
                dropped += 1
                continue
            for bucket in targets:
                bucket.setdefault(key, []).append(row)

        if dropped:
            logger.debug(f"{cf.parsed.filename!r}: dropped {dropped} rows without an order id")
        grouped.dropped_rows += dropped

    logger.info(
        f"Grouped {len(grouped.order_keys)} orders "
        f"(summary={len(grouped.summary)} items={len(grouped.items)} "
        f"payments={len(grouped.payments)} dropped_rows={grouped.dropped_rows})"
    )
    return grouped
