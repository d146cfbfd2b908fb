"""
Shipping Label Normalizer
Cleans shipping-ledger exports down to label rows and extracts the detailed
label records used for idempotent upserts.  Independent of the order pipeline.
"""
from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from schemas import CleanedShippingLabel, LabelCleanResult, RawRow, ShippingLabelInput
from services import field_aliases as fa
from services.column_resolver import resolve, resolve_text
from services.value_parser import parse_date, parse_optional_amount

logger = logging.getLogger(__name__)

LABEL_TYPE_VALUE = "label"
DEFAULT_CURRENCY = "USD"

_LABELED_REFERENCE = re.compile(
    r"\b(?:order|receipt)\s*(?:id|#|no\.?|number)?\s*[:#\-]?\s*#?\s*(\d[\w\-]{2,})",
    re.IGNORECASE,
)
_BARE_REFERENCE = re.compile(r"(?<!\d)(\d{9,12})(?!\d)")


def _row_type(row: RawRow) -> Optional[str]:
    value = resolve_text(row, fa.LABEL_TYPE)
    return value.strip().lower() if value else None


def classify_label_row(row: RawRow) -> Optional[CleanedShippingLabel]:
    """A cleaned label, or None when the row is not a well-formed label entry."""
    if _row_type(row) != LABEL_TYPE_VALUE:
        return None
    date_text = resolve_text(row, fa.LABEL_DATE)
    description = resolve_text(row, fa.LABEL_DESCRIPTION)
    total = parse_optional_amount(resolve(row, fa.LABEL_TOTAL))
    if not date_text or not description or total is None:
        return None
    return CleanedShippingLabel(date=date_text, description=description, total=total)


def clean_label_rows(rows: Iterable[RawRow]) -> LabelCleanResult:
    result = LabelCleanResult()
    for row in rows:
        label = classify_label_row(row)
        if label is None:
            result.ignored_count += 1
            continue
        result.cleaned.append(label)
    logger.info(f"Cleaned {len(result.cleaned)} label rows, ignored {result.ignored_count}")
    return result


def extract_order_reference(*texts: Optional[str]) -> Optional[str]:
    """
    Best-effort order reference from free text: a labelled 'order/receipt id'
    first, otherwise a bare 9-12 digit run.  Display and suggestions only.
    """
    candidates = [t for t in texts if t]
    for text in candidates:
        match = _LABELED_REFERENCE.search(text)
        if match:
            return match.group(1)
    for text in candidates:
        match = _BARE_REFERENCE.search(text)
        if match:
            return match.group(1)
    return None


def label_dedupe_key(label: ShippingLabelInput) -> str:
    """Natural key for re-upload idempotence: the label id, else tracking + ship date + amount."""
    if label.label_id:
        return f"label:{label.label_id}"
    ship_date = label.ship_date.isoformat() if label.ship_date else ""
    amount = f"{label.amount.quantize(Decimal('0.01'))}" if label.amount is not None else ""
    return f"fallback:{label.tracking or ''}|{ship_date}|{amount}"


EMPTY_FALLBACK_KEY = "fallback:||"


def label_from_row(row: RawRow, extract_reference: bool = True) -> ShippingLabelInput:
    label = ShippingLabelInput(
        label_id=resolve_text(row, fa.LABEL_ID),
        batch_id=resolve_text(row, fa.LABEL_BATCH),
        carrier=resolve_text(row, fa.LABEL_CARRIER),
        service=resolve_text(row, fa.LABEL_SERVICE),
        ship_date=parse_date(resolve(row, fa.LABEL_SHIP_DATE)),
        to_name=resolve_text(row, fa.LABEL_TO_NAME),
        address1=resolve_text(row, fa.LABEL_ADDRESS1),
        city=resolve_text(row, fa.LABEL_CITY),
        state=resolve_text(row, fa.LABEL_STATE),
        postal=resolve_text(row, fa.LABEL_POSTAL),
        country=resolve_text(row, fa.LABEL_COUNTRY),
        tracking=resolve_text(row, fa.LABEL_TRACKING),
        reference=resolve_text(row, fa.LABEL_REFERENCE),
        notes=resolve_text(row, fa.LABEL_NOTES),
        weight=resolve_text(row, fa.LABEL_WEIGHT),
        dimensions=resolve_text(row, fa.LABEL_DIMENSIONS),
        amount=parse_optional_amount(resolve(row, fa.LABEL_AMOUNT)),
        currency=(resolve_text(row, fa.LABEL_CURRENCY) or DEFAULT_CURRENCY).upper(),
        store_id=resolve_text(row, fa.LABEL_STORE),
    )
    if extract_reference:
        label.order_reference = extract_order_reference(label.reference, label.notes)
    label.dedupe_key = label_dedupe_key(label)
    return label


def parse_detailed_labels(
    rows: Iterable[RawRow],
    extract_reference: bool = True,
) -> Tuple[List[ShippingLabelInput], int]:
    """
    Detailed labels keyed by their natural key (last row wins within one file).
    Rows without a label id or tracking number fall back to the ship date +
    amount key. Rows whose Type column says something other than 'label', and
    rows with nothing to key on at all, are ignored.
    """
    by_key: Dict[str, ShippingLabelInput] = {}
    ignored = 0
    for row in rows:
        if resolve(row, fa.LABEL_TYPE) is not None and _row_type(row) != LABEL_TYPE_VALUE:
            ignored += 1
            continue
        label = label_from_row(row, extract_reference=extract_reference)
        if label.dedupe_key == EMPTY_FALLBACK_KEY:
            ignored += 1
            continue
        by_key[label.dedupe_key] = label
    logger.info(f"Extracted {len(by_key)} detailed labels, ignored {ignored} rows")
    return list(by_key.values()), ignored
