"""
File Classifier
Decides which semantic roles (items / summary / payments) an uploaded file plays
from its header set alone; exports carry no file-type metadata.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from schemas import ClassifiedFile, FileRoles, ParsedFile
from services import field_aliases as fa
from services.column_resolver import has_any, header_set, is_fee_header

logger = logging.getLogger(__name__)

ITEM_IDENTITY_ALIASES: tuple[str, ...] = fa.ITEM_NAME + fa.SKU + fa.VARIATION
SUMMARY_AMOUNT_ALIASES: tuple[str, ...] = fa.NET_AMOUNT + fa.TOTAL_AMOUNT + fa.ADJUSTED_NET
PAYMENT_AMOUNT_ALIASES: tuple[str, ...] = fa.PAYMENT_GROSS + fa.PAYMENT_NET


def _headers_of(parsed: ParsedFile) -> List[str]:
    if parsed.headers:
        return list(parsed.headers)
    if parsed.rows:
        return list(parsed.rows[0].keys())
    return []


def classify_headers(headers: Sequence[str], strict_fee_columns: bool = False) -> FileRoles:
    """Role membership for one header row. Summary wins over Items."""
    normalized = header_set(headers)
    if not normalized:
        return FileRoles()

    has_named_fee = has_any(normalized, fa.NAMED_FEES)
    if strict_fee_columns:
        has_fee_like = has_named_fee
    else:
        has_fee_like = has_named_fee or any(is_fee_header(h) for h in headers)

    items = has_any(normalized, ITEM_IDENTITY_ALIASES)
    summary = has_any(normalized, SUMMARY_AMOUNT_ALIASES) or has_named_fee
    payments = has_any(normalized, fa.ORDER_ID) and (
        has_fee_like or has_any(normalized, PAYMENT_AMOUNT_ALIASES)
    )

    if summary:
        items = False
    return FileRoles(items=items, summary=summary, payments=payments)


def classify_file(parsed: ParsedFile, strict_fee_columns: bool = False) -> FileRoles:
    if parsed.error or not parsed.rows:
        return FileRoles()
    return classify_headers(_headers_of(parsed), strict_fee_columns=strict_fee_columns)


def classify_files(
    files: Iterable[ParsedFile],
    strict_fee_columns: bool = False,
) -> tuple[List[ClassifiedFile], List[str]]:
    """Classify every file; returns (recognized files in canonical order, ignored filenames)."""
    classified: List[ClassifiedFile] = []
    ignored: List[str] = []
    for parsed in sorted(files, key=lambda f: f.sort_key):
        roles = classify_file(parsed, strict_fee_columns=strict_fee_columns)
        if not roles.recognized:
            logger.info(f"Ignoring unrecognized file {parsed.filename!r} (rows={len(parsed.rows)})")
            ignored.append(parsed.filename)
            continue
        logger.info(f"Classified {parsed.filename!r} as {','.join(roles.labels())}")
        classified.append(ClassifiedFile(parsed=parsed, roles=roles))
    return classified, ignored
