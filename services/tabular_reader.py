"""
Tabular file reader
Parses uploaded CSV / XLSX payloads into header lists and row mappings.
"""
from __future__ import annotations

import asyncio
import csv
import hashlib
import io
import logging
import time
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from openpyxl import load_workbook

from schemas import ParsedFile

logger = logging.getLogger(__name__)

XLSX_EXTENSIONS = (".xlsx", ".xlsm")


def fingerprint(content: bytes) -> str:
    return hashlib.sha256(content or b"").hexdigest()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _clean_headers(raw_headers: Sequence[Any]) -> List[str]:
    headers: List[str] = []
    for index, header in enumerate(raw_headers):
        text = "" if header is None else str(header).strip()
        headers.append(text or f"column_{index + 1}")
    return headers


def parse_csv_bytes(content: bytes) -> Tuple[List[str], List[Dict[str, Any]]]:
    text = content.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return [], []

    headers = _clean_headers(reader.fieldnames)
    rename = dict(zip(reader.fieldnames, headers))
    rows: List[Dict[str, Any]] = []
    for raw in reader:
        # DictReader files overflow cells under the None key
        row = {rename[k]: v for k, v in raw.items() if k is not None and k in rename}
        if all(_is_blank(v) for v in row.values()):
            continue
        rows.append(row)
    return headers, rows


def parse_xlsx_bytes(content: bytes) -> Tuple[List[str], List[Dict[str, Any]]]:
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0] if workbook.worksheets else None
        if sheet is None:
            return [], []
        iterator = sheet.iter_rows(values_only=True)
        header_row = next(iterator, None)
        if not header_row:
            return [], []
        headers = _clean_headers(header_row)
        rows: List[Dict[str, Any]] = []
        for values in iterator:
            if values is None or all(_is_blank(v) for v in values):
                continue
            rows.append({h: (values[i] if i < len(values) else None) for i, h in enumerate(headers)})
        return headers, rows
    finally:
        workbook.close()


def read_upload(filename: str, content: bytes) -> ParsedFile:
    """Parse one upload. Failures are captured on the ParsedFile instead of raised."""
    digest = fingerprint(content)
    try:
        if filename.lower().endswith(XLSX_EXTENSIONS):
            headers, rows = parse_xlsx_bytes(content)
        else:
            headers, rows = parse_csv_bytes(content)
    except Exception as e:
        logger.warning(f"Could not parse {filename!r}: {e}")
        return ParsedFile(filename=filename, fingerprint=digest, headers=[], rows=[], error=str(e))

    logger.debug(f"Parsed {filename!r}: {len(headers)} columns, {len(rows)} rows")
    return ParsedFile(filename=filename, fingerprint=digest, headers=headers, rows=rows)


async def read_uploads(uploads: Iterable[Tuple[str, bytes]]) -> List[ParsedFile]:
    """Parse every file in parallel worker threads; returns once all of them are done."""
    start = time.time()
    pending = [asyncio.to_thread(read_upload, name, content) for name, content in uploads]
    parsed = list(await asyncio.gather(*pending))
    logger.info(f"Parsed {len(parsed)} files in {int((time.time() - start) * 1000)}ms")
    return parsed
