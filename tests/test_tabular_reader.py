import asyncio
import io
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

openpyxl = pytest.importorskip("openpyxl")

from services.tabular_reader import fingerprint, parse_csv_bytes, read_upload, read_uploads


def _xlsx_bytes(rows):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_csv_with_bom_and_blank_rows():
    content = "\ufeffOrder ID,Item Name\n1001,Mug\n,\n1002,Cup\n".encode("utf-8")
    headers, rows = parse_csv_bytes(content)
    assert headers == ["Order ID", "Item Name"]
    assert rows == [{"Order ID": "1001", "Item Name": "Mug"}, {"Order ID": "1002", "Item Name": "Cup"}]


def test_csv_blank_header_cells_get_positional_names():
    headers, rows = parse_csv_bytes(b"Order ID,,Total\n1,x,2\n")
    assert headers == ["Order ID", "column_2", "Total"]
    assert rows[0]["column_2"] == "x"


def test_xlsx_first_sheet_is_read():
    content = _xlsx_bytes([["Order ID", "Net Amount"], [1001, 28.5], [None, None], ["1002", 3]])
    parsed = read_upload("Summary.XLSX", content)
    assert parsed.error is None
    assert parsed.headers == ["Order ID", "Net Amount"]
    assert parsed.rows == [{"Order ID": 1001, "Net Amount": 28.5}, {"Order ID": "1002", "Net Amount": 3}]


def test_unreadable_workbook_is_captured_not_raised():
    parsed = read_upload("broken.xlsx", b"definitely not a zip")
    assert parsed.error
    assert parsed.rows == []
    assert parsed.fingerprint == fingerprint(b"definitely not a zip")


def test_read_uploads_parses_every_file():
    uploads = [("a.csv", b"Order ID\n1\n"), ("b.csv", b"Order ID\n2\n3\n")]
    parsed = asyncio.run(read_uploads(uploads))
    assert [p.filename for p in parsed] == ["a.csv", "b.csv"]
    assert [len(p.rows) for p in parsed] == [1, 2]
    assert parsed[0].sort_key == ("a.csv", fingerprint(b"Order ID\n1\n"))
