import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.column_resolver import (
    fee_columns,
    header_words,
    is_fee_header,
    normalize_header,
    resolve,
    resolve_text,
)
from services.order_grouper import extract_order_key


def test_header_format_does_not_change_order_key():
    aliases = ["Order ID"]
    assert resolve({"Order_ID": " 1001 "}, aliases) == " 1001 "
    assert resolve({"Order ID": "1001"}, aliases) == "1001"
    assert extract_order_key({"Order_ID": " 1001 "}) == extract_order_key({"order id": "1001"}) == "1001"


def test_normalize_header():
    assert normalize_header("Order ID") == normalize_header("order_id") == normalize_header("OrderID")
    assert normalize_header(None) == ""


def test_resolve_first_match_in_row_order():
    row = {"Order Number": "A", "Order ID": "B"}
    assert resolve(row, ("Order ID", "Order Number")) == "A"


def test_resolve_missing_column_is_none():
    assert resolve({"Name": "x"}, ("Order ID",)) is None


def test_resolve_text_skips_blank_duplicates():
    row = {"Order ID": "  ", "OrderID": "X-9"}
    assert resolve(row, ("Order ID",)) == "  "
    assert resolve_text(row, ("Order ID",)) == "X-9"


def test_fee_header_matches_whole_words_only():
    assert is_fee_header("Card Processing Fees")
    assert is_fee_header("transactionFee")
    assert is_fee_header("FEE")
    assert not is_fee_header("Coffee")
    assert not is_fee_header("Feedback")
    assert not is_fee_header("processingfee")
    assert header_words("Offsite_Ads-Fee") == ["offsite", "ads", "fee"]


def test_fee_columns_strict_allow_list():
    row = {"Order ID": "1", "Shipping Fee": "1.00", "Listing Fee": "0.20", "Coffee": "9"}
    assert set(fee_columns(row)) == {"Shipping Fee", "Listing Fee"}
    assert set(fee_columns(row, strict_aliases=("Listing Fees", "Listing Fee"))) == {"Listing Fee"}
