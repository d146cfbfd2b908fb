import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas import GroupedRows
from services.financials import (
    derive_fees,
    derive_order,
    derive_order_date,
    derive_revenue,
    derive_store_name,
    item_line_total,
)

ITEMS = [
    {"Order ID": "1", "Item Name": "Mug", "Quantity": "1", "Item Total": "10.00", "Item Fees": "0.40"},
    {"Order ID": "1", "Item Name": "Cup", "Quantity": "2", "Price": "5.00", "Item Fees": "0.40"},
]
PAYMENTS = [{"Order ID": "1", "Net Amount": "12.50", "Processing Fee": "1.00", "Shipping Fee": "0.25"}]


def test_item_line_total_prefers_line_total_then_unit_price():
    assert item_line_total(ITEMS[0]) == Decimal("10.00")
    assert item_line_total(ITEMS[1]) == Decimal("10.00")


def test_revenue_level_one_net_amount_wins():
    summary = [{"Order ID": "1", "Net Amount": "28.00", "Order Total": "40.00", "Adjusted Net": "5"}]
    assert derive_revenue(summary, ITEMS, PAYMENTS) == Decimal("28.00")


def test_revenue_level_two_order_total():
    summary = [{"Order ID": "1", "Net Amount": "0", "Order Total": "40.00"}]
    assert derive_revenue(summary, ITEMS, PAYMENTS) == Decimal("40.00")


def test_revenue_level_three_item_totals():
    summary = [{"Order ID": "1", "Fees": "1.00", "Adjusted Net": "5"}]
    assert derive_revenue(summary, ITEMS, PAYMENTS) == Decimal("20.00")


def test_revenue_level_four_adjusted_net():
    summary = [{"Order ID": "1", "Fees": "1.00", "Adjusted Net Order Amount": "25.00"}]
    assert derive_revenue(summary, [], PAYMENTS) == Decimal("25.00")


def test_revenue_level_five_payments_net():
    summary = [{"Order ID": "1", "Fees": "1.00"}]
    assert derive_revenue(summary, [], PAYMENTS) == Decimal("12.50")


def test_revenue_without_summary_uses_items_then_payments():
    assert derive_revenue([], ITEMS, PAYMENTS) == Decimal("20.00")
    assert derive_revenue([], [], PAYMENTS) == Decimal("12.50")
    assert derive_revenue([], [], []) == Decimal("0")


def test_fees_named_columns_from_summary_row():
    summary = [{"Order ID": "1", "Card Processing Fees": "1.50", "Transaction Fees": "0.50", "Coffee": "3"}]
    assert derive_fees(summary, ITEMS, PAYMENTS) == Decimal("2.00")


def test_fees_fall_back_to_payment_fee_columns():
    summary = [{"Order ID": "1", "Net Amount": "28.00"}]
    payments = PAYMENTS + [{"Order ID": "1", "Regulatory Operating Fee": "0.10", "Coffee": "4"}]
    assert derive_fees(summary, ITEMS, payments) == Decimal("1.35")


def test_fees_fall_back_to_item_then_adjusted_fees():
    summary = [{"Order ID": "1", "Net Amount": "28.00", "Adjusted Fees": "3.00"}]
    assert derive_fees(summary, ITEMS, []) == Decimal("0.80")
    assert derive_fees(summary, [], []) == Decimal("3.00")


def test_fees_without_summary():
    assert derive_fees([], ITEMS, PAYMENTS) == Decimal("1.25")
    assert derive_fees([], ITEMS, []) == Decimal("0.80")
    assert derive_fees([], [], []) == Decimal("0")


def test_strict_fee_columns_only_count_named_fees():
    assert derive_fees([], [], PAYMENTS, strict_fee_columns=True) == Decimal("1.00")


def test_order_date_and_store_follow_summary_items_payments_priority():
    summary = [{"Order ID": "1", "Net Amount": "1"}]
    items = [{"Order ID": "1", "Sale Date": "2024-02-01", "Shop Name": "Thread & Co"}]
    payments = [{"Order ID": "1", "Date": "2024-02-03", "Store": "Other"}]
    assert derive_order_date(summary, items, payments) == date(2024, 2, 1)
    assert derive_store_name(summary, items, payments) == "Thread & Co"
    assert derive_store_name(summary, [], []) == "CSV Import"
    assert derive_order_date([], [], []) is None


def test_derive_order_marks_item_rows():
    grouped = GroupedRows(
        summary={"1": [{"Order ID": "1", "Net Amount": "28.00", "Fees": "2.00"}]},
        items={"1": ITEMS},
    )
    order = derive_order("1", grouped, default_store="Etsy")
    assert order.total_price == Decimal("28.00")
    assert order.total_fees == Decimal("2.00")
    assert order.total_cogs == Decimal("0")
    assert order.store_name == "Etsy"
    assert order.has_item_rows is True
