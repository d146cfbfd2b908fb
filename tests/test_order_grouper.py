import itertools
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "")

from schemas import ClassifiedFile, FileRoles
from services.csv_processor import OrderImportProcessor
from services.feature_flags import FeatureFlagsManager, ImportPolicy
from services.order_grouper import group_rows
from services.tabular_reader import read_upload

ITEMS_CSV = (
    b"Order ID,Item Name,SKU,Size,Quantity,Item Total\n"
    b"1001,Linen Shirt,LS-01,M,1,10.00\n"
    b"1001,Linen Shirt,LS-01,M,2,20.00\n"
    b"1002,Canvas Tote,CT-02,,1,15.00\n"
    b",Orphan Row,OR-1,,1,5.00\n"
)
SUMMARY_A_CSV = b"Order ID,Sale Date,Net Amount,Fees\n1001,2024-03-05,28.00,2.00\n2001,2024-03-06,50.00,1.00\n"
SUMMARY_B_CSV = b"Order ID,Sale Date,Net Amount,Fees\n2001,2024-03-07,60.00,3.00\n"
PAYMENTS_CSV = b"Order ID,Gross Amount,Net Amount,Transaction Fee\n1002,15.00,14.10,0.90\n"


def _processor():
    return OrderImportProcessor(flags=FeatureFlagsManager())


def test_rows_without_order_id_are_dropped_and_counted():
    parsed = read_upload("items.csv", ITEMS_CSV)
    grouped = group_rows([ClassifiedFile(parsed=parsed, roles=FileRoles(items=True))])
    assert grouped.order_keys == ["1001", "1002"]
    assert len(grouped.items["1001"]) == 2
    assert grouped.dropped_rows == 1


def test_file_can_feed_several_roles():
    parsed = read_upload("summary.csv", SUMMARY_A_CSV)
    grouped = group_rows([ClassifiedFile(parsed=parsed, roles=FileRoles(summary=True, payments=True))])
    assert set(grouped.summary) == set(grouped.payments) == {"1001", "2001"}
    assert grouped.items == {}


def test_plan_is_independent_of_upload_order():
    uploads = [
        ("items.csv", ITEMS_CSV),
        ("summary-a.csv", SUMMARY_A_CSV),
        ("summary-b.csv", SUMMARY_B_CSV),
        ("payments.csv", PAYMENTS_CSV),
    ]
    processor = _processor()
    baseline = None
    for permutation in itertools.permutations(uploads):
        files = [read_upload(name, content) for name, content in permutation]
        plan = processor.plan(files, ImportPolicy())
        snapshot = [order.to_dict() for order in plan.orders]
        if baseline is None:
            baseline = snapshot
        assert snapshot == baseline

    by_id = {order["order_id"]: order for order in baseline}
    # summary-a.csv sorts first, so its row is the head summary row for 2001
    assert by_id["2001"]["total_price"] == "50.00"
    # a payments ledger with a net column also plays the summary role
    assert by_id["1002"]["total_price"] == "14.10"
    assert by_id["1002"]["total_fees"] == "0.90"


def test_identical_files_in_one_batch_are_skipped():
    files = [read_upload("orders.csv", ITEMS_CSV), read_upload("orders copy.csv", ITEMS_CSV)]
    plan = _processor().plan(files, ImportPolicy())
    assert plan.duplicate_files == ["orders.csv"]
    item = next(o for o in plan.orders if o.order_id == "1001").line_items[0]
    assert item.quantity == 3

    plan = _processor().plan(files, ImportPolicy(skip_duplicate_files=False))
    item = next(o for o in plan.orders if o.order_id == "1001").line_items[0]
    assert item.quantity == 6


def test_unrecognized_files_are_reported():
    files = [read_upload("notes.csv", b"Foo,Bar\n1,2\n"), read_upload("items.csv", ITEMS_CSV)]
    plan = _processor().plan(files, ImportPolicy())
    assert plan.ignored_files == ["notes.csv"]
    assert plan.rows_dropped == 1
    assert plan.file_roles == {"items.csv": ["items"]}
