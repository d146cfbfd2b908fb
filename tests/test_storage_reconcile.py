import asyncio
import os
import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "")

pytest.importorskip("aiosqlite", reason="storage tests run against sqlite+aiosqlite")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database import Base
from schemas import DEDUP_PREFER_RICHER
from services.column_preferences import load_order_columns, reorder_columns, save_order_columns
from services.csv_processor import NoOrdersDetectedError, OrderImportProcessor, ShippingLabelProcessor
from services.feature_flags import FeatureFlagsManager
from services.storage import StorageService

TENANT = "tenant-a"

ITEMS_CSV = (
    b"Order ID,Item Name,SKU,Size,Quantity,Item Total\n"
    b"1001,Linen Shirt,LS-01,M,1,10.00\n"
    b"1001,Linen Shirt,LS-01,M,2,20.00\n"
)
SUMMARY_CSV = b"Order ID,Sale Date,Net Amount,Fees\n1001,2024-03-05,28.00,2.00\n"
BATCH = [("items.csv", ITEMS_CSV), ("summary.csv", SUMMARY_CSV)]

LABELS_CSV = (
    b"Label ID,Carrier,Service,Ship Date,Tracking Number,Total,Notes\n"
    b"L-1,USPS,Ground Advantage,2024-03-06,9400111,5.25,Order #1001\n"
    b",UPS,Ground,2024-03-07,1Z999,8.10,\n"
)


def run_with_storage(scenario):
    """Run an async scenario against a fresh in-memory database."""
    async def _main():
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            return await scenario(StorageService(session_factory=factory))
        finally:
            await engine.dispose()

    return asyncio.run(_main())


def _processor(storage, flags=None):
    return OrderImportProcessor(storage_service=storage, flags=flags or FeatureFlagsManager())


def test_merge_scenario_end_to_end():
    async def scenario(storage):
        summary = await _processor(storage).import_files(TENANT, BATCH)
        order = await storage.get_order(TENANT, "1001")
        items = await storage.get_order_items(TENANT, "1001")
        batches = await storage.get_recent_import_batches(TENANT)
        return summary, order, items, batches

    summary, order, items, batches = run_with_storage(scenario)

    assert summary.unique_orders == 1
    assert summary.orders_inserted == 1
    assert summary.orders_updated == 0
    assert summary.item_duplicates == 1
    assert summary.variants_created == 1

    assert order.total_price == Decimal("28.00")
    assert order.total_fees == Decimal("2.00")
    assert order.total_cogs == Decimal("0")
    assert order.total_profit == Decimal("26.00")
    assert order.order_date.isoformat() == "2024-03-05"
    assert order.store_name == "CSV Import"

    assert len(items) == 1
    assert items[0].quantity == 3
    assert items[0].price == Decimal("30.00")
    assert items[0].variant_id is not None

    assert len(batches) == 1
    assert batches[0].status == "completed"
    assert batches[0].summary["ordersInserted"] == 1
    assert batches[0].summary["fileRoles"]["items.csv"] == ["items"]


def test_reimport_is_idempotent():
    async def scenario(storage):
        processor = _processor(storage)
        await processor.import_files(TENANT, BATCH)
        first_items = await storage.get_order_items(TENANT, "1001")
        second = await processor.import_files(TENANT, list(reversed(BATCH)))
        second_items = await storage.get_order_items(TENANT, "1001")
        orders = await storage.get_orders(TENANT)
        return first_items, second, second_items, orders

    first_items, second, second_items, orders = run_with_storage(scenario)

    assert second.orders_inserted == 0
    assert second.orders_updated == 1
    assert second.variants_created == 0
    assert len(orders) == 1
    assert [i.id for i in second_items] == [i.id for i in first_items]
    assert [(i.quantity, i.price) for i in second_items] == [(3, Decimal("30.00"))]


def test_summary_only_reimport_keeps_existing_items():
    async def scenario(storage):
        processor = _processor(storage)
        await processor.import_files(TENANT, BATCH)
        revised = b"Order ID,Net Amount,Fees\n1001,30.00,2.50\n"
        result = await processor.import_files(TENANT, [("summary-revised.csv", revised)])
        order = await storage.get_order(TENANT, "1001")
        items = await storage.get_order_items(TENANT, "1001")
        return result, order, items

    result, order, items = run_with_storage(scenario)

    assert result.orders_updated == 1
    assert result.line_items_written == 0
    assert order.total_price == Decimal("30.00")
    assert order.total_fees == Decimal("2.50")
    assert [(i.quantity, i.price) for i in items] == [(3, Decimal("30.00"))]


def test_summary_only_placeholder_flag():
    async def scenario(storage):
        flags = FeatureFlagsManager()
        summary_only = [("summary.csv", b"Order ID,Net Amount,Fees\n2002,45.00,3.10\n")]

        await _processor(storage, flags).import_files(TENANT, summary_only)
        without = await storage.get_order_items(TENANT, "2002")

        flags.set_flag("import.summary_only_placeholder", True, TENANT)
        await _processor(storage, flags).import_files(TENANT, summary_only)
        await _processor(storage, flags).import_files(TENANT, summary_only)
        with_placeholder = await storage.get_order_items(TENANT, "2002")
        return without, with_placeholder

    without, with_placeholder = run_with_storage(scenario)

    assert without == []
    assert len(with_placeholder) == 1
    assert with_placeholder[0].product_name == "Order Summary"
    assert with_placeholder[0].price == Decimal("45.00")


def test_prefer_richer_policy_applies_per_tenant():
    async def scenario(storage):
        flags = FeatureFlagsManager()
        flags.set_flag("import.dedup_policy", DEDUP_PREFER_RICHER, TENANT)
        summary = await _processor(storage, flags).import_files(TENANT, BATCH)
        items = await storage.get_order_items(TENANT, "1001")
        return summary, items

    summary, items = run_with_storage(scenario)

    assert summary.dedup_policy == DEDUP_PREFER_RICHER
    assert [(i.quantity, i.price) for i in items] == [(2, Decimal("20.00"))]


def test_no_orders_detected_writes_nothing():
    async def scenario(storage):
        with pytest.raises(NoOrdersDetectedError):
            await _processor(storage).import_files(TENANT, [("notes.csv", b"Foo,Bar\n1,2\n")])
        with pytest.raises(NoOrdersDetectedError):
            await _processor(storage).import_files(TENANT, [("items.csv", b"Order ID,Item Name\n,Mug\n")])
        return await storage.get_recent_import_batches(TENANT), await storage.get_orders(TENANT)

    batches, orders = run_with_storage(scenario)

    assert batches == []
    assert orders == []


def test_variant_cost_reprices_orders_and_survives_reimport():
    async def scenario(storage):
        processor = _processor(storage)
        await processor.import_files(TENANT, BATCH)
        variants = await storage.list_cost_variants(TENANT)
        result = await storage.set_variant_cost(TENANT, variants[0].id, Decimal("4.00"))
        after_cost = await storage.get_order(TENANT, "1001")
        await processor.import_files(TENANT, BATCH)
        after_reimport = await storage.get_order(TENANT, "1001")
        items = await storage.get_order_items(TENANT, "1001")
        missing = await storage.set_variant_cost(TENANT, "no-such-variant", Decimal("1"))
        other_tenant = await storage.set_variant_cost("tenant-b", variants[0].id, Decimal("1"))
        return variants, result, after_cost, after_reimport, items, missing, other_tenant

    variants, result, after_cost, after_reimport, items, missing, other_tenant = run_with_storage(scenario)

    assert [(v.product_name, v.sku, v.size) for v in variants] == [("Linen Shirt", "LS-01", "M")]
    assert variants[0].cost_per_unit is None
    assert result["orders_recalculated"] == 1
    assert after_cost.total_cogs == Decimal("12.00")
    assert after_cost.total_profit == Decimal("14.00")
    assert after_reimport.total_cogs == Decimal("12.00")
    assert items[0].cogs == Decimal("12.00")
    assert items[0].profit == Decimal("18.00")
    assert missing is None
    assert other_tenant is None


def test_tenants_are_isolated():
    async def scenario(storage):
        await _processor(storage).import_files(TENANT, BATCH)
        await _processor(storage).import_files("tenant-b", BATCH)
        return await storage.get_orders(TENANT), await storage.get_orders("tenant-b")

    orders_a, orders_b = run_with_storage(scenario)

    assert len(orders_a) == len(orders_b) == 1
    assert orders_a[0].id != orders_b[0].id


def test_label_upsert_is_idempotent_and_keeps_manual_links():
    async def scenario(storage):
        await _processor(storage).import_files(TENANT, BATCH)
        labels = ShippingLabelProcessor(storage_service=storage, flags=FeatureFlagsManager())

        first = await labels.import_labels(TENANT, [("labels.csv", LABELS_CSV)])
        suggestions = await storage.suggest_label_links(TENANT)

        stored = await storage.list_shipping_labels(TENANT)
        linked = await storage.link_labels_to_order(TENANT, [stored[0].id], "1001")
        second = await labels.import_labels(TENANT, [("labels.csv", LABELS_CSV)])
        linked_after = await storage.list_shipping_labels(TENANT, status="linked")
        unlinked_after = await storage.list_shipping_labels(TENANT, status="unlinked")

        with pytest.raises(LookupError):
            await storage.link_labels_to_order(TENANT, [stored[0].id], "9999")
        return first, suggestions, stored, linked, second, linked_after, unlinked_after

    first, suggestions, stored, linked, second, linked_after, unlinked_after = run_with_storage(scenario)

    assert (first["labels"], first["inserted"], first["updated"]) == (2, 2, 0)
    assert (second["labels"], second["inserted"], second["updated"]) == (2, 0, 2)
    assert len(stored) == 2
    assert linked == 1
    assert [s["order_id"] for s in suggestions] == ["1001"]
    assert suggestions[0]["label"].dedupe_key == "label:L-1"
    assert [label.id for label in linked_after] == [stored[0].id]
    assert len(unlinked_after) == 1


def test_order_column_preferences_roundtrip():
    async def scenario(storage):
        default = await load_order_columns(storage, TENANT)
        saved = await save_order_columns(storage, TENANT, reorder_columns(default, ["profit"]))
        await save_order_columns(storage, TENANT, saved)
        loaded = await load_order_columns(storage, TENANT)
        other = await load_order_columns(storage, "tenant-b")
        return default, loaded, other

    default, loaded, other = run_with_storage(scenario)

    assert loaded[0].id == "profit"
    assert other == default
