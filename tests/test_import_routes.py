import json
import logging
import os
import sys
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "")
os.environ["ADMIN_API_KEY"] = "test-admin-key"

pytest.importorskip("httpx", reason="TestClient requires httpx")

from fastapi.testclient import TestClient

from main import JsonFormatter, app, request_id_var, tenant_id_var
from routers.dependencies import get_storage
from schemas import ReconcileResult
from services.feature_flags import feature_flags

ITEMS_CSV = (
    b"Order ID,Item Name,SKU,Size,Quantity,Item Total\n"
    b"1001,Linen Shirt,LS-01,M,1,10.00\n"
    b"1001,Linen Shirt,LS-01,M,2,20.00\n"
)
SUMMARY_CSV = b"Order ID,Net Amount,Fees\n1001,28.00,2.00\n"
HEADERS = {"X-Tenant-Id": "Tenant-A"}


class FakeStorage:
    """Records what the import pipeline would persist."""

    def __init__(self):
        self.batches = {}
        self.applied = []
        self.settings = {}

    async def create_import_batch(self, tenant_id, kind, filenames):
        batch = SimpleNamespace(id=f"batch-{len(self.batches) + 1}", tenant_id=tenant_id, kind=kind)
        self.batches[batch.id] = {"status": "processing", "filenames": filenames}
        return batch

    async def update_import_batch(self, batch_id, status, error_message=None, summary=None):
        self.batches[batch_id].update(status=status, error_message=error_message, summary=summary)

    async def apply_order_import(self, tenant_id, orders, batch_id=None, summary_only_placeholder=False):
        self.applied.append((tenant_id, orders))
        return ReconcileResult(inserted=len(orders), items_written=sum(len(o.line_items) for o in orders))

    async def get_orders(self, tenant_id):
        return [
            SimpleNamespace(
                order_id="1001",
                order_date=None,
                store_name="CSV Import",
                source="csv",
                total_price=Decimal("28.00"),
                total_fees=Decimal("2.00"),
                total_cogs=Decimal("0"),
                total_profit=Decimal("26.00"),
            )
        ]

    async def get_setting(self, tenant_id, workspace_id, key):
        return self.settings.get((tenant_id, workspace_id, key))

    async def put_setting(self, tenant_id, workspace_id, key, value):
        self.settings[(tenant_id, workspace_id, key)] = value


@pytest.fixture
def fake_storage():
    storage = FakeStorage()
    app.dependency_overrides[get_storage] = lambda: storage
    yield storage
    app.dependency_overrides.clear()


@pytest.fixture
def client(fake_storage):
    return TestClient(app)


def _files(*uploads):
    return [("files", (name, content, "text/csv")) for name, content in uploads]


def test_import_requires_tenant(client, fake_storage):
    response = client.post("/api/orders/import", files=_files(("items.csv", ITEMS_CSV)))
    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required"}
    assert fake_storage.batches == {}


def test_import_success_returns_summary(client, fake_storage):
    response = client.post(
        "/api/orders/import",
        files=_files(("items.csv", ITEMS_CSV), ("summary.csv", SUMMARY_CSV)),
        headers=HEADERS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["uniqueOrders"] == 1
    assert body["ordersInserted"] == 1
    assert body["itemDuplicates"] == 1
    assert body["batchId"] == "batch-1"
    assert body["fileRoles"]["items.csv"] == ["items"]
    assert "summary" in body["fileRoles"]["summary.csv"]

    tenant_id, orders = fake_storage.applied[0]
    assert tenant_id == "tenant-a"
    assert orders[0].total_price == Decimal("28.00")
    assert orders[0].line_items[0].quantity == 3
    assert fake_storage.batches["batch-1"]["status"] == "completed"


def test_import_without_order_ids_is_rejected_before_persistence(client, fake_storage):
    response = client.post(
        "/api/orders/import",
        files=_files(("notes.csv", b"Foo,Bar\n1,2\n")),
        headers=HEADERS,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "No orders detected"}
    assert fake_storage.batches == {}


def test_persistence_error_surfaces_message_and_fails_batch(client, fake_storage):
    async def broken(*args, **kwargs):
        raise RuntimeError("duplicate key value violates unique constraint")

    fake_storage.apply_order_import = broken
    response = client.post("/api/orders/import", files=_files(("items.csv", ITEMS_CSV)), headers=HEADERS)
    assert response.status_code == 500
    assert response.json()["error"] == "Import failed: duplicate key value violates unique constraint"
    assert fake_storage.batches["batch-1"]["status"] == "failed"


def test_upload_validation(client):
    response = client.post("/api/orders/import", files=_files(("orders.pdf", b"%PDF")), headers=HEADERS)
    assert response.status_code == 400

    response = client.post("/api/orders/import", files=_files(("empty.csv", b"")), headers=HEADERS)
    assert response.status_code == 400


def test_shipping_clean_endpoint(client):
    ledger = (
        b"Type,Date,Description,Total\n"
        b"Payment,2024-03-01,Deposit,100.00\n"
        b"Label,2024-03-02,USPS Ground Advantage,12.34\n"
    )
    response = client.post(
        "/api/shipping/clean",
        files={"file": ("ledger.csv", ledger, "text/csv")},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json() == {
        "cleaned": [{"date": "2024-03-02", "description": "USPS Ground Advantage", "total": "12.34"}],
        "ignoredCount": 1,
    }


def test_order_column_preferences_endpoints(client, fake_storage):
    response = client.get("/api/preferences/order-columns", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["columns"][0]["id"] == "order_id"

    response = client.put(
        "/api/preferences/order-columns",
        json={"columns": [{"id": "profit", "visible": False, "width": 150}, {"id": "bogus"}]},
        headers=HEADERS,
    )
    assert response.status_code == 200
    columns = response.json()["columns"]
    assert columns[0] == {"id": "profit", "label": "Profit", "visible": False, "width": 150, "min_width": 100}
    assert "bogus" not in [c["id"] for c in columns]

    response = client.get("/api/preferences/order-columns", headers=HEADERS)
    assert response.json()["columns"][0]["id"] == "profit"


def test_admin_flags_require_key_and_validate(client):
    response = client.put("/api/admin/flags/import.dedup_policy", json={"value": "prefer_richer"})
    assert response.status_code in (401, 403)

    auth = {"Authorization": "Bearer test-admin-key"}
    try:
        response = client.put(
            "/api/admin/flags/import.dedup_policy",
            json={"value": "prefer_richer", "tenant_id": "Tenant-Z"},
            headers=auth,
        )
        assert response.status_code == 200
        assert feature_flags.import_policy("tenant-z").dedup_policy == "prefer_richer"

        response = client.put(
            "/api/admin/flags/import.dedup_policy",
            json={"value": "sum_everything"},
            headers=auth,
        )
        assert response.status_code == 400

        response = client.get("/api/admin/flags", params={"tenant_id": "tenant-z"}, headers=auth)
        assert response.json()["importPolicy"]["dedup_policy"] == "prefer_richer"
    finally:
        feature_flags.clear_overrides("tenant-z")


def test_list_orders_serializes_money_as_strings(client):
    response = client.get("/api/orders", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == [
        {
            "orderId": "1001",
            "orderDate": None,
            "storeName": "CSV Import",
            "source": "csv",
            "totalPrice": "28.00",
            "totalFees": "2.00",
            "totalCogs": "0",
            "totalProfit": "26.00",
        }
    ]


def test_request_id_is_echoed_and_generated(client):
    response = client.get("/healthz", headers={"X-Request-Id": "req-123"})
    assert response.headers["X-Request-Id"] == "req-123"

    response = client.get("/healthz")
    assert response.headers["X-Request-Id"]


def test_many_requests_from_one_client_are_not_throttled(client):
    for _ in range(30):
        assert client.get("/api/orders", headers=HEADERS).status_code == 200


def test_json_log_lines_carry_request_context():
    record = logging.LogRecord("uploads", logging.INFO, __file__, 1, "Import summary %s", ("ok",), None)
    rid_token = request_id_var.set("req-9")
    tenant_token = tenant_id_var.set("tenant-a")
    try:
        line = json.loads(JsonFormatter().format(record))
    finally:
        tenant_id_var.reset(tenant_token)
        request_id_var.reset(rid_token)

    assert line["message"] == "Import summary ok"
    assert line["requestId"] == "req-9"
    assert line["tenant"] == "tenant-a"

    assert "requestId" not in json.loads(JsonFormatter().format(record))
