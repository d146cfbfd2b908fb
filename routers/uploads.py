"""
Order Import Router
Accepts marketplace exports and runs them through the reconciliation pipeline.
"""
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from typing import List, Tuple
import logging
import uuid

import settings
from database import Order
from routers.dependencies import get_storage, require_tenant_id
from services.csv_processor import NoOrdersDetectedError, OrderImportProcessor
from services.storage import StorageService
from utils import sanitize_string

logger = logging.getLogger(__name__)
router = APIRouter()


async def read_validated_uploads(files: List[UploadFile], request_id: str) -> List[Tuple[str, bytes]]:
    """Reject bad uploads before any parsing: count, extension, empty and oversized files."""
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > settings.MAX_FILES_PER_IMPORT:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum is {settings.MAX_FILES_PER_IMPORT} per import",
        )

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    uploads: List[Tuple[str, bytes]] = []
    for file in files:
        filename = sanitize_string(file.filename, max_length=255)
        if not filename or not filename.lower().endswith(settings.ALLOWED_UPLOAD_EXTENSIONS):
            logger.warning(f"[{request_id}] Reject unsupported filename={file.filename!r}")
            raise HTTPException(status_code=400, detail="Only CSV or XLSX files are allowed")

        content = await file.read()
        size = len(content or b"")
        logger.info(f"[{request_id}] Received {filename!r} size={size} bytes")
        if size == 0:
            raise HTTPException(status_code=400, detail=f"Empty file: {filename}")
        if size > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: {filename}. Maximum size is {settings.MAX_UPLOAD_SIZE_MB}MB",
            )
        uploads.append((filename, content))
    return uploads


@router.post("/orders/import")
async def import_orders(
    files: List[UploadFile] = File(...),
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    request_id = str(uuid.uuid4())
    try:
        logger.info(f"[{request_id}] Order import tenant={tenant_id} files={[f.filename for f in files]}")
        uploads = await read_validated_uploads(files, request_id)

        processor = OrderImportProcessor(storage_service=storage)
        summary = await processor.import_files(tenant_id, uploads)

        logger.info(f"[{request_id}] Import summary {summary.to_dict()}")
        return {**summary.to_dict(), "requestId": request_id}

    except NoOrdersDetectedError as e:
        logger.warning(f"[{request_id}] {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException as he:
        logger.error(f"[{request_id}] HTTP {he.status_code} during import: {he.detail}")
        raise
    except Exception as e:
        logger.exception(f"[{request_id}] Import error")
        raise HTTPException(status_code=500, detail=f"Import failed: {str(e)}")


@router.get("/uploads")
async def get_uploads(
    limit: int = 10,
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    """Get list of recent import batches"""
    try:
        batches = await storage.get_recent_import_batches(tenant_id, limit=max(1, min(limit, 100)))
        return [
            {
                "id": batch.id,
                "kind": batch.kind,
                "filenames": batch.filenames or [],
                "status": batch.status,
                "errorMessage": batch.error_message,
                "summary": batch.summary,
                "createdAt": batch.created_at.isoformat() if batch.created_at is not None else None,
            }
            for batch in batches
        ]
    except Exception as e:
        logger.error(f"Get uploads error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get uploads")


def _order_dict(order: Order):
    return {
        "orderId": order.order_id,
        "orderDate": order.order_date.isoformat() if order.order_date else None,
        "storeName": order.store_name,
        "source": order.source,
        "totalPrice": str(order.total_price),
        "totalFees": str(order.total_fees),
        "totalCogs": str(order.total_cogs),
        "totalProfit": str(order.total_profit),
    }


@router.get("/orders")
async def list_orders(
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    orders = await storage.get_orders(tenant_id)
    return [_order_dict(order) for order in orders]


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    """Reconciled order header with its line items"""
    order = await storage.get_order(tenant_id, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    items = await storage.get_order_items(tenant_id, order_id)
    return {
        **_order_dict(order),
        "items": [
            {
                "id": item.id,
                "productName": item.product_name,
                "sku": item.sku,
                "size": item.size,
                "quantity": item.quantity,
                "price": str(item.price),
                "fees": str(item.fees),
                "cogs": str(item.cogs),
                "profit": str(item.profit),
                "variantId": item.variant_id,
            }
            for item in items
        ],
    }
