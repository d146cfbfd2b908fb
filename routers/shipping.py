"""
Shipping Labels Router
Label ledger cleaning, detailed label import and manual order linking.
"""
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from pydantic import BaseModel
from typing import List, Optional
import logging
import uuid

from database import ShippingLabel
from routers.dependencies import get_storage, require_tenant_id
from routers.uploads import read_validated_uploads
from services.csv_processor import ShippingLabelProcessor
from services.storage import LABEL_FILTERS, StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


class LinkLabelsRequest(BaseModel):
    labelIds: List[str]
    orderId: Optional[str] = None


def _label_dict(label: ShippingLabel):
    return {
        "id": label.id,
        "dedupeKey": label.dedupe_key,
        "labelId": label.label_id,
        "carrier": label.carrier,
        "service": label.service,
        "shipDate": label.ship_date.isoformat() if label.ship_date else None,
        "toName": label.to_name,
        "tracking": label.tracking,
        "reference": label.reference,
        "amount": str(label.amount) if label.amount is not None else None,
        "currency": label.currency,
        "orderReference": label.order_reference,
        "linked": label.order_pk is not None,
    }


@router.post("/shipping/clean")
async def clean_shipping_ledger(
    file: UploadFile = File(...),
    tenant_id: str = Depends(require_tenant_id),
):
    """Keep only label rows of a ledger export as (date, description, total)."""
    request_id = str(uuid.uuid4())
    try:
        [(filename, content)] = await read_validated_uploads([file], request_id)
        result = ShippingLabelProcessor().clean(filename, content)
        logger.info(
            f"[{request_id}] Cleaned ledger {filename!r} tenant={tenant_id} "
            f"labels={len(result.cleaned)} ignored={result.ignored_count}"
        )
        return {
            "cleaned": [label.to_dict() for label in result.cleaned],
            "ignoredCount": result.ignored_count,
        }
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"[{request_id}] Ledger clean error")
        raise HTTPException(status_code=500, detail=f"Clean failed: {str(e)}")


@router.post("/shipping/import")
async def import_shipping_labels(
    files: List[UploadFile] = File(...),
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    request_id = str(uuid.uuid4())
    try:
        uploads = await read_validated_uploads(files, request_id)
        result = await ShippingLabelProcessor(storage_service=storage).import_labels(tenant_id, uploads)
        logger.info(f"[{request_id}] Label import tenant={tenant_id} result={result}")
        return {
            "batchId": result["batch_id"],
            "labels": result["labels"],
            "inserted": result["inserted"],
            "updated": result["updated"],
            "ignoredRows": result["ignored_rows"],
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"[{request_id}] Label import error")
        raise HTTPException(status_code=500, detail=f"Import failed: {str(e)}")


@router.get("/shipping/labels")
async def list_shipping_labels(
    status: str = "all",
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    if status not in LABEL_FILTERS:
        raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(LABEL_FILTERS)}")
    labels = await storage.list_shipping_labels(tenant_id, status=status)
    return [_label_dict(label) for label in labels]


@router.post("/shipping/labels/link")
async def link_shipping_labels(
    request: LinkLabelsRequest,
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    """Attach labels to an order by its marketplace id; orderId null detaches them."""
    if not request.labelIds:
        raise HTTPException(status_code=400, detail="labelIds is required")
    try:
        updated = await storage.link_labels_to_order(tenant_id, request.labelIds, request.orderId)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"updated": updated, "orderId": request.orderId}


@router.get("/shipping/labels/suggestions")
async def suggest_label_links(
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    """Unlinked labels whose text names a known order. Never applied automatically."""
    suggestions = await storage.suggest_label_links(tenant_id)
    return [
        {"label": _label_dict(item["label"]), "orderId": item["order_id"]}
        for item in suggestions
    ]
