"""
Preferences Router
Orders table column layout per tenant and workspace.
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import List, Optional
import logging

from routers.dependencies import get_storage, require_tenant_id
from services.column_preferences import (
    DEFAULT_WORKSPACE,
    load_order_columns,
    save_order_columns,
    serialize_columns,
)
from services.storage import StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


class ColumnPayload(BaseModel):
    id: str
    label: Optional[str] = None
    visible: bool = True
    width: Optional[float] = None
    minWidth: Optional[float] = None


class OrderColumnsRequest(BaseModel):
    columns: List[ColumnPayload] = Field(default_factory=list)


@router.get("/preferences/order-columns")
async def get_order_columns(
    workspace: str = DEFAULT_WORKSPACE,
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    try:
        columns = await load_order_columns(storage, tenant_id, workspace)
        return serialize_columns(columns)
    except Exception as e:
        logger.error(f"Get column preferences error: {e}")
        raise HTTPException(status_code=500, detail="Failed to load column preferences")


@router.put("/preferences/order-columns")
async def put_order_columns(
    request: OrderColumnsRequest,
    workspace: str = DEFAULT_WORKSPACE,
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    """Save a layout; unknown ids are dropped and missing defaults appended."""
    try:
        stored = [c.model_dump(exclude_none=True) for c in request.columns]
        columns = await save_order_columns(storage, tenant_id, stored, workspace)
        return serialize_columns(columns)
    except Exception as e:
        logger.error(f"Save column preferences error: {e}")
        raise HTTPException(status_code=500, detail="Failed to save column preferences")
