"""
Cost of Goods Router
Cost variants backfilled by order imports, and their unit costs.
"""
from decimal import Decimal, InvalidOperation
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional, Union
import logging

from routers.dependencies import get_storage, require_tenant_id
from services.storage import StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


class VariantCostRequest(BaseModel):
    costPerUnit: Optional[Union[str, float]] = None


@router.get("/cogs/variants")
async def list_cost_variants(
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    variants = await storage.list_cost_variants(tenant_id)
    return [
        {
            "id": v.id,
            "productName": v.product_name,
            "sku": v.sku,
            "size": v.size,
            "costPerUnit": str(v.cost_per_unit) if v.cost_per_unit is not None else None,
        }
        for v in variants
    ]


@router.put("/cogs/variants/{variant_id}")
async def set_variant_cost(
    variant_id: str,
    request: VariantCostRequest,
    tenant_id: str = Depends(require_tenant_id),
    storage: StorageService = Depends(get_storage),
):
    """Set (or clear with null) a unit cost; linked items and their orders are re-priced."""
    cost = None
    if request.costPerUnit is not None:
        try:
            cost = Decimal(str(request.costPerUnit))
        except InvalidOperation:
            raise HTTPException(status_code=400, detail="costPerUnit must be a number")
        if not cost.is_finite() or cost < 0:
            raise HTTPException(status_code=400, detail="costPerUnit must be a non-negative number")

    result = await storage.set_variant_cost(tenant_id, variant_id, cost)
    if result is None:
        raise HTTPException(status_code=404, detail="Cost variant not found")
    return {
        "id": result["variant_id"],
        "costPerUnit": str(result["cost_per_unit"]) if result["cost_per_unit"] is not None else None,
        "ordersRecalculated": result["orders_recalculated"],
    }
