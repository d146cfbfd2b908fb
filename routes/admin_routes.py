"""
Admin API Routes for import feature flags
"""
from fastapi import APIRouter, HTTPException, Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import Dict, Any, Optional, Union
import logging
import os
from dataclasses import asdict

from services.feature_flags import feature_flags
from settings import sanitize_tenant_id

logger = logging.getLogger(__name__)

# Security for admin endpoints
security = HTTPBearer()

FlagValue = Union[bool, str]


class AdminAuth:
    """Simple admin authentication"""

    @staticmethod
    def verify_admin_key(credentials: HTTPAuthorizationCredentials = Security(security)):
        """Verify admin API key"""
        expected_key = os.getenv("ADMIN_API_KEY", "admin-dev-key-change-in-production")

        if not credentials or credentials.credentials != expected_key:
            raise HTTPException(
                status_code=401,
                detail="Invalid admin API key",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return credentials.credentials


# Request/Response models
class FlagUpdateRequest(BaseModel):
    value: FlagValue
    tenant_id: Optional[str] = None
    updated_by: str = "api"


class BulkFlagUpdateRequest(BaseModel):
    flags: Dict[str, FlagValue]
    tenant_id: Optional[str] = None
    updated_by: str = "api"


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(AdminAuth.verify_admin_key)])


@router.get("/flags")
async def get_all_feature_flags(tenant_id: Optional[str] = None) -> Dict[str, Any]:
    """Get all feature flags, optionally resolved for one tenant"""
    tenant_id = sanitize_tenant_id(tenant_id)
    return {
        "flags": feature_flags.get_all_flags(tenant_id),
        "importPolicy": asdict(feature_flags.import_policy(tenant_id)),
        "tenant_id": tenant_id,
    }


@router.get("/flags/{flag_key}")
async def get_feature_flag(flag_key: str, tenant_id: Optional[str] = None) -> Dict[str, Any]:
    """Get a specific feature flag value"""
    if flag_key not in feature_flags.default_flags:
        raise HTTPException(status_code=404, detail=f"Unknown flag: {flag_key}")
    tenant_id = sanitize_tenant_id(tenant_id)
    return {
        "flag_key": flag_key,
        "value": feature_flags.get_flag(flag_key, tenant_id),
        "tenant_id": tenant_id,
    }


@router.put("/flags/{flag_key}")
async def set_feature_flag(flag_key: str, request: FlagUpdateRequest) -> Dict[str, Any]:
    """Set a feature flag value; takes effect from the next import batch"""
    tenant_id = sanitize_tenant_id(request.tenant_id)
    success = feature_flags.set_flag(flag_key, request.value, tenant_id, request.updated_by)
    if not success:
        raise HTTPException(status_code=400, detail="Failed to set flag")

    return {
        "success": True,
        "flag_key": flag_key,
        "value": request.value,
        "tenant_id": tenant_id,
        "updated_by": request.updated_by,
    }


@router.post("/flags/bulk")
async def set_multiple_flags(request: BulkFlagUpdateRequest) -> Dict[str, Any]:
    """Set multiple feature flags at once"""
    tenant_id = sanitize_tenant_id(request.tenant_id)
    results = {}
    errors = []

    for flag_key, value in request.flags.items():
        success = feature_flags.set_flag(flag_key, value, tenant_id, request.updated_by)
        results[flag_key] = {"success": success, "value": value}
        if not success:
            errors.append(f"{flag_key}: rejected")

    return {
        "results": results,
        "errors": errors,
        "tenant_id": tenant_id,
    }


@router.get("/flags-history")
async def get_flag_history(limit: int = 20) -> Dict[str, Any]:
    """Most recent flag changes, newest last"""
    return {"changes": feature_flags.change_history[-max(1, min(limit, 100)):]}
