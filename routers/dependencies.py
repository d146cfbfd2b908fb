"""
Shared FastAPI dependencies: tenant identity and the storage service.
"""
from typing import Optional

from fastapi import Header, HTTPException

from services.storage import StorageService, storage
from settings import resolve_tenant_id


async def require_tenant_id(x_tenant_id: Optional[str] = Header(None)) -> str:
    """
    Authenticated tenant forwarded by the auth gateway.
    Requests without one are refused before any upload is read.
    """
    tenant_id = resolve_tenant_id(x_tenant_id)
    if not tenant_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return tenant_id


def get_storage() -> StorageService:
    return storage
