"""
Centralized configuration helpers for tenant scoping and import policy defaults.
"""
from __future__ import annotations

import os
from typing import Optional, Any

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_STORE_NAME: str = os.getenv("DEFAULT_STORE_NAME") or "CSV Import"

MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))
MAX_FILES_PER_IMPORT: int = int(os.getenv("MAX_FILES_PER_IMPORT", "10"))
ALLOWED_UPLOAD_EXTENSIONS: tuple[str, ...] = (".csv", ".xlsx", ".xlsm")

# Line-item dedup policy: "merge" sums colliding rows, "prefer_richer" keeps the larger one.
IMPORT_DEDUP_POLICY: str = (os.getenv("IMPORT_DEDUP_POLICY") or "merge").strip().lower()
IMPORT_SUMMARY_ONLY_PLACEHOLDER: bool = _env_flag("IMPORT_SUMMARY_ONLY_PLACEHOLDER")
IMPORT_STRICT_FEE_COLUMNS: bool = _env_flag("IMPORT_STRICT_FEE_COLUMNS")
IMPORT_SKIP_DUPLICATE_FILES: bool = _env_flag("IMPORT_SKIP_DUPLICATE_FILES", True)


def sanitize_tenant_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw tenant ids (strip whitespace, lower-case)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip()
    if not text:
        return None
    return text.lower()


def resolve_tenant_id(*candidates: Optional[Any]) -> Optional[str]:
    """
    Pick the first usable tenant identifier from candidates.
    Unlike shop scoping there is no default tenant: callers must refuse the request on None.
    """
    for candidate in candidates:
        normalized = sanitize_tenant_id(candidate)
        if normalized:
            return normalized
    return None


LOG_LEVEL: str = (os.getenv("LOG_LEVEL") or "INFO").upper()
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in (os.getenv("CORS_ORIGINS") or "http://localhost:3000,http://localhost:5000").split(",")
    if origin.strip()
] or ["http://localhost:3000"]

# Tables come from Alembic migrations; create_all on boot is for local sqlite only.
INIT_DB_ON_STARTUP: bool = _env_flag("INIT_DB_ON_STARTUP")
INIT_DB_TIMEOUT_SECONDS: int = int(os.getenv("INIT_DB_TIMEOUT_SECONDS", "120"))
