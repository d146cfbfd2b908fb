"""
Orders table column preferences.

An explicit per-tenant record (ordered list of columns with visibility and
width) loaded from and saved to the user_settings table.  All transformations
are pure and return new lists.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SETTINGS_KEY = "orders_table_columns_v1"
DEFAULT_WORKSPACE = "default"
FALLBACK_MIN_WIDTH = 60


@dataclass(frozen=True)
class ColumnConfig:
    id: str
    label: str
    visible: bool = True
    width: int = 120
    min_width: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_ORDER_COLUMNS: tuple[ColumnConfig, ...] = (
    ColumnConfig("order_id", "Order ID", True, 140, 120),
    ColumnConfig("date", "Date", True, 120, 110),
    ColumnConfig("product_name", "Product Name", True, 360, 200),
    ColumnConfig("sku", "SKU", True, 140, 100),
    ColumnConfig("size", "Size", True, 140, 110),
    ColumnConfig("quantity", "Qty", True, 80, 70),
    ColumnConfig("price", "Price", True, 120, 100),
    ColumnConfig("discounts", "Discounts", True, 120, 100),
    ColumnConfig("fees", "Fees", True, 120, 100),
    ColumnConfig("cogs", "COGS", True, 120, 100),
    ColumnConfig("profit", "Profit", True, 120, 100),
)

_DEFAULTS_BY_ID = {c.id: c for c in DEFAULT_ORDER_COLUMNS}


def default_columns() -> List[ColumnConfig]:
    return list(DEFAULT_ORDER_COLUMNS)


def _coerce_int(value: Any, fallback: int) -> int:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return fallback


def _merge(default: ColumnConfig, stored: Dict[str, Any]) -> ColumnConfig:
    min_width = _coerce_int(stored.get("min_width", stored.get("minWidth")), default.min_width)
    width = _coerce_int(stored.get("width"), default.width)
    visible = stored.get("visible", default.visible)
    return replace(
        default,
        visible=bool(visible),
        width=max(min_width, width),
        min_width=min_width,
    )


def normalize_columns(stored: Optional[Iterable[Any]]) -> List[ColumnConfig]:
    """
    Stored order is kept for known ids; unknown ids are dropped and any default
    column missing from the record is appended at the end.
    """
    result: List[ColumnConfig] = []
    seen = set()
    for entry in stored or []:
        if isinstance(entry, ColumnConfig):
            entry = entry.to_dict()
        if not isinstance(entry, dict):
            continue
        column_id = entry.get("id")
        default = _DEFAULTS_BY_ID.get(column_id)
        if default is None or column_id in seen:
            continue
        seen.add(column_id)
        result.append(_merge(default, entry))
    for default in DEFAULT_ORDER_COLUMNS:
        if default.id not in seen:
            result.append(default)
    return result


def visible_columns(columns: Sequence[ColumnConfig]) -> List[ColumnConfig]:
    return [c for c in columns if c.visible]


def toggle_visibility(columns: Sequence[ColumnConfig], column_id: str, visible: Optional[bool] = None) -> List[ColumnConfig]:
    return [
        replace(c, visible=(not c.visible if visible is None else visible)) if c.id == column_id else c
        for c in columns
    ]


def reorder_columns(columns: Sequence[ColumnConfig], ordered_ids: Sequence[str]) -> List[ColumnConfig]:
    by_id = {c.id: c for c in columns}
    result = []
    for column_id in ordered_ids:
        column = by_id.pop(column_id, None)
        if column is not None:
            result.append(column)
    # ids the caller left out keep their relative order at the end
    result.extend(c for c in columns if c.id in by_id)
    return result


def resize_column(columns: Sequence[ColumnConfig], column_id: str, width: float) -> List[ColumnConfig]:
    return [
        replace(c, width=max(c.min_width or FALLBACK_MIN_WIDTH, int(round(width)))) if c.id == column_id else c
        for c in columns
    ]


def serialize_columns(columns: Sequence[ColumnConfig]) -> Dict[str, Any]:
    return {"columns": [c.to_dict() for c in columns]}


def deserialize_columns(value: Any) -> List[ColumnConfig]:
    """Accepts the stored {"columns": [...]} payload (or a bare list)."""
    if isinstance(value, dict):
        value = value.get("columns")
    if not isinstance(value, list):
        return default_columns()
    return normalize_columns(value)


async def load_order_columns(storage, tenant_id: str, workspace_id: str = DEFAULT_WORKSPACE) -> List[ColumnConfig]:
    value = await storage.get_setting(tenant_id, workspace_id, SETTINGS_KEY)
    return deserialize_columns(value)


async def save_order_columns(
    storage,
    tenant_id: str,
    columns: Sequence[Any],
    workspace_id: str = DEFAULT_WORKSPACE,
) -> List[ColumnConfig]:
    normalized = normalize_columns(columns)
    await storage.put_setting(tenant_id, workspace_id, SETTINGS_KEY, serialize_columns(normalized))
    logger.info(f"Saved order column preferences tenant={tenant_id} workspace={workspace_id}")
    return normalized
