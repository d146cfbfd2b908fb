"""
Import Pipeline Schemas
=======================

Typed structures passed between the stages of the order import pipeline:

    ParsedFile -> FileRoles -> GroupedRows -> DerivedOrder / LineItemDraft
               -> ImportPlan -> ReconcileResult -> ImportSummary

Rows stay as plain mappings (header -> scalar) because every exporter names
its columns differently; typed access goes through services.column_resolver.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

RawRow = Mapping[str, Any]

DEDUP_MERGE = "merge"
DEDUP_PREFER_RICHER = "prefer_richer"
DEDUP_POLICIES = (DEDUP_MERGE, DEDUP_PREFER_RICHER)


def _money(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return f"{value.quantize(Decimal('0.01'))}"


@dataclass
class ParsedFile:
    """One uploaded file after tabular parsing."""
    filename: str
    fingerprint: str  # sha256 of the raw bytes
    headers: List[str]
    rows: List[Dict[str, Any]]
    error: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[str, str]:
        return (self.filename.lower(), self.fingerprint)


@dataclass(frozen=True)
class FileRoles:
    items: bool = False
    summary: bool = False
    payments: bool = False

    @property
    def recognized(self) -> bool:
        return self.items or self.summary or self.payments

    def labels(self) -> List[str]:
        return [name for name in ("items", "summary", "payments") if getattr(self, name)]


@dataclass
class ClassifiedFile:
    parsed: ParsedFile
    roles: FileRoles


@dataclass
class GroupedRows:
    """OrderKey -> rows per role, plus the sorted working set of keys."""
    summary: Dict[str, List[RawRow]] = field(default_factory=dict)
    items: Dict[str, List[RawRow]] = field(default_factory=dict)
    payments: Dict[str, List[RawRow]] = field(default_factory=dict)
    dropped_rows: int = 0

    @property
    def order_keys(self) -> List[str]:
        return sorted(set(self.summary) | set(self.items) | set(self.payments))

    def rows_for(self, key: str) -> Tuple[List[RawRow], List[RawRow], List[RawRow]]:
        return (
            self.summary.get(key, []),
            self.items.get(key, []),
            self.payments.get(key, []),
        )


@dataclass
class LineItemDraft:
    product_name: str
    sku: Optional[str]
    size: Optional[str]
    quantity: int
    price: Decimal
    fees: Decimal = Decimal("0")
    cogs: Decimal = Decimal("0")

    @property
    def dedupe_key(self) -> Tuple[str, str, str]:
        return (
            self.product_name.strip().lower(),
            (self.size or "").strip().lower(),
            (self.sku or "").strip().lower(),
        )

    @property
    def variant_key(self) -> Tuple[str, str, str]:
        return (self.product_name, self.sku or "", self.size or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_name": self.product_name,
            "sku": self.sku,
            "size": self.size,
            "quantity": self.quantity,
            "price": _money(self.price),
            "fees": _money(self.fees),
            "cogs": _money(self.cogs),
        }


@dataclass
class DerivedOrder:
    order_id: str
    order_date: Optional[date]
    store_name: str
    total_price: Decimal
    total_fees: Decimal
    total_cogs: Decimal = Decimal("0")
    source: str = "csv"
    has_item_rows: bool = False
    line_items: List[LineItemDraft] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_date": self.order_date.isoformat() if self.order_date else None,
            "store_name": self.store_name,
            "source": self.source,
            "total_price": _money(self.total_price),
            "total_fees": _money(self.total_fees),
            "total_cogs": _money(self.total_cogs),
            "line_items": [item.to_dict() for item in self.line_items],
        }


@dataclass
class ImportPlan:
    """Everything the pure stages derive from a batch, before persistence."""
    orders: List[DerivedOrder] = field(default_factory=list)
    item_duplicates: int = 0
    rows_dropped: int = 0
    ignored_files: List[str] = field(default_factory=list)
    duplicate_files: List[str] = field(default_factory=list)
    file_roles: Dict[str, List[str]] = field(default_factory=dict)
    dedup_policy: str = DEDUP_MERGE

    @property
    def unique_orders(self) -> int:
        return len(self.orders)


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    items_written: int = 0
    placeholders_written: int = 0
    variants_created: int = 0
    order_ids: Dict[str, str] = field(default_factory=dict)


@dataclass
class ImportSummary:
    batch_id: Optional[str]
    unique_orders: int
    orders_inserted: int
    orders_updated: int
    item_duplicates: int
    files_ignored: int
    ignored_files: List[str] = field(default_factory=list)
    duplicate_files: int = 0
    rows_dropped: int = 0
    line_items_written: int = 0
    variants_created: int = 0
    dedup_policy: str = DEDUP_MERGE
    file_roles: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "uniqueOrders": self.unique_orders,
            "ordersInserted": self.orders_inserted,
            "ordersUpdated": self.orders_updated,
            "itemDuplicates": self.item_duplicates,
            "filesIgnored": self.files_ignored,
            "ignoredFiles": list(self.ignored_files),
            "duplicateFiles": self.duplicate_files,
            "rowsDropped": self.rows_dropped,
            "lineItemsWritten": self.line_items_written,
            "variantsCreated": self.variants_created,
            "dedupPolicy": self.dedup_policy,
            "fileRoles": {name: list(roles) for name, roles in self.file_roles.items()},
        }


@dataclass
class CleanedShippingLabel:
    """Output of the simple ledger cleaner: label rows only."""
    date: str
    description: str
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "description": self.description, "total": _money(self.total)}


@dataclass
class LabelCleanResult:
    cleaned: List[CleanedShippingLabel] = field(default_factory=list)
    ignored_count: int = 0


@dataclass
class ShippingLabelInput:
    """Detailed label extracted from a carrier/ledger export, ready for upsert."""
    label_id: Optional[str] = None
    batch_id: Optional[str] = None
    carrier: Optional[str] = None
    service: Optional[str] = None
    ship_date: Optional[date] = None
    to_name: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal: Optional[str] = None
    country: Optional[str] = None
    tracking: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "USD"
    store_id: Optional[str] = None
    order_reference: Optional[str] = None
    dedupe_key: str = ""
