"""
Import Schemas Package
Typed structures shared by the order import and shipping label pipelines.
"""

from .import_schemas import (
    # Dedup policies
    DEDUP_MERGE,
    DEDUP_PREFER_RICHER,
    DEDUP_POLICIES,

    # Order pipeline
    RawRow,
    ParsedFile,
    FileRoles,
    ClassifiedFile,
    GroupedRows,
    LineItemDraft,
    DerivedOrder,
    ImportPlan,
    ReconcileResult,
    ImportSummary,

    # Shipping labels
    CleanedShippingLabel,
    LabelCleanResult,
    ShippingLabelInput,
)
