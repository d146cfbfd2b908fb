"""
CSV Processor Service
Runs uploaded marketplace exports through the import pipelines:

    read (parallel) -> classify -> group -> derive -> dedup -> reconcile

and the independent shipping label pipeline.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import settings
from schemas import ImportPlan, ImportSummary, LabelCleanResult, ParsedFile
from services.feature_flags import FeatureFlagsManager, ImportPolicy, feature_flags
from services.file_classifier import classify_files
from services.financials import derive_order
from services.line_items import build_line_items
from services.order_grouper import group_rows
from services.shipping_labels import clean_label_rows, parse_detailed_labels
from services.storage import StorageService, storage
from services.tabular_reader import read_upload, read_uploads

logger = logging.getLogger(__name__)

Upload = Tuple[str, bytes]


class NoOrdersDetectedError(Exception):
    """No row in the batch carried a usable order identifier."""

    def __init__(self, message: str = "No orders detected", plan: Optional[ImportPlan] = None):
        super().__init__(message)
        self.plan = plan


def skip_duplicate_files(files: Sequence[ParsedFile]) -> Tuple[List[ParsedFile], List[str]]:
    """Drop byte-identical repeats of a file within one batch (first in canonical order wins)."""
    kept: List[ParsedFile] = []
    duplicates: List[str] = []
    seen = set()
    for parsed in sorted(files, key=lambda f: f.sort_key):
        if parsed.fingerprint in seen:
            duplicates.append(parsed.filename)
            continue
        seen.add(parsed.fingerprint)
        kept.append(parsed)
    return kept, duplicates


class OrderImportProcessor:
    """Order import pipeline: parsed files in, reconciled orders out."""

    def __init__(
        self,
        storage_service: Optional[StorageService] = None,
        flags: Optional[FeatureFlagsManager] = None,
        default_store_name: str = settings.DEFAULT_STORE_NAME,
    ):
        self.storage = storage_service or storage
        self.flags = flags or feature_flags
        self.default_store_name = default_store_name

    async def read_files(self, uploads: Sequence[Upload]) -> List[ParsedFile]:
        return await read_uploads(uploads)

    def plan(self, files: Sequence[ParsedFile], policy: ImportPolicy) -> ImportPlan:
        """Pure part of the pipeline. Same files in any order give the same plan."""
        plan = ImportPlan(dedup_policy=policy.dedup_policy)

        if policy.skip_duplicate_files:
            files, plan.duplicate_files = skip_duplicate_files(files)
            if plan.duplicate_files:
                logger.info(f"Skipping duplicate files: {plan.duplicate_files}")

        classified, plan.ignored_files = classify_files(files, strict_fee_columns=policy.strict_fee_columns)
        plan.file_roles = {cf.parsed.filename: cf.roles.labels() for cf in classified}

        grouped = group_rows(classified)
        plan.rows_dropped = grouped.dropped_rows

        for key in grouped.order_keys:
            order = derive_order(
                key,
                grouped,
                default_store=self.default_store_name,
                strict_fee_columns=policy.strict_fee_columns,
            )
            item_rows = grouped.items.get(key, [])
            if item_rows:
                build = build_line_items(item_rows, policy.dedup_policy, policy.strict_fee_columns)
                order.line_items = build.items
                plan.item_duplicates += build.duplicates
            plan.orders.append(order)

        logger.info(
            f"Planned {plan.unique_orders} orders policy={plan.dedup_policy} "
            f"item_duplicates={plan.item_duplicates} rows_dropped={plan.rows_dropped} "
            f"files_ignored={len(plan.ignored_files)} duplicate_files={len(plan.duplicate_files)}"
        )
        return plan

    async def import_files(self, tenant_id: str, uploads: Sequence[Upload]) -> ImportSummary:
        """
        Full import for one tenant.  Raises NoOrdersDetectedError before touching
        the database when no order identifiers are found; persistence errors
        propagate after the batch record is marked failed.
        """
        start = time.time()
        policy = self.flags.import_policy(tenant_id)

        parsed = await self.read_files(uploads)
        plan = self.plan(parsed, policy)
        if not plan.orders:
            logger.warning(f"No orders detected tenant={tenant_id} files={[name for name, _ in uploads]}")
            raise NoOrdersDetectedError(plan=plan)

        batch = await self.storage.create_import_batch(tenant_id, "orders", [name for name, _ in uploads])
        try:
            result = await self.storage.apply_order_import(
                tenant_id,
                plan.orders,
                batch_id=batch.id,
                summary_only_placeholder=policy.summary_only_placeholder,
            )
        except Exception as e:
            logger.error(f"Order import failed batch={batch.id} tenant={tenant_id}: {e}")
            await self.storage.update_import_batch(batch.id, "failed", error_message=str(e))
            raise

        summary = ImportSummary(
            batch_id=batch.id,
            unique_orders=plan.unique_orders,
            orders_inserted=result.inserted,
            orders_updated=result.updated,
            item_duplicates=plan.item_duplicates,
            files_ignored=len(plan.ignored_files),
            ignored_files=plan.ignored_files,
            duplicate_files=len(plan.duplicate_files),
            rows_dropped=plan.rows_dropped,
            line_items_written=result.items_written,
            variants_created=result.variants_created,
            dedup_policy=plan.dedup_policy,
            file_roles=plan.file_roles,
        )
        await self.storage.update_import_batch(batch.id, "completed", summary=summary.to_dict())
        logger.info(
            f"Order import completed batch={batch.id} tenant={tenant_id} "
            f"durMs={int((time.time() - start) * 1000)}"
        )
        return summary


class ShippingLabelProcessor:
    """Shipping ledger pipeline; independent of order reconciliation."""

    def __init__(
        self,
        storage_service: Optional[StorageService] = None,
        flags: Optional[FeatureFlagsManager] = None,
    ):
        self.storage = storage_service or storage
        self.flags = flags or feature_flags

    def clean(self, filename: str, content: bytes) -> LabelCleanResult:
        parsed = read_upload(filename, content)
        if parsed.error:
            raise ValueError(f"Could not read {filename}: {parsed.error}")
        return clean_label_rows(parsed.rows)

    async def import_labels(self, tenant_id: str, uploads: Sequence[Upload]) -> Dict[str, Any]:
        policy = self.flags.import_policy(tenant_id)
        parsed_files = await read_uploads(uploads)

        labels = []
        ignored = 0
        for parsed in sorted(parsed_files, key=lambda f: f.sort_key):
            if parsed.error:
                ignored += 1
                continue
            file_labels, file_ignored = parse_detailed_labels(
                parsed.rows, extract_reference=policy.extract_order_reference
            )
            labels.extend(file_labels)
            ignored += file_ignored

        # Same natural key across files: last one wins, one row per key in the upsert
        unique = list({label.dedupe_key: label for label in labels}.values())

        batch = await self.storage.create_import_batch(tenant_id, "shipping_labels", [name for name, _ in uploads])
        try:
            counts = await self.storage.upsert_shipping_labels(tenant_id, unique, batch_id=batch.id)
        except Exception as e:
            logger.error(f"Label import failed batch={batch.id} tenant={tenant_id}: {e}")
            await self.storage.update_import_batch(batch.id, "failed", error_message=str(e))
            raise

        summary = {
            "labels": len(unique),
            "inserted": counts["inserted"],
            "updated": counts["updated"],
            "ignored_rows": ignored,
        }
        await self.storage.update_import_batch(batch.id, "completed", summary=summary)
        return {"batch_id": batch.id, **summary}
