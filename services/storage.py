"""
Storage Service Layer
Every database statement the import pipelines issue lives here.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, desc, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from typing import List, Optional, Dict, Any, Iterable, Sequence, Set, Tuple
import logging
import time
import uuid
from decimal import Decimal

from database import (
    AsyncSessionLocal, ImportBatch, Order, OrderItem, CostCategory,
    ExpenseItem, CostVariant, ShippingLabel, UserSetting
)
from schemas import DerivedOrder, LineItemDraft, ReconcileResult, ShippingLabelInput
from services.line_items import placeholder_line_item
from utils import chunked, retry_async

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_NAME = "Uncategorized"
LABEL_FILTERS = ("all", "linked", "unlinked")


def _new_id() -> str:
    return str(uuid.uuid4())


def _item_id(order_pk: str, item: LineItemDraft) -> str:
    """Stable id per (order, dedupe key) so re-importing a file rewrites the same rows."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, "|".join((order_pk,) + item.dedupe_key)))


class StorageService:
    """Storage service providing database operations"""

    # Rows per multi-VALUES statement; keeps bind parameters under driver limits
    CHUNK_SIZE = 500

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        factory = self._session_factory or AsyncSessionLocal
        return factory()

    # ---------- helpers ----------

    def _insert_fn(self, session: AsyncSession):
        """Dialect-specific INSERT so ON CONFLICT works on Postgres and the SQLite fallback."""
        if session.get_bind().dialect.name == "sqlite":
            return sqlite_insert
        return pg_insert

    def _overwrite_columns(self, table, stmt, keep: Iterable[str]):
        """SET clause for UPSERT: every column except the kept ones, plus a fresh updated_at."""
        skip = set(keep) | {c.name for c in table.primary_key.columns}
        set_ = {
            c.name: stmt.excluded[c.name]
            for c in table.columns
            if c.name not in skip and c.name != "updated_at"
        }
        if "updated_at" in table.columns:
            set_["updated_at"] = func.now()
        return set_

    async def _order_id_map(self, session: AsyncSession, tenant_id: str, order_ids: Sequence[str]) -> Dict[str, str]:
        """order_id -> internal id for the tenant"""
        mapping: Dict[str, str] = {}
        for chunk in chunked(list(order_ids), self.CHUNK_SIZE):
            result = await session.execute(
                select(Order.order_id, Order.id).where(
                    Order.tenant_id == tenant_id,
                    Order.order_id.in_(chunk),
                )
            )
            mapping.update({row.order_id: row.id for row in result})
        return mapping

    # ---------- import batches ----------

    async def create_import_batch(self, tenant_id: str, kind: str, filenames: List[str]) -> ImportBatch:
        async with self.get_session() as session:
            batch = ImportBatch(
                id=_new_id(),
                tenant_id=tenant_id,
                kind=kind,
                filenames=list(filenames),
                file_count=len(filenames),
                status="processing",
            )
            session.add(batch)
            await session.commit()
            await session.refresh(batch)
            return batch

    async def update_import_batch(
        self,
        batch_id: str,
        status: str,
        error_message: Optional[str] = None,
        summary: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not batch_id:
            return
        updates: Dict[str, Any] = {"status": status, "updated_at": func.now()}
        if error_message is not None:
            updates["error_message"] = error_message
        if summary is not None:
            updates["summary"] = summary
        async with self.get_session() as session:
            await session.execute(
                update(ImportBatch)
                .where(ImportBatch.id == batch_id)
                .values(**updates)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def get_recent_import_batches(self, tenant_id: str, limit: int = 10) -> List[ImportBatch]:
        async with self.get_session() as session:
            query = (
                select(ImportBatch)
                .where(ImportBatch.tenant_id == tenant_id)
                .order_by(desc(ImportBatch.created_at))
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    # ---------- order reconciliation ----------

    def _order_row(self, tenant_id: str, order: DerivedOrder, batch_id: Optional[str]) -> Dict[str, Any]:
        return {
            "id": _new_id(),
            "tenant_id": tenant_id,
            "order_id": order.order_id,
            "order_date": order.order_date,
            "store_name": order.store_name,
            "source": order.source,
            "total_price": order.total_price,
            "total_fees": order.total_fees,
            "total_cogs": order.total_cogs,
            "total_profit": order.total_price - order.total_fees - order.total_cogs,
            "import_batch_id": batch_id,
        }

    def _item_row(self, tenant_id: str, order_pk: str, item: LineItemDraft) -> Dict[str, Any]:
        return {
            "id": _item_id(order_pk, item),
            "tenant_id": tenant_id,
            "order_pk": order_pk,
            "product_name": item.product_name,
            "sku": item.sku,
            "size": item.size,
            "quantity": item.quantity,
            "price": item.price,
            "fees": item.fees,
            "cogs": item.cogs,
            "profit": item.price - item.fees - item.cogs,
            "variant_id": None,
        }

    @retry_async(max_retries=2, base_delay=0.5)
    async def apply_order_import(
        self,
        tenant_id: str,
        orders: List[DerivedOrder],
        batch_id: Optional[str] = None,
        summary_only_placeholder: bool = False,
    ) -> ReconcileResult:
        """
        Apply one batch of derived orders in a single transaction:

        1. upsert order headers on (tenant_id, order_id), last import wins
        2. replace the item set of every order this batch supplied item rows for
           (optionally add a placeholder line to summary-only orders with no items)
        3. ensure cost variants for the new (product, sku, size) triples and link items
        4. recalculate item profit and order cogs / profit totals
        """
        result = ReconcileResult()
        if not orders:
            return result

        start = time.time()
        order_ids = [o.order_id for o in orders]

        async with self.get_session() as session:
            try:
                insert_fn = self._insert_fn(session)

                # Step 1: Upsert headers
                existing = set(await self._order_id_map(session, tenant_id, order_ids))
                rows = [self._order_row(tenant_id, o, batch_id) for o in orders]
                for chunk in chunked(rows, self.CHUNK_SIZE):
                    stmt = insert_fn(Order).values(chunk)
                    upsert = stmt.on_conflict_do_update(
                        index_elements=[Order.tenant_id, Order.order_id],
                        set_=self._overwrite_columns(
                            Order.__table__, stmt, keep=("tenant_id", "order_id", "created_at")
                        ),
                    )
                    await session.execute(upsert)

                id_map = await self._order_id_map(session, tenant_id, order_ids)
                result.order_ids = id_map
                result.inserted = sum(1 for oid in order_ids if oid not in existing)
                result.updated = len(order_ids) - result.inserted

                # Step 2: Replace item sets, scoped to orders that brought item rows
                scoped = [o for o in orders if o.has_item_rows]
                scoped_pks = [id_map[o.order_id] for o in scoped]
                for chunk in chunked(scoped_pks, self.CHUNK_SIZE):
                    await session.execute(
                        delete(OrderItem)
                        .where(OrderItem.order_pk.in_(chunk))
                        .execution_options(synchronize_session=False)
                    )

                item_rows = [
                    self._item_row(tenant_id, id_map[o.order_id], item)
                    for o in scoped
                    for item in o.line_items
                ]

                if summary_only_placeholder:
                    placeholder_rows = await self._placeholder_rows(
                        session, tenant_id, [o for o in orders if not o.has_item_rows], id_map
                    )
                    result.placeholders_written = len(placeholder_rows)
                    item_rows.extend(placeholder_rows)

                for chunk in chunked(item_rows, self.CHUNK_SIZE):
                    await session.execute(insert_fn(OrderItem).values(chunk))
                result.items_written = len(item_rows) - result.placeholders_written

                # Step 3: Cost variant backfill + linkage
                triples = sorted({item.variant_key for o in scoped for item in o.line_items})
                if triples:
                    result.variants_created = await self._ensure_cost_variants(
                        session, insert_fn, tenant_id, triples
                    )
                    await self._link_items_to_variants(session, scoped_pks)

                # Step 4: Totals
                await self._recalculate_orders(session, list(id_map.values()))

                await session.commit()

            except Exception as e:
                await session.rollback()
                logger.error(f"Error in apply_order_import tenant={tenant_id}: {e}")
                raise

        logger.info(
            f"Applied {len(orders)} orders tenant={tenant_id} inserted={result.inserted} "
            f"updated={result.updated} items={result.items_written} "
            f"placeholders={result.placeholders_written} variants_created={result.variants_created} "
            f"durMs={int((time.time() - start) * 1000)}"
        )
        return result

    async def _placeholder_rows(
        self,
        session: AsyncSession,
        tenant_id: str,
        summary_only: List[DerivedOrder],
        id_map: Dict[str, str],
    ) -> List[Dict[str, Any]]:
        """Placeholder lines for summary-only orders that currently own no items."""
        if not summary_only:
            return []
        pks = [id_map[o.order_id] for o in summary_only]
        with_items: Set[str] = set()
        for chunk in chunked(pks, self.CHUNK_SIZE):
            found = await session.execute(
                select(OrderItem.order_pk).where(OrderItem.order_pk.in_(chunk)).distinct()
            )
            with_items.update(found.scalars().all())
        return [
            self._item_row(tenant_id, id_map[o.order_id], placeholder_line_item(o))
            for o in summary_only
            if id_map[o.order_id] not in with_items
        ]

    async def _ensure_default_category(self, session: AsyncSession, insert_fn, tenant_id: str) -> str:
        stmt = insert_fn(CostCategory).values(
            id=_new_id(), tenant_id=tenant_id, name=DEFAULT_CATEGORY_NAME
        ).on_conflict_do_nothing(index_elements=[CostCategory.tenant_id, CostCategory.name])
        await session.execute(stmt)
        found = await session.execute(
            select(CostCategory.id).where(
                CostCategory.tenant_id == tenant_id,
                CostCategory.name == DEFAULT_CATEGORY_NAME,
            )
        )
        return found.scalar_one()

    async def _ensure_expense_items(
        self,
        session: AsyncSession,
        insert_fn,
        tenant_id: str,
        category_id: str,
        names: Sequence[str],
    ) -> Dict[str, Tuple[str, str]]:
        """product name -> (expense item id, category id), creating missing catalog entries"""
        rows = [
            {"id": _new_id(), "tenant_id": tenant_id, "category_id": category_id, "name": name}
            for name in names
        ]
        for chunk in chunked(rows, self.CHUNK_SIZE):
            stmt = insert_fn(ExpenseItem).values(chunk).on_conflict_do_nothing(
                index_elements=[ExpenseItem.tenant_id, ExpenseItem.name]
            )
            await session.execute(stmt)

        mapping: Dict[str, Tuple[str, str]] = {}
        for chunk in chunked(list(names), self.CHUNK_SIZE):
            found = await session.execute(
                select(ExpenseItem.name, ExpenseItem.id, ExpenseItem.category_id).where(
                    ExpenseItem.tenant_id == tenant_id,
                    ExpenseItem.name.in_(chunk),
                )
            )
            mapping.update({row.name: (row.id, row.category_id) for row in found})
        return mapping

    async def _ensure_cost_variants(
        self,
        session: AsyncSession,
        insert_fn,
        tenant_id: str,
        triples: Sequence[Tuple[str, str, str]],
    ) -> int:
        """Create one cost variant per unseen (product, sku, size); returns how many were new."""
        names = sorted({name for name, _sku, _size in triples})
        category_id = await self._ensure_default_category(session, insert_fn, tenant_id)
        items = await self._ensure_expense_items(session, insert_fn, tenant_id, category_id, names)

        known: Set[Tuple[str, str, str]] = set()
        for chunk in chunked(names, self.CHUNK_SIZE):
            found = await session.execute(
                select(CostVariant.product_name, CostVariant.sku, CostVariant.size).where(
                    CostVariant.tenant_id == tenant_id,
                    CostVariant.product_name.in_(chunk),
                )
            )
            known.update((row.product_name, row.sku, row.size) for row in found)

        missing = [t for t in triples if t not in known]
        if not missing:
            return 0

        rows = [
            {
                "id": _new_id(),
                "tenant_id": tenant_id,
                "item_id": items[name][0],
                "category_id": items[name][1],
                "product_name": name,
                "sku": sku,
                "size": size,
                "cost_per_unit": None,
            }
            for name, sku, size in missing
        ]
        for chunk in chunked(rows, self.CHUNK_SIZE):
            stmt = insert_fn(CostVariant).values(chunk).on_conflict_do_nothing(
                index_elements=[
                    CostVariant.tenant_id, CostVariant.product_name, CostVariant.sku, CostVariant.size
                ]
            )
            await session.execute(stmt)
        logger.info(f"Created {len(rows)} cost variants tenant={tenant_id}")
        return len(rows)

    async def _link_items_to_variants(self, session: AsyncSession, order_pks: Sequence[str]) -> None:
        """Point items of the touched orders at their cost variant and apply any known unit cost."""
        variant_match = (
            select(CostVariant.id)
            .where(
                CostVariant.tenant_id == OrderItem.tenant_id,
                CostVariant.product_name == OrderItem.product_name,
                CostVariant.sku == func.coalesce(OrderItem.sku, ""),
                CostVariant.size == func.coalesce(OrderItem.size, ""),
            )
            .correlate(OrderItem)
            .scalar_subquery()
        )
        for chunk in chunked(list(order_pks), self.CHUNK_SIZE):
            await session.execute(
                update(OrderItem)
                .where(OrderItem.order_pk.in_(chunk))
                .values(variant_id=variant_match)
                .execution_options(synchronize_session=False)
            )
        await self._apply_variant_costs(session, OrderItem.order_pk.in_, order_pks)

    async def _apply_variant_costs(self, session: AsyncSession, where_in, keys: Sequence[str]) -> None:
        """cogs = quantity x cost_per_unit for linked items; 0 while the cost is unknown."""
        unit_cost = (
            select(CostVariant.cost_per_unit)
            .where(CostVariant.id == OrderItem.variant_id)
            .correlate(OrderItem)
            .scalar_subquery()
        )
        for chunk in chunked(list(keys), self.CHUNK_SIZE):
            await session.execute(
                update(OrderItem)
                .where(where_in(chunk), OrderItem.variant_id.is_not(None))
                .values(cogs=func.coalesce(OrderItem.quantity * unit_cost, 0))
                .execution_options(synchronize_session=False)
            )

    async def _recalculate_orders(self, session: AsyncSession, order_pks: Sequence[str]) -> None:
        """Item profit, then order total_cogs and total_profit from their items."""
        cogs_sum = (
            select(func.coalesce(func.sum(OrderItem.cogs), 0))
            .where(OrderItem.order_pk == Order.id)
            .correlate(Order)
            .scalar_subquery()
        )
        for chunk in chunked(list(order_pks), self.CHUNK_SIZE):
            await session.execute(
                update(OrderItem)
                .where(OrderItem.order_pk.in_(chunk))
                .values(profit=OrderItem.price - OrderItem.fees - OrderItem.cogs)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(Order)
                .where(Order.id.in_(chunk))
                .values(total_cogs=cogs_sum)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(Order)
                .where(Order.id.in_(chunk))
                .values(total_profit=Order.total_price - Order.total_fees - Order.total_cogs)
                .execution_options(synchronize_session=False)
            )

    # ---------- order reads ----------

    async def get_orders(self, tenant_id: str, order_ids: Optional[Sequence[str]] = None) -> List[Order]:
        async with self.get_session() as session:
            query = select(Order).where(Order.tenant_id == tenant_id)
            if order_ids is not None:
                query = query.where(Order.order_id.in_(list(order_ids)))
            result = await session.execute(query.order_by(Order.order_id))
            return list(result.scalars().all())

    async def get_order(self, tenant_id: str, order_id: str) -> Optional[Order]:
        async with self.get_session() as session:
            result = await session.execute(
                select(Order).where(Order.tenant_id == tenant_id, Order.order_id == order_id)
            )
            return result.scalars().first()

    async def get_order_items(self, tenant_id: str, order_id: str) -> List[OrderItem]:
        async with self.get_session() as session:
            query = (
                select(OrderItem)
                .join(Order, Order.id == OrderItem.order_pk)
                .where(Order.tenant_id == tenant_id, Order.order_id == order_id)
                .order_by(OrderItem.product_name, OrderItem.size, OrderItem.sku)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    # ---------- cost of goods ----------

    async def list_cost_variants(self, tenant_id: str) -> List[CostVariant]:
        async with self.get_session() as session:
            result = await session.execute(
                select(CostVariant)
                .where(CostVariant.tenant_id == tenant_id)
                .order_by(CostVariant.product_name, CostVariant.size, CostVariant.sku)
            )
            return list(result.scalars().all())

    @retry_async(max_retries=2, base_delay=0.5)
    async def set_variant_cost(
        self,
        tenant_id: str,
        variant_id: str,
        cost_per_unit: Optional[Decimal],
    ) -> Optional[Dict[str, Any]]:
        """Set a unit cost, re-price linked items and recalculate their orders. None if unknown."""
        async with self.get_session() as session:
            try:
                variant = await session.get(CostVariant, variant_id)
                if variant is None or variant.tenant_id != tenant_id:
                    return None
                variant.cost_per_unit = cost_per_unit
                await session.flush()

                await self._apply_variant_costs(session, OrderItem.variant_id.in_, [variant_id])
                affected = await session.execute(
                    select(OrderItem.order_pk).where(OrderItem.variant_id == variant_id).distinct()
                )
                order_pks = list(affected.scalars().all())
                await self._recalculate_orders(session, order_pks)
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Error in set_variant_cost variant={variant_id}: {e}")
                raise

        logger.info(f"Set cost variant={variant_id} cost={cost_per_unit} orders_recalculated={len(order_pks)}")
        return {"variant_id": variant_id, "cost_per_unit": cost_per_unit, "orders_recalculated": len(order_pks)}

    # ---------- shipping labels ----------

    @retry_async(max_retries=2, base_delay=0.5)
    async def upsert_shipping_labels(
        self,
        tenant_id: str,
        labels: List[ShippingLabelInput],
        batch_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """Idempotent upsert on (tenant_id, dedupe_key). Manual order links survive re-uploads."""
        if not labels:
            return {"inserted": 0, "updated": 0}

        keys = [label.dedupe_key for label in labels]
        rows = []
        for label in labels:
            rows.append({
                "id": _new_id(),
                "tenant_id": tenant_id,
                "dedupe_key": label.dedupe_key,
                "label_id": label.label_id,
                "batch_id": label.batch_id,
                "carrier": label.carrier,
                "service": label.service,
                "ship_date": label.ship_date,
                "to_name": label.to_name,
                "address1": label.address1,
                "city": label.city,
                "state": label.state,
                "postal": label.postal,
                "country": label.country,
                "tracking": label.tracking,
                "reference": label.reference,
                "notes": label.notes,
                "weight": label.weight,
                "dimensions": label.dimensions,
                "amount": label.amount,
                "currency": label.currency,
                "store_id": label.store_id,
                "order_reference": label.order_reference,
                "import_batch_id": batch_id,
            })

        async with self.get_session() as session:
            try:
                insert_fn = self._insert_fn(session)
                existing: Set[str] = set()
                for chunk in chunked(keys, self.CHUNK_SIZE):
                    found = await session.execute(
                        select(ShippingLabel.dedupe_key).where(
                            ShippingLabel.tenant_id == tenant_id,
                            ShippingLabel.dedupe_key.in_(chunk),
                        )
                    )
                    existing.update(found.scalars().all())

                for chunk in chunked(rows, self.CHUNK_SIZE):
                    stmt = insert_fn(ShippingLabel).values(chunk)
                    upsert = stmt.on_conflict_do_update(
                        index_elements=[ShippingLabel.tenant_id, ShippingLabel.dedupe_key],
                        set_=self._overwrite_columns(
                            ShippingLabel.__table__, stmt,
                            keep=("tenant_id", "dedupe_key", "created_at", "order_pk"),
                        ),
                    )
                    await session.execute(upsert)
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Error in upsert_shipping_labels tenant={tenant_id}: {e}")
                raise

        inserted = sum(1 for k in keys if k not in existing)
        return {"inserted": inserted, "updated": len(keys) - inserted}

    async def list_shipping_labels(self, tenant_id: str, status: str = "all", limit: int = 500) -> List[ShippingLabel]:
        if status not in LABEL_FILTERS:
            raise ValueError(f"Unknown label filter: {status}")
        async with self.get_session() as session:
            query = select(ShippingLabel).where(ShippingLabel.tenant_id == tenant_id)
            if status == "linked":
                query = query.where(ShippingLabel.order_pk.is_not(None))
            elif status == "unlinked":
                query = query.where(ShippingLabel.order_pk.is_(None))
            query = query.order_by(desc(ShippingLabel.ship_date), ShippingLabel.dedupe_key).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def link_labels_to_order(self, tenant_id: str, label_ids: Sequence[str], order_id: Optional[str]) -> int:
        """
        Manually link labels to an order (order_id=None unlinks).
        Raises LookupError when the order does not exist for the tenant.
        """
        async with self.get_session() as session:
            order_pk = None
            if order_id is not None:
                found = await session.execute(
                    select(Order.id).where(Order.tenant_id == tenant_id, Order.order_id == order_id)
                )
                order_pk = found.scalar()
                if order_pk is None:
                    raise LookupError(f"Order {order_id} not found")

            result = await session.execute(
                update(ShippingLabel)
                .where(ShippingLabel.tenant_id == tenant_id, ShippingLabel.id.in_(list(label_ids)))
                .values(order_pk=order_pk, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount or 0

    async def suggest_label_links(self, tenant_id: str, limit: int = 200) -> List[Dict[str, Any]]:
        """Unlinked labels whose extracted reference names an existing order."""
        async with self.get_session() as session:
            query = (
                select(ShippingLabel, Order.order_id)
                .join(
                    Order,
                    (Order.tenant_id == ShippingLabel.tenant_id)
                    & (Order.order_id == ShippingLabel.order_reference),
                )
                .where(
                    ShippingLabel.tenant_id == tenant_id,
                    ShippingLabel.order_pk.is_(None),
                    ShippingLabel.order_reference.is_not(None),
                )
                .order_by(ShippingLabel.dedupe_key)
                .limit(limit)
            )
            result = await session.execute(query)
            return [{"label": label, "order_id": order_id} for label, order_id in result.all()]

    # ---------- settings ----------

    async def get_setting(self, tenant_id: str, workspace_id: str, key: str) -> Optional[Any]:
        async with self.get_session() as session:
            result = await session.execute(
                select(UserSetting.value).where(
                    UserSetting.tenant_id == tenant_id,
                    UserSetting.workspace_id == workspace_id,
                    UserSetting.key == key,
                )
            )
            return result.scalar()

    async def put_setting(self, tenant_id: str, workspace_id: str, key: str, value: Any) -> None:
        async with self.get_session() as session:
            insert_fn = self._insert_fn(session)
            stmt = insert_fn(UserSetting).values(
                id=_new_id(), tenant_id=tenant_id, workspace_id=workspace_id, key=key, value=value
            )
            upsert = stmt.on_conflict_do_update(
                index_elements=[UserSetting.tenant_id, UserSetting.workspace_id, UserSetting.key],
                set_={"value": stmt.excluded.value, "updated_at": func.now()},
            )
            await session.execute(upsert)
            await session.commit()


storage = StorageService()
