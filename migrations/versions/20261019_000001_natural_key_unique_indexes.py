"""Ensure natural-key unique indexes for import upserts.

Tables created by init_db before the unique constraints were declared cannot
serve ON CONFLICT targets; this adds the missing indexes idempotently.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from typing import Sequence, Tuple, Union

# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# (index name, table, columns, unique)
INDEXES: Tuple[Tuple[str, str, Tuple[str, ...], bool], ...] = (
    ("uq_orders_tenant_order", "orders", ("tenant_id", "order_id"), True),
    ("uq_cost_categories_tenant_name", "cost_categories", ("tenant_id", "name"), True),
    ("uq_expense_items_tenant_name", "expense_items", ("tenant_id", "name"), True),
    ("uq_cost_variants_natural_key", "cost_variants", ("tenant_id", "product_name", "sku", "size"), True),
    ("uq_shipping_labels_tenant_key", "shipping_labels", ("tenant_id", "dedupe_key"), True),
    ("uq_user_settings_scope_key", "user_settings", ("tenant_id", "workspace_id", "key"), True),
    ("ix_order_items_order_pk", "order_items", ("order_pk",), False),
    ("ix_order_items_variant", "order_items", ("variant_id",), False),
    ("ix_orders_tenant_date", "orders", ("tenant_id", "order_date"), False),
    ("ix_shipping_labels_tenant_reference", "shipping_labels", ("tenant_id", "order_reference"), False),
    ("ix_shipping_labels_order_pk", "shipping_labels", ("order_pk",), False),
    ("ix_import_batches_tenant_created", "import_batches", ("tenant_id", "created_at"), False),
)


def _existing_names(inspector, table: str) -> set:
    """Index and unique-constraint names already present on the table."""
    try:
        names = {ix.get("name") for ix in inspector.get_indexes(table)}
        names.update(uc.get("name") for uc in inspector.get_unique_constraints(table))
        return names
    except Exception:
        return set()


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    for name, table, columns, unique in INDEXES:
        if table not in tables:
            continue
        if name in _existing_names(inspector, table):
            continue
        op.create_index(name, table, list(columns), unique=unique)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    for name, table, _columns, _unique in reversed(INDEXES):
        if table in tables and name in {ix.get("name") for ix in inspector.get_indexes(table)}:
            op.drop_index(name, table_name=table)
