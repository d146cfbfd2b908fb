# --- models.py (or the models section of database.py) ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    JSON, String, Text, Integer, Numeric, Date, DateTime,
    ForeignKey, func, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional
import logging, os, time, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

if DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_timeout=15,
        connect_args={
            "server_settings": {
                "application_name": "seller_profit_import",
            },
            "command_timeout": 60,
            "timeout": 30,
        },
    )
else:
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_NAME = os.getenv("DB_NAME", "seller_profit")
    SOCKET = os.getenv("INSTANCE_UNIX_SOCKET")
    if SOCKET:
        DATABASE_URL = f"postgresql+asyncpg://{DB_USER}:@/{DB_NAME}?host={SOCKET}"
        engine = create_async_engine(
            DATABASE_URL,
            echo=os.getenv("NODE_ENV") == "development",
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_timeout=15,
        )
    else:
        DATABASE_URL = "sqlite+aiosqlite:///:memory:"
        engine = create_async_engine(
            DATABASE_URL,
            echo=os.getenv("NODE_ENV") == "development",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
            return url
    except ValueError:
        pass
    if url.startswith("sqlite"):
        return url
    return "******"

logger = logging.getLogger(__name__)
logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")

# JSONB on Postgres, plain JSON on the SQLite fallback
JSONType = JSON().with_variant(JSONB(), "postgresql")

def _uuid() -> str:
    return str(uuid.uuid4())

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class ImportBatch(Base):
    __tablename__ = "import_batches"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    # "orders" | "shipping_labels"
    kind: Mapped[str] = mapped_column(String, nullable=False)
    filenames: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('processing','completed','failed')",
            name="ck_import_batches_status",
        ),
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    # Marketplace order identifier (the cross-file join key)
    order_id: Mapped[str] = mapped_column(String, nullable=False)

    order_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    store_name: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default="csv")

    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_cogs: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_profit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    import_batch_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("import_batches.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_id", name="uq_orders_tenant_order"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    order_pk: Mapped[str] = mapped_column(String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # "<size> | Color: <color>" when the variation carried both
    size: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    cogs: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    profit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    variant_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("cost_variants.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    )


class CostCategory(Base):
    __tablename__ = "cost_categories"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("cost_categories.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_cost_categories_tenant_name"),
    )


class ExpenseItem(Base):
    __tablename__ = "expense_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    category_id: Mapped[str] = mapped_column(String, ForeignKey("cost_categories.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_expense_items_tenant_name"),
    )


class CostVariant(Base):
    __tablename__ = "cost_variants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    item_id: Mapped[str] = mapped_column(String, ForeignKey("expense_items.id"), nullable=False)
    category_id: Mapped[str] = mapped_column(String, ForeignKey("cost_categories.id"), nullable=False)

    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    # Missing SKU / size are stored as "" so the natural key stays unique
    sku: Mapped[str] = mapped_column(Text, nullable=False, default="")
    size: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cost_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "product_name", "sku", "size", name="uq_cost_variants_natural_key"),
    )


class ShippingLabel(Base):
    __tablename__ = "shipping_labels"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    # "label:<id>" or "fallback:<tracking>|<ship date>|<amount>"
    dedupe_key: Mapped[str] = mapped_column(Text, nullable=False)

    label_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    carrier: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    service: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ship_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    to_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address1: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    state: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    postal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tracking: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weight: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dimensions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="USD")
    store_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Best-effort reference parsed from free text; never used for financials
    order_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_pk: Mapped[Optional[str]] = mapped_column(String, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    import_batch_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("import_batches.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "dedupe_key", name="uq_shipping_labels_tenant_key"),
    )


class UserSetting(Base):
    __tablename__ = "user_settings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    workspace_id: Mapped[str] = mapped_column(String, nullable=False, default="default")
    key: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "workspace_id", "key", name="uq_user_settings_scope_key"),
    )

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_order_items_order_pk', OrderItem.order_pk)
Index('ix_order_items_variant', OrderItem.variant_id)
Index('ix_orders_tenant_date', Order.tenant_id, Order.order_date)
Index('ix_shipping_labels_tenant_reference', ShippingLabel.tenant_id, ShippingLabel.order_reference)
Index('ix_shipping_labels_order_pk', ShippingLabel.order_pk)
Index('ix_import_batches_tenant_created', ImportBatch.tenant_id, ImportBatch.created_at)
# -------------------------------------------------------------------
# DI + init helpers
# -------------------------------------------------------------------
async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def check_db_health() -> Dict[str, Any]:
    """Round-trip a trivial query and report latency."""
    start = time.time()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "latency_ms": int((time.time() - start) * 1000)}
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}

async def get_pool_status() -> Dict[str, Any]:
    pool = engine.pool
    status: Dict[str, Any] = {"pool_class": type(pool).__name__}
    for attr in ("size", "checkedin", "checkedout", "overflow"):
        fn = getattr(pool, attr, None)
        if callable(fn):
            status[attr] = fn()
    return status
