#!/usr/bin/env python3
"""
Diagnostic script: database connectivity and reconciled import data per tenant
"""
import asyncio
import sys
from dotenv import load_dotenv

load_dotenv()


async def diagnose(tenant_id=None):
    # Import after dotenv loads
    from database import engine, ImportBatch, Order, OrderItem, CostVariant, ShippingLabel
    from sqlalchemy import select, func, text
    from sqlalchemy.ext.asyncio import AsyncSession

    print("=" * 60)
    print("Import database diagnostics")
    print("=" * 60)
    print()

    print("1. Testing database connection...")
    try:
        async with engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.scalar()
            print(f"OK  dialect={engine.dialect.name}")
            print()
    except Exception as e:
        print(f"Connection failed: {e}")
        return

    print("2. Row counts by tenant...")
    async with AsyncSession(engine) as session:
        try:
            for model in (Order, OrderItem, CostVariant, ShippingLabel, ImportBatch):
                query = select(model.tenant_id, func.count(model.id)).group_by(model.tenant_id)
                if tenant_id:
                    query = query.where(model.tenant_id == tenant_id)
                rows = (await session.execute(query)).all()
                print(f"   {model.__tablename__}:")
                for tenant, count in rows:
                    print(f"     - {tenant}: {count}")
            print()

            print("3. Orders whose totals disagree with their items:")
            cogs_sum = (
                select(OrderItem.order_pk, func.sum(OrderItem.cogs).label("cogs"))
                .group_by(OrderItem.order_pk)
                .subquery()
            )
            query = (
                select(Order.tenant_id, Order.order_id, Order.total_cogs, cogs_sum.c.cogs)
                .join(cogs_sum, cogs_sum.c.order_pk == Order.id)
                .where(Order.total_cogs != cogs_sum.c.cogs)
                .limit(20)
            )
            if tenant_id:
                query = query.where(Order.tenant_id == tenant_id)
            mismatches = (await session.execute(query)).all()
            if not mismatches:
                print("   none")
            for tenant, order_id, total_cogs, items_cogs in mismatches:
                print(f"   - {tenant}/{order_id}: order={total_cogs} items={items_cogs}")

            print()
            print("=" * 60)
            print("Diagnosis complete!")
            print("=" * 60)

        except Exception as e:
            print(f"Query failed: {e}")
            import traceback
            traceback.print_exc()

if __name__ == "__main__":
    asyncio.run(diagnose(sys.argv[1] if len(sys.argv) > 1 else None))
