"""Per-customer spending aggregates, shared by order statistics and the admin user view."""
from datetime import timedelta
from typing import Any, Dict, List

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.database import month_bucket
from ..common.db import utcnow
from ..products.model import Product
from .model import Order, OrderItem

SPENDING_WINDOW = timedelta(days=183)


async def monthly_spending(session: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
    month = month_bucket(session, Order.created_at).label("month")
    res = await session.execute(
        sa.select(month, sa.func.count(Order.id), sa.func.sum(Order.total_amount))
        .where(Order.user_id == user_id, Order.created_at >= utcnow() - SPENDING_WINDOW)
        .group_by(month)
        .order_by(month.desc())
    )
    return [{"month": m, "order_count": n, "total_amount": float(total or 0)} for m, n, total in res.all()]


async def top_products(session: AsyncSession, user_id: int, limit: int = 5) -> List[Dict[str, Any]]:
    total_quantity = sa.func.sum(OrderItem.quantity).label("total_quantity")
    res = await session.execute(
        sa.select(
            Product.id,
            Product.name,
            sa.func.count(OrderItem.id),
            total_quantity,
            sa.func.sum(OrderItem.quantity * OrderItem.price),
        )
        .join(Order, OrderItem.order_id == Order.id)
        .join(Product, OrderItem.product_id == Product.id)
        .where(Order.user_id == user_id)
        .group_by(Product.id, Product.name)
        .order_by(total_quantity.desc(), Product.id)
        .limit(limit)
    )
    return [
        {"id": pid, "name": name, "times_ordered": times, "total_quantity": int(qty or 0), "total_spent": float(spent or 0)}
        for pid, name, times, qty, spent in res.all()
    ]
