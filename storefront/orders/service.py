import logging
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..cart.model import CartItem
from ..common.config import settings
from ..common.database import AsyncSessionLocal
from ..common.errors import BusinessRuleError, NotFound, OperationFailed, ValidationFailed
from ..common.pagination import page_args, paginate
from ..common.policy import Capability, ensure_owner_or
from ..common.validation import date_range_args, int_arg, start_of_today
from ..products.model import Product
from .model import (
    CANCELLABLE_STATUSES,
    Order,
    OrderItem,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    STATUSES,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
)
from .serializers import order_to_dict
from .stats import monthly_spending, top_products

_logger = logging.getLogger(__name__)


async def _load_order(session: AsyncSession, order_id: int, with_user: bool = False) -> Order:
    options = [selectinload(Order.items).selectinload(OrderItem.product)]
    if with_user:
        options.append(selectinload(Order.user))
    order = await session.get(Order, order_id, options=options, populate_existing=True)
    if order is None:
        raise NotFound("Order")
    return order


async def _sum(session: AsyncSession, stmt) -> float:
    return float((await session.execute(stmt)).scalar() or 0)


async def _count(session: AsyncSession, stmt) -> int:
    return int((await session.execute(stmt)).scalar() or 0)


def _apply_filters(stmt, args):
    if args.get("status") in STATUSES:
        stmt = stmt.where(Order.status == args["status"])
    if args.get("payment_status"):
        stmt = stmt.where(Order.payment_status == args["payment_status"])
    if args.get("order_number"):
        stmt = stmt.where(Order.order_number.ilike(f"%{args['order_number']}%"))
    window = date_range_args(args)
    if window:
        stmt = stmt.where(Order.created_at.between(*window))
    return stmt


async def place_order(user_id: int, data: Dict[str, Any]) -> Order:
    """Turn the caller's cart into an order.

    Everything happens in one transaction: the order and its items are written,
    stock is decremented and the cart is emptied, or nothing changes at all.
    Stock is taken with a conditional UPDATE so two checkouts racing for the
    last units cannot both succeed.
    """
    try:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                res = await session.execute(
                    sa.select(CartItem)
                    .options(selectinload(CartItem.product))
                    .where(CartItem.user_id == user_id)
                    .order_by(CartItem.id)
                )
                cart = res.scalars().all()
                if not cart:
                    raise BusinessRuleError("Cart is empty")
                for item in cart:
                    if item.product.stock_quantity < item.quantity:
                        _logger.warning(
                            "Order rejected, insufficient stock | user_id=%s product_id=%s requested=%s available=%s",
                            user_id, item.product_id, item.quantity, item.product.stock_quantity,
                        )
                        raise BusinessRuleError(f"Insufficient stock for product: {item.product.name}")

                total = sum(item.quantity * item.product.price for item in cart)
                order = Order(
                    user_id=user_id,
                    total_amount=round(total, 2),
                    status=STATUS_PENDING,
                    payment_status=PAYMENT_PENDING,
                    payment_method=data.get("payment_method"),
                    shipping_address=data.get("shipping_address"),
                    billing_address=data.get("billing_address") or data.get("shipping_address"),
                    notes=data.get("notes"),
                )
                session.add(order)
                await session.flush()

                for item in cart:
                    session.add(
                        OrderItem(
                            order_id=order.id,
                            product_id=item.product_id,
                            quantity=item.quantity,
                            price=item.product.price,
                        )
                    )
                    res = await session.execute(
                        sa.update(Product)
                        .where(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
                        .values(stock_quantity=Product.stock_quantity - item.quantity)
                    )
                    if not res.rowcount:
                        # another checkout took the stock after the check above
                        raise BusinessRuleError(f"Insufficient stock for product: {item.product.name}")

                await session.execute(sa.delete(CartItem).where(CartItem.user_id == user_id))

            order = await _load_order(session, order.id)
    except SQLAlchemyError as e:
        _logger.exception("Order placement failed | user_id=%s", user_id)
        raise OperationFailed("Failed to place order", str(e))

    _logger.info(
        "Order placed | order_id=%s order_number=%s user_id=%s items=%s total=%s",
        order.id, order.order_number, user_id, len(order.items), order.total_amount,
    )
    return order


async def cancel_order(user, order_id: int) -> Order:
    """Cancel a pending or processing order and put its items back in stock."""
    try:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                order = await session.get(Order, order_id, options=[selectinload(Order.items)])
                if order is None:
                    raise NotFound("Order")
                ensure_owner_or(user, order.user_id, Capability.MANAGE_ORDERS)
                if not order.can_be_cancelled():
                    raise BusinessRuleError("Order cannot be cancelled at this stage")

                # guard on the status again so a concurrent cancel restores stock once
                res = await session.execute(
                    sa.update(Order)
                    .where(Order.id == order_id, Order.status.in_(CANCELLABLE_STATUSES))
                    .values(status=STATUS_CANCELLED)
                )
                if not res.rowcount:
                    raise BusinessRuleError("Order cannot be cancelled at this stage")

                for item in order.items:
                    if item.product_id is None:
                        continue
                    await session.execute(
                        sa.update(Product)
                        .where(Product.id == item.product_id)
                        .values(stock_quantity=Product.stock_quantity + item.quantity)
                    )

                order.status = STATUS_CANCELLED
                if order.payment_status == PAYMENT_PAID:
                    order.payment_status = PAYMENT_REFUNDED

            order = await _load_order(session, order_id)
    except SQLAlchemyError as e:
        _logger.exception("Order cancellation failed | order_id=%s", order_id)
        raise OperationFailed("Failed to cancel order", str(e))

    _logger.info("Order cancelled | order_id=%s by user_id=%s payment_status=%s", order_id, user.id, order.payment_status)
    return order


async def update_status(order_id: int, status: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Administrative transition. Cancelling here leaves stock untouched."""
    if status not in STATUSES:
        raise ValidationFailed.single("status", "The selected status is invalid.")
    async with AsyncSessionLocal() as session:
        order = await session.get(Order, order_id)
        if order is None:
            raise NotFound("Order")
        old_status = order.status
        if status == STATUS_CANCELLED and not order.can_be_cancelled():
            raise BusinessRuleError("Cannot cancel order at this stage")

        order.status = status
        if "notes" in changes:
            order.notes = changes["notes"]
        if status == STATUS_SHIPPED and changes.get("tracking_number") is not None:
            order.tracking_number = changes["tracking_number"]
        if status == STATUS_DELIVERED and order.payment_status == PAYMENT_PENDING:
            order.payment_status = PAYMENT_PAID
        await session.commit()
        order = await _load_order(session, order_id, with_user=True)

    _logger.info("Order status changed | order_id=%s %s -> %s", order_id, old_status, status)
    return {"order": order_to_dict(order), "old_status": old_status, "new_status": status}


async def update_payment_status(order_id: int, payment_status: str) -> Dict[str, Any]:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationFailed.single("payment_status", "The selected payment status is invalid.")
    async with AsyncSessionLocal() as session:
        order = await session.get(Order, order_id)
        if order is None:
            raise NotFound("Order")
        old = order.payment_status
        order.payment_status = payment_status
        await session.commit()
    _logger.info("Order payment status changed | order_id=%s %s -> %s", order_id, old, payment_status)
    return {"order": order_to_dict(order), "old_payment_status": old, "new_payment_status": payment_status}


async def get_order(user, order_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        order = await _load_order(session, order_id, with_user=True)
    ensure_owner_or(user, order.user_id, Capability.MANAGE_ORDERS)
    return {"order": order_to_dict(order), "can_cancel": order.can_be_cancelled()}


async def list_orders(user_id: int, args) -> Dict[str, Any]:
    stmt = (
        sa.select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    stmt = _apply_filters(stmt, args)
    page, per_page = page_args(args, 15)
    async with AsyncSessionLocal() as session:
        orders, meta = await paginate(session, stmt, page, per_page)
        own = sa.select(sa.func.count(Order.id)).where(Order.user_id == user_id)
        summary = {
            "total_orders": await _count(session, own),
            "total_spent": await _sum(session, sa.select(sa.func.sum(Order.total_amount)).where(Order.user_id == user_id)),
            "pending_orders": await _count(session, own.where(Order.status == STATUS_PENDING)),
            "delivered_orders": await _count(session, own.where(Order.status == STATUS_DELIVERED)),
        }
    return {
        "data": [order_to_dict(o) for o in orders],
        "pagination": meta,
        "summary": summary,
        "filters": {k: args[k] for k in ("status", "payment_status", "start_date", "end_date") if k in args},
    }


async def order_history(user_id: int, args) -> Dict[str, Any]:
    items_count = (
        sa.select(sa.func.count(OrderItem.id))
        .where(OrderItem.order_id == Order.id)
        .correlate(Order)
        .scalar_subquery()
        .label("items_count")
    )
    stmt = (
        sa.select(
            Order.id, Order.order_number, Order.total_amount, Order.status, Order.payment_status,
            Order.created_at, items_count,
        )
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    page, _ = page_args(args, 10)
    async with AsyncSessionLocal() as session:
        rows, meta = await paginate(session, stmt, page, 10, scalars=False)
        total_spent = await _sum(session, sa.select(sa.func.sum(Order.total_amount)).where(Order.user_id == user_id))
    return {
        "data": [
            {
                "id": r.id,
                "order_number": r.order_number,
                "total_amount": r.total_amount,
                "status": r.status,
                "payment_status": r.payment_status,
                "created_at": r.created_at.isoformat() if r.created_at else None,
                "items_count": int(r.items_count or 0),
            }
            for r in rows
        ],
        "pagination": meta,
        "total_orders": meta["total"],
        "total_spent": total_spent,
    }


async def recent_orders(user_id: int, limit: int = 5):
    async with AsyncSessionLocal() as session:
        res = await session.execute(
            sa.select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        orders = res.scalars().all()
    return [
        {
            "id": o.id,
            "order_number": o.order_number,
            "total_amount": o.total_amount,
            "status": o.status,
            "payment_status": o.payment_status,
            "created_at": o.created_at.isoformat() if o.created_at else None,
            "items": [
                {
                    "product_id": i.product_id,
                    "quantity": i.quantity,
                    "product": {"id": i.product.id, "name": i.product.name, "price": i.product.price} if i.product else None,
                }
                for i in o.items
            ],
        }
        for o in orders
    ]


def _when(column, value):
    return sa.func.sum(sa.case((column == value, 1), else_=0))


async def statistics(user_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        res = await session.execute(
            sa.select(
                sa.func.count(Order.id),
                sa.func.sum(Order.total_amount),
                _when(Order.status, STATUS_PENDING),
                _when(Order.status, STATUS_PROCESSING),
                _when(Order.status, STATUS_SHIPPED),
                _when(Order.status, STATUS_DELIVERED),
                _when(Order.status, STATUS_CANCELLED),
                _when(Order.payment_status, PAYMENT_PENDING),
                _when(Order.payment_status, PAYMENT_PAID),
            ).where(Order.user_id == user_id)
        )
        row = res.one()
        keys = (
            "total_orders", "total_spent", "pending_orders", "processing_orders", "shipped_orders",
            "delivered_orders", "cancelled_orders", "pending_payments", "paid_payments",
        )
        summary = {k: (v or 0) for k, v in zip(keys, row)}
        summary["total_spent"] = float(summary["total_spent"])
        monthly = await monthly_spending(session, user_id)
        top = await top_products(session, user_id)
    return {"summary": summary, "monthly_spending": monthly, "top_products": top, "currency": settings.CURRENCY}


async def admin_list_orders(args) -> Dict[str, Any]:
    stmt = (
        sa.select(Order)
        .options(selectinload(Order.user), selectinload(Order.items).selectinload(OrderItem.product))
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    stmt = _apply_filters(stmt, args)
    user_id: Optional[int] = int_arg(args, "user_id")
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    page, per_page = page_args(args, 20)
    async with AsyncSessionLocal() as session:
        orders, meta = await paginate(session, stmt, page, per_page)
        all_orders = sa.select(sa.func.count(Order.id))
        stats = {
            "total_orders": await _count(session, all_orders),
            "total_revenue": await _sum(
                session, sa.select(sa.func.sum(Order.total_amount)).where(Order.payment_status == PAYMENT_PAID)
            ),
            "pending_orders": await _count(session, all_orders.where(Order.status == STATUS_PENDING)),
            "today_orders": await _count(session, all_orders.where(Order.created_at >= start_of_today())),
        }
    return {"data": [order_to_dict(o) for o in orders], "pagination": meta, "stats": stats}
