import logging
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..common.database import AsyncSessionLocal
from ..common.db import isoformat
from ..common.errors import BusinessRuleError, Forbidden, NotFound, ValidationFailed
from ..products.model import Product
from ..products.serializers import product_to_dict
from .model import CartItem

_logger = logging.getLogger(__name__)


def cart_item_to_dict(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "user_id": item.user_id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "product": product_to_dict(item.product) if item.product else None,
        "created_at": isoformat(item.created_at),
        "updated_at": isoformat(item.updated_at),
    }


async def _load_item(session: AsyncSession, item_id: int) -> CartItem:
    item = await session.get(
        CartItem,
        item_id,
        options=[selectinload(CartItem.product).selectinload(Product.category)],
        populate_existing=True,
    )
    if item is None:
        raise NotFound("Cart item")
    return item


async def _owned_item(session: AsyncSession, user_id: int, item_id: int) -> CartItem:
    item = await session.get(CartItem, item_id)
    if item is None:
        raise NotFound("Cart item")
    if item.user_id != user_id:
        raise Forbidden()
    return item


def _check_stock(product: Product, quantity: int) -> None:
    if product.stock_quantity < quantity:
        raise BusinessRuleError("Insufficient stock")


async def get_cart(user_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        res = await session.execute(
            sa.select(CartItem)
            .options(selectinload(CartItem.product).selectinload(Product.category))
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.id)
        )
        items = res.scalars().all()
    # priced live; the order copies prices when it is placed
    total = sum(item.quantity * item.product.price for item in items)
    return {"cart": [cart_item_to_dict(i) for i in items], "total": round(total, 2)}


async def add_item(user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        product = await session.get(Product, product_id)
        if product is None:
            raise ValidationFailed.single("product_id", "The selected product id is invalid.")
        _check_stock(product, quantity)
        res = await session.execute(
            sa.select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        )
        item = res.scalars().first()
        if item is None:
            item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
            session.add(item)
        else:
            item.quantity += quantity
        await session.commit()
        item = await _load_item(session, item.id)
    _logger.info("Cart item added | user_id=%s product_id=%s quantity=%s", user_id, product_id, item.quantity)
    return cart_item_to_dict(item)


async def update_item(user_id: int, item_id: int, quantity: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        item = await _owned_item(session, user_id, item_id)
        product = await session.get(Product, item.product_id)
        if product is None:
            raise NotFound("Product")
        _check_stock(product, quantity)
        item.quantity = quantity
        await session.commit()
        item = await _load_item(session, item_id)
    return cart_item_to_dict(item)


async def remove_item(user_id: int, item_id: int) -> None:
    async with AsyncSessionLocal() as session:
        item = await _owned_item(session, user_id, item_id)
        await session.delete(item)
        await session.commit()


async def clear_cart(user_id: int) -> None:
    async with AsyncSessionLocal() as session:
        await session.execute(sa.delete(CartItem).where(CartItem.user_id == user_id))
        await session.commit()
    _logger.info("Cart cleared | user_id=%s", user_id)
