import logging
from typing import Any, Dict, List

import sqlalchemy as sa
from sqlalchemy.orm import selectinload

from ..common.database import AsyncSessionLocal
from ..common.db import isoformat
from ..common.errors import BusinessRuleError, Forbidden, NotFound, ValidationFailed
from ..products.model import Product
from ..products.serializers import product_to_dict
from .model import WishlistItem

_logger = logging.getLogger(__name__)


def wishlist_item_to_dict(item: WishlistItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "user_id": item.user_id,
        "product_id": item.product_id,
        "product": product_to_dict(item.product) if item.product else None,
        "created_at": isoformat(item.created_at),
    }


async def list_items(user_id: int) -> List[Dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        res = await session.execute(
            sa.select(WishlistItem)
            .options(selectinload(WishlistItem.product).selectinload(Product.category))
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        )
        return [wishlist_item_to_dict(i) for i in res.scalars().all()]


async def add_item(user_id: int, product_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        if await session.get(Product, product_id) is None:
            raise ValidationFailed.single("product_id", "The selected product id is invalid.")
        res = await session.execute(
            sa.select(WishlistItem.id).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
        )
        if res.first() is not None:
            raise BusinessRuleError("Product already in wishlist")
        item = WishlistItem(user_id=user_id, product_id=product_id)
        session.add(item)
        await session.commit()
        item = await session.get(
            WishlistItem, item.id, options=[selectinload(WishlistItem.product)], populate_existing=True
        )
    _logger.info("Wishlist item added | user_id=%s product_id=%s", user_id, product_id)
    return wishlist_item_to_dict(item)


async def remove_item(user_id: int, item_id: int) -> None:
    async with AsyncSessionLocal() as session:
        item = await session.get(WishlistItem, item_id)
        if item is None:
            raise NotFound("Wishlist item")
        if item.user_id != user_id:
            raise Forbidden()
        await session.delete(item)
        await session.commit()
