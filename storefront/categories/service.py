import logging
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..common.database import AsyncSessionLocal
from ..common.errors import NotFound, ValidationFailed
from ..common.text import slugify
from ..products.serializers import product_to_dict
from .model import Category
from .serializers import category_to_dict

_logger = logging.getLogger(__name__)


async def _name_taken(session: AsyncSession, name: str, exclude_id: Optional[int] = None) -> bool:
    stmt = sa.select(Category.id).where(Category.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    return (await session.execute(stmt)).first() is not None


async def list_categories() -> List[Dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        res = await session.execute(sa.select(Category).where(Category.is_active.is_(True)).order_by(Category.name))
        return [category_to_dict(c) for c in res.scalars().all()]


async def get_category(category_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        category = await session.get(Category, category_id, options=[selectinload(Category.products)])
        if category is None:
            raise NotFound("Category")
        data = category_to_dict(category)
        data["products"] = [product_to_dict(p) for p in category.products]
        return data


async def create_category(data: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        if await _name_taken(session, data["name"]):
            raise ValidationFailed.single("name", "The name has already been taken.")
        category = Category(
            name=data["name"],
            slug=slugify(data["name"]),
            description=data.get("description"),
            image=data.get("image"),
        )
        session.add(category)
        try:
            await session.commit()
        except IntegrityError:
            raise ValidationFailed.single("name", "The name has already been taken.")
    _logger.info("Category created | category_id=%s name=%s", category.id, category.name)
    return category_to_dict(category)


async def update_category(category_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        category = await session.get(Category, category_id)
        if category is None:
            raise NotFound("Category")
        if await _name_taken(session, data["name"], exclude_id=category_id):
            raise ValidationFailed.single("name", "The name has already been taken.")
        category.name = data["name"]
        category.slug = slugify(data["name"])
        category.description = data.get("description")
        category.image = data.get("image")
        if data.get("is_active") is not None:
            category.is_active = data["is_active"]
        await session.commit()
    _logger.info("Category updated | category_id=%s", category_id)
    return category_to_dict(category)


async def delete_category(category_id: int) -> None:
    async with AsyncSessionLocal() as session:
        category = await session.get(Category, category_id)
        if category is None:
            raise NotFound("Category")
        await session.delete(category)
        await session.commit()
    _logger.info("Category deleted | category_id=%s", category_id)
