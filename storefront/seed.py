import asyncio
import logging

import sqlalchemy as sa
from werkzeug.security import generate_password_hash

from .categories.model import Category
from .common.config import settings
from .common.database import init_db, AsyncSessionLocal
from .common.policy import ROLE_ADMIN
from .common.text import slugify
from .products.model import Product
from .users.model import User

_logger = logging.getLogger(__name__)


SAMPLE_CATEGORIES = [
    {"name": "Electronics", "description": "Computers, peripherals and gadgets"},
    {"name": "Audio", "description": "Headphones and speakers"},
    {"name": "Accessories", "description": "Chargers, hubs and cables"},
]

SAMPLE_PRODUCTS = [
    {"name": "Laptop Pro 14", "category": "Electronics", "stock": 20, "price": 1499.00},
    {"name": "Wireless Mouse", "category": "Electronics", "stock": 150, "price": 24.99},
    {"name": "Mechanical Keyboard", "category": "Electronics", "stock": 80, "price": 89.99},
    {"name": "4K Monitor 27\"", "category": "Electronics", "stock": 25, "price": 329.99},
    {"name": "Webcam 1080p", "category": "Electronics", "stock": 75, "price": 49.99},
    {"name": "Noise-cancelling Headphones", "category": "Audio", "stock": 35, "price": 199.99},
    {"name": "Bluetooth Speaker", "category": "Audio", "stock": 40, "price": 59.99},
    {"name": "USB-C Hub", "category": "Accessories", "stock": 120, "price": 39.99},
    {"name": "Portable SSD 1TB", "category": "Accessories", "stock": 60, "price": 99.99},
    {"name": "Smartphone Charger 65W", "category": "Accessories", "stock": 200, "price": 19.99},
]


async def seed() -> int:
    """Insert the default admin and the sample catalog; existing rows are left alone."""
    added = 0
    async with AsyncSessionLocal() as session:
        res = await session.execute(sa.select(User.id).where(User.email == settings.DEFAULT_ADMIN_EMAIL))
        if not res.first():
            session.add(
                User(
                    name=settings.DEFAULT_ADMIN_NAME,
                    email=settings.DEFAULT_ADMIN_EMAIL,
                    password_hash=generate_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
                    role=ROLE_ADMIN,
                )
            )
            added += 1

        categories = {}
        for c in SAMPLE_CATEGORIES:
            res = await session.execute(sa.select(Category).where(Category.name == c["name"]))
            category = res.scalars().first()
            if category is None:
                category = Category(name=c["name"], slug=slugify(c["name"]), description=c["description"])
                session.add(category)
                await session.flush()  # assign PK
                added += 1
            categories[c["name"]] = category.id

        for i, p in enumerate(SAMPLE_PRODUCTS, start=1):
            # avoid duplicates by name
            res = await session.execute(sa.select(Product.id).where(Product.name == p["name"]))
            if res.first():
                continue
            session.add(
                Product(
                    name=p["name"],
                    slug=slugify(p["name"]),
                    description=f"{p['name']} from the sample catalog",
                    price=p["price"],
                    stock_quantity=p["stock"],
                    sku=f"SKU-SAMPLE-{i:04d}",
                    images=[],
                    category_id=categories[p["category"]],
                )
            )
            added += 1
        if added:
            await session.commit()
    _logger.info("Seed complete. Added %s rows.", added)
    return added


async def amain():
    logging.basicConfig(level=settings.LOG_LEVEL)
    await init_db()
    await seed()


if __name__ == "__main__":
    asyncio.run(amain())
