import os
import tempfile

# Point the engine at a throwaway SQLite file before the app modules read settings
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DB_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"

import pytest  # noqa: E402
import sqlalchemy as sa  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402

from storefront.app import create_app  # noqa: E402
from storefront.categories.model import Category  # noqa: E402
from storefront.common.database import AsyncSessionLocal, engine, reset_db  # noqa: E402
from storefront.common.policy import ROLE_ADMIN  # noqa: E402
from storefront.common.text import slugify  # noqa: E402
from storefront.products.model import Product  # noqa: E402
from storefront.users.model import User  # noqa: E402

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-secret"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def app():
    await reset_db()
    yield create_app()
    await engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    async def _register(email="shopper@example.com", name="Shopper", password="secret123", **extra):
        resp = await client.post(
            "/register",
            json={"name": name, "email": email, "password": password, "password_confirmation": password, **extra},
        )
        assert resp.status_code == 201, await resp.get_data(as_text=True)
        body = await resp.get_json()
        return body["user"], bearer(body["token"])

    return _register


@pytest.fixture
async def shopper(register):
    return await register()


@pytest.fixture
async def admin(client):
    async with AsyncSessionLocal() as session:
        session.add(
            User(name="Admin", email=ADMIN_EMAIL, password_hash=generate_password_hash(ADMIN_PASSWORD), role=ROLE_ADMIN)
        )
        await session.commit()
    resp = await client.post("/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    body = await resp.get_json()
    return body["user"], bearer(body["token"])


@pytest.fixture
def make_category():
    async def _make(name="General", is_active=True):
        async with AsyncSessionLocal() as session:
            category = Category(name=name, slug=slugify(name), is_active=is_active)
            session.add(category)
            await session.commit()
            return category.id

    return _make


@pytest.fixture
def make_product(make_category):
    async def _make(name="Widget", price=10.0, stock=5, category_id=None, is_active=True, description=None):
        if category_id is None:
            async with AsyncSessionLocal() as session:
                res = await session.execute(sa.select(Category.id).where(Category.name == "General"))
                category_id = res.scalar()
            if category_id is None:
                category_id = await make_category("General")
        async with AsyncSessionLocal() as session:
            product = Product(
                name=name,
                slug=slugify(name),
                description=description or f"A {name}",
                price=price,
                stock_quantity=stock,
                sku=f"SKU-{slugify(name).upper()}",
                images=[],
                is_active=is_active,
                category_id=category_id,
            )
            session.add(product)
            await session.commit()
            return product.id

    return _make


@pytest.fixture
def stock_of():
    async def _stock(product_id):
        async with AsyncSessionLocal() as session:
            res = await session.execute(sa.select(Product.stock_quantity).where(Product.id == product_id))
            return res.scalar()

    return _stock
