import re

import sqlalchemy as sa

from storefront.common.database import AsyncSessionLocal
from storefront.orders.model import Order, OrderItem
from storefront.reviews.model import Review


async def add_review(user_id, product_id, rating, status="approved"):
    async with AsyncSessionLocal() as session:
        session.add(Review(user_id=user_id, product_id=product_id, rating=rating, status=status))
        await session.commit()


async def add_sale(user_id, product_id, quantity, price=10.0, status="delivered"):
    async with AsyncSessionLocal() as session:
        order = Order(user_id=user_id, total_amount=quantity * price, status=status)
        session.add(order)
        await session.flush()
        session.add(OrderItem(order_id=order.id, product_id=product_id, quantity=quantity, price=price))
        await session.commit()


def names(body):
    return [p["name"] for p in body["data"]]


async def test_categories_crud_and_policy(client, shopper, admin):
    _, headers = shopper
    _, admin_headers = admin

    assert (await client.post("/categories", json={"name": "Toys"}, headers=headers)).status_code == 403
    resp = await client.post("/categories", json={"name": "Board Games"}, headers=admin_headers)
    assert resp.status_code == 201
    category = (await resp.get_json())["category"]
    assert category["slug"] == "board-games"

    dup = await client.post("/categories", json={"name": "Board Games"}, headers=admin_headers)
    assert dup.status_code == 422

    resp = await client.put(
        f"/categories/{category['id']}", json={"name": "Games", "is_active": False}, headers=admin_headers
    )
    assert (await resp.get_json())["category"]["slug"] == "games"
    assert await (await client.get("/categories")).get_json() == []

    assert (await client.delete(f"/categories/{category['id']}", headers=admin_headers)).status_code == 200
    assert (await client.get(f"/categories/{category['id']}")).status_code == 404


async def test_listing_filters_and_sorts(client, make_product, make_category):
    books = await make_category("Books")
    await make_product("Alpha Book", price=5.0, stock=0, category_id=books)
    await make_product("Beta Lamp", price=50.0, stock=3)
    await make_product("Gamma Lamp", price=20.0, stock=1)
    await make_product("Hidden Lamp", price=1.0, stock=9, is_active=False)

    body = await (await client.get("/products?sort_by=price&sort_order=asc")).get_json()
    assert names(body) == ["Alpha Book", "Gamma Lamp", "Beta Lamp"]
    assert body["pagination"]["total"] == 3
    assert body["data"][0]["category"]["name"] == "Books"

    body = await (await client.get("/products?search=lamp&min_price=10&max_price=30")).get_json()
    assert names(body) == ["Gamma Lamp"]
    assert body["filters"]["search"] == "lamp"

    body = await (await client.get(f"/products?in_stock=1&category_id={books}")).get_json()
    assert names(body) == []

    body = await (await client.get("/products?category_slug=books")).get_json()
    assert names(body) == ["Alpha Book"]

    # unknown sort keys fall back to newest first
    body = await (await client.get("/products?sort_by=nonsense")).get_json()
    assert names(body) == ["Gamma Lamp", "Beta Lamp", "Alpha Book"]

    body = await (await client.get("/products?per_page=2&page=2")).get_json()
    assert body["pagination"] == {"current_page": 2, "per_page": 2, "total": 3, "last_page": 2, "from": 3, "to": 3}

    assert (await client.get("/products?min_price=cheap")).status_code == 422


async def test_rating_and_popularity_sorts(client, shopper, make_product):
    user, _ = shopper
    a = await make_product("A")
    b = await make_product("B")
    c = await make_product("C")
    await add_review(user["id"], a, 2)
    await add_review(user["id"], b, 5)
    await add_review(user["id"], c, 1, status="pending")
    await add_sale(user["id"], c, 7)
    await add_sale(user["id"], a, 2)
    await add_sale(user["id"], b, 50, status="cancelled")

    body = await (await client.get("/products?sort_by=rating&sort_order=desc")).get_json()
    assert names(body)[:2] == ["B", "A"]
    assert body["data"][0]["average_rating"] == 5.0
    assert body["data"][0]["total_reviews"] == 1

    body = await (await client.get("/products?sort_by=popularity&sort_order=desc")).get_json()
    assert names(body) == ["C", "A", "B"]

    body = await (await client.get("/products?min_rating=3")).get_json()
    assert names(body) == ["B"]


async def test_search(client, make_product):
    await make_product("Desk Lamp", description="Bright light")
    await make_product("Lampshade", description="Fabric")
    await make_product("Torch", description="Portable lamp")

    body = await (await client.get("/products/search?query=lamp")).get_json()
    assert names(body) == ["Lampshade", "Torch", "Desk Lamp"]
    assert body["search_query"] == "lamp"

    body = await (await client.get("/products/search?query=lamp&sort_by=newest&limit=1")).get_json()
    assert names(body) == ["Torch"]

    assert (await client.get("/products/search?query=l")).status_code == 422
    assert (await client.get("/products/search?query=lamp&sort_by=weird")).status_code == 422


async def test_product_detail(client, shopper, admin, make_product):
    user, _ = shopper
    _, admin_headers = admin
    pid = await make_product("Main")
    sibling = await make_product("Sibling")
    hidden = await make_product("Gone", is_active=False)
    await add_review(user["id"], pid, 4)
    await add_review(user["id"], pid, 1, status="rejected")
    await add_sale(user["id"], pid, 3, status="pending")

    body = await (await client.get(f"/products/{pid}")).get_json()
    product = body["data"]["product"]
    assert product["average_rating"] == 4.0
    assert product["total_reviews"] == 1
    assert len(product["approved_reviews"]) == 1
    assert product["rating_distribution"][1] == {"rating": 4, "count": 1, "percentage": 100.0}
    assert product["sales_data"] == {"total_sold": 3, "total_orders": 1}
    assert [p["id"] for p in body["data"]["related_products"]] == [sibling]

    resp = await client.get(f"/products/{hidden}")
    assert resp.status_code == 404
    assert (await resp.get_json())["message"] == "Product is not available"
    assert (await client.get(f"/products/{hidden}", headers=admin_headers)).status_code == 200
    assert (await client.get("/products/999")).status_code == 404


async def test_most_sold_and_trending(client, shopper, make_product, make_category):
    user, _ = shopper
    other = await make_category("Other")
    a = await make_product("A")
    b = await make_product("B")
    c = await make_product("C", category_id=other)
    await add_sale(user["id"], a, 2)
    await add_sale(user["id"], b, 5)
    await add_sale(user["id"], b, 1)
    await add_sale(user["id"], c, 9)
    await add_sale(user["id"], a, 40, status="pending")
    await add_review(user["id"], a, 5)

    body = await (await client.get("/products/most-sold")).get_json()
    assert names(body) == ["C", "B", "A"]
    assert body["data"][1]["total_sold"] == 6
    assert body["data"][1]["total_orders"] == 2
    assert body["meta"]["total_sold_sum"] == 17

    body = await (await client.get(f"/products/most-sold?category_id={other}")).get_json()
    assert names(body) == ["C"]
    body = await (await client.get("/products/most-sold?min_sold=5&limit=1")).get_json()
    assert names(body) == ["C"]
    assert (await client.get("/products/most-sold?limit=51")).status_code == 422
    assert (await client.get("/products/most-sold?category_id=999")).status_code == 422

    body = await (await client.get("/products/trending")).get_json()
    scores = {p["name"]: p["trending_score"] for p in body["data"]}
    # 0.5 * sold + 0.3 * approved reviews + 0.2 * (rating * 10)
    assert scores["A"] == 2 * 0.5 + 1 * 0.3 + 5 * 10 * 0.2
    assert scores["C"] == 4.5
    assert names(body)[0] == "A"


async def test_most_reviewed(client, register, make_product):
    a = await make_product("A")
    b = await make_product("B")
    for n, (pid, rating, status) in enumerate([(a, 5, "approved"), (a, 3, "pending"), (b, 4, "approved")]):
        user, _ = await register(f"m{n}@example.com", f"M{n}")
        await add_review(user["id"], pid, rating, status=status)

    body = await (await client.get("/products/most-reviewed")).get_json()
    assert names(body) == ["A", "B"]
    top = body["data"][0]
    assert (top["total_reviews"], top["approved_reviews"], top["pending_reviews"]) == (2, 1, 1)
    assert top["average_rating"] == 4.0
    assert "rating_distribution" in top

    body = await (await client.get("/products/most-reviewed?review_type=pending")).get_json()
    assert names(body) == ["A"]
    body = await (await client.get("/products/most-reviewed?min_reviews=2")).get_json()
    assert names(body) == ["A"]


async def test_admin_product_management(client, shopper, admin, make_category, make_product):
    user, headers = shopper
    _, admin_headers = admin
    cat = await make_category("Tools")
    payload = {"name": "Hammer", "description": "Steel", "price": 12.5, "stock_quantity": 4, "category_id": cat}

    assert (await client.post("/products", json=payload, headers=headers)).status_code == 403
    resp = await client.post("/products", json=payload, headers=admin_headers)
    assert resp.status_code == 201
    product = (await resp.get_json())["data"]
    assert re.fullmatch(r"SKU-[A-Z0-9]{8}-\d+", product["sku"])
    assert product["slug"].startswith("hammer-")
    assert product["category"]["id"] == cat

    assert (await client.post("/products", json=payload, headers=admin_headers)).status_code == 422
    bad = dict(payload, name="Saw", category_id=999)
    assert (await client.post("/products", json=bad, headers=admin_headers)).status_code == 422
    bad = dict(payload, name="Saw", sku=product["sku"])
    assert (await client.post("/products", json=bad, headers=admin_headers)).status_code == 422

    resp = await client.put(f"/products/{product['id']}", json=dict(payload, price=15.0), headers=admin_headers)
    updated = (await resp.get_json())["data"]
    assert updated["price"] == 15.0
    assert updated["sku"] == product["sku"]

    sold = await make_product("Sold Out")
    await add_sale(user["id"], sold, 1)
    body = await (await client.delete(f"/products/{sold}", headers=admin_headers)).get_json()
    assert body["data"]["is_active"] is False

    body = await (await client.delete(f"/products/{product['id']}", headers=admin_headers)).get_json()
    assert body["message"] == "Product deleted successfully"
    assert (await client.get(f"/products/{product['id']}")).status_code == 404
