from datetime import timedelta

import sqlalchemy as sa

from storefront.common.database import AsyncSessionLocal
from storefront.common.db import utcnow
from storefront.users.model import AccessToken, User


async def test_register_and_login(client, register):
    user, headers = await register("jane@example.com", "Jane", country="NL")
    assert user["role"] == "user"
    assert "password_hash" not in user
    assert user["country"] == "NL"

    resp = await client.post("/login", json={"email": "jane@example.com", "password": "secret123"})
    assert resp.status_code == 200
    body = await resp.get_json()
    assert body["user"]["last_login_at"] is not None
    token_id, _, secret = body["token"].partition("|")
    assert token_id.isdigit() and secret

    async with AsyncSessionLocal() as session:
        stored = (await session.execute(sa.select(AccessToken.token_hash))).scalars().all()
    assert secret not in stored


async def test_register_rejects_bad_input(client, register):
    await register("taken@example.com")
    resp = await client.post(
        "/register",
        json={"name": "X", "email": "taken@example.com", "password": "secret123", "password_confirmation": "secret123"},
    )
    assert resp.status_code == 422
    assert "email" in (await resp.get_json())["errors"]

    resp = await client.post(
        "/register", json={"name": "X", "email": "x@example.com", "password": "secret123", "password_confirmation": "nope"}
    )
    assert resp.status_code == 422

    resp = await client.post("/register", json={"name": "X", "email": "not-an-email", "password": "short"})
    body = await resp.get_json()
    assert resp.status_code == 422
    assert {"email", "password"} <= set(body["errors"])


async def test_register_cannot_choose_role(client, register):
    user, _ = await register("sneaky@example.com", role="admin")
    assert user["role"] == "user"


async def test_bad_credentials(client, register):
    await register("jane@example.com")
    resp = await client.post("/login", json={"email": "jane@example.com", "password": "wrong-pass"})
    assert resp.status_code == 422
    assert (await resp.get_json())["errors"]["email"] == ["The provided credentials are incorrect."]


async def test_logout_revokes_token(client, shopper):
    _, headers = shopper
    assert (await client.get("/user", headers=headers)).status_code == 200
    assert (await client.post("/logout", headers=headers)).status_code == 200
    assert (await client.get("/user", headers=headers)).status_code == 401


async def test_garbage_tokens_are_unauthenticated(client, shopper):
    user, headers = shopper
    token_id = headers["Authorization"].split()[1].split("|")[0]
    for value in ("Bearer nonsense", f"Bearer {token_id}|wrong", "Basic abc"):
        assert (await client.get("/user", headers={"Authorization": value})).status_code == 401
    # a bad token on a public route is simply ignored
    assert (await client.get("/products", headers={"Authorization": "Bearer nonsense"})).status_code == 200


async def test_profile(client, shopper):
    _, headers = shopper
    resp = await client.put(
        "/profile",
        json={"name": "Renamed", "city": "Utrecht", "country": "NL", "email": "new@example.com", "role": "admin"},
        headers=headers,
    )
    assert resp.status_code == 200
    body = await resp.get_json()
    assert body["user"]["name"] == "Renamed"
    assert body["user"]["email"] == "shopper@example.com"
    assert body["user"]["role"] == "user"
    assert body["full_address"] == "Utrecht, NL"

    profile = await (await client.get("/profile", headers=headers)).get_json()
    assert profile["recent_orders"] == []
    assert profile["full_address"] == "Utrecht, NL"

    stats = await (await client.get("/profile/stats", headers=headers)).get_json()
    assert stats["stats"]["total_orders"] == 0
    assert stats["stats"]["total_spent"] == 0


async def test_password_change(client, shopper):
    _, headers = shopper
    resp = await client.put(
        "/profile/password",
        json={"current_password": "wrong-one", "new_password": "brand-new-1", "new_password_confirmation": "brand-new-1"},
        headers=headers,
    )
    assert resp.status_code == 422

    resp = await client.put(
        "/profile/password",
        json={"current_password": "secret123", "new_password": "brand-new-1", "new_password_confirmation": "brand-new-1"},
        headers=headers,
    )
    assert resp.status_code == 200
    login = await client.post("/login", json={"email": "shopper@example.com", "password": "brand-new-1"})
    assert login.status_code == 200


async def test_admin_endpoints_forbidden_for_shoppers(client, shopper):
    user, headers = shopper
    for method, url in (
        ("get", "/admin/users"),
        ("get", "/admin/users/stats"),
        ("post", "/admin/users"),
        ("put", f"/admin/users/{user['id']}"),
        ("delete", f"/admin/users/{user['id']}"),
        ("get", "/admin/reviews"),
    ):
        resp = await getattr(client, method)(url, json={}, headers=headers)
        assert resp.status_code == 403, url
        assert (await resp.get_json())["message"] == "Unauthorized"

    async with AsyncSessionLocal() as session:
        assert await session.get(User, user["id"]) is not None


async def test_admin_user_management(client, shopper, admin):
    user, _ = shopper
    me, admin_headers = admin

    resp = await client.post(
        "/admin/users",
        json={
            "name": "Staff",
            "email": "staff@example.com",
            "password": "staff-pass",
            "password_confirmation": "staff-pass",
            "role": "admin",
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201
    staff = (await resp.get_json())["user"]
    assert staff["role"] == "admin"

    listing = await (await client.get("/admin/users?role=admin", headers=admin_headers)).get_json()
    assert listing["pagination"]["total"] == 2
    assert listing["stats"]["total_users"] == 3
    assert listing["stats"]["regular_users"] == 1

    search = await (await client.get("/admin/users?search=shopper", headers=admin_headers)).get_json()
    assert [u["id"] for u in search["data"]] == [user["id"]]

    resp = await client.put(f"/admin/users/{user['id']}", json={"email": "staff@example.com"}, headers=admin_headers)
    assert resp.status_code == 422
    resp = await client.put(f"/admin/users/{user['id']}", json={"city": "Delft"}, headers=admin_headers)
    assert (await resp.get_json())["user"]["city"] == "Delft"

    detail = await (await client.get(f"/admin/users/{user['id']}", headers=admin_headers)).get_json()
    assert detail["user"]["orders_count"] == 0
    assert detail["order_stats"]["total_spent"] == 0

    stats = await (await client.get("/admin/users/stats", headers=admin_headers)).get_json()
    assert stats["total_users"] == 3
    assert stats["user_growth"][-1]["total_users"] == 3

    resp = await client.put(
        f"/admin/users/{user['id']}/password",
        json={"new_password": "reset-pass-1", "new_password_confirmation": "reset-pass-1"},
        headers=admin_headers,
    )
    assert resp.status_code == 200

    assert (await client.delete(f"/admin/users/{me['id']}", headers=admin_headers)).status_code == 400
    assert (await client.delete(f"/admin/users/{user['id']}", headers=admin_headers)).status_code == 200
    assert (await client.get(f"/admin/users/{user['id']}", headers=admin_headers)).status_code == 404


async def test_active_filter_uses_last_login(client, register, admin):
    _, admin_headers = admin
    stale, _ = await register("stale@example.com", "Stale")
    async with AsyncSessionLocal() as session:
        await session.execute(
            sa.update(User).where(User.id == stale["id"]).values(last_login_at=utcnow() - timedelta(days=90))
        )
        await session.commit()

    active = await (await client.get("/admin/users?status=active", headers=admin_headers)).get_json()
    inactive = await (await client.get("/admin/users?status=inactive", headers=admin_headers)).get_json()
    assert [u["email"] for u in active["data"]] == ["admin@example.com"]
    assert [u["email"] for u in inactive["data"]] == ["stale@example.com"]


async def test_token_last_used_is_throttled(client, shopper):
    _, headers = shopper
    token_id = int(headers["Authorization"].split()[1].partition("|")[0])

    async def last_used():
        async with AsyncSessionLocal() as session:
            return (await session.get(AccessToken, token_id)).last_used_at

    assert (await client.get("/user", headers=headers)).status_code == 200
    first = await last_used()
    assert first is not None

    # a second request inside the interval leaves the row alone
    assert (await client.get("/user", headers=headers)).status_code == 200
    assert await last_used() == first

    stale = utcnow() - timedelta(minutes=5)
    async with AsyncSessionLocal() as session:
        await session.execute(sa.update(AccessToken).where(AccessToken.id == token_id).values(last_used_at=stale))
        await session.commit()
    assert (await client.get("/user", headers=headers)).status_code == 200
    assert await last_used() > stale
