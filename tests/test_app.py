import pytest

from storefront.common.config import settings
from storefront.common.errors import OperationFailed
from storefront.common.policy import Capability, ROLE_ADMIN, ROLE_USER, has_capability, public, required_capability, requires
from storefront.orders import service as order_service


class _Caller:
    def __init__(self, role, id=1):
        self.role = role
        self.id = id


def test_views_default_to_authenticated():
    async def undeclared():
        pass

    @public
    async def open_view():
        pass

    @requires(Capability.MANAGE_ORDERS)
    async def admin_view():
        pass

    assert required_capability(undeclared) is Capability.AUTHENTICATED
    assert required_capability(open_view) is Capability.PUBLIC
    assert required_capability(admin_view) is Capability.MANAGE_ORDERS
    assert required_capability(None) is Capability.PUBLIC


@pytest.mark.parametrize("capability", list(Capability))
def test_role_capabilities(capability):
    assert has_capability(_Caller(ROLE_ADMIN), capability)
    expected = capability in (Capability.PUBLIC, Capability.AUTHENTICATED)
    assert has_capability(_Caller(ROLE_USER), capability) is expected
    assert has_capability(None, capability) is (capability is Capability.PUBLIC)


async def test_health_and_metrics(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert await resp.get_json() == {"status": "ok"}
    assert resp.headers["X-Instance-ID"] == settings.INSTANCE_ID

    await client.get("/products/1")
    metrics = await (await client.get("/metrics")).get_data(as_text=True)
    assert "http_requests_total" in metrics
    assert 'endpoint="/products/<int:product_id>"' in metrics


async def test_unknown_route_is_json(client):
    resp = await client.get("/nowhere")
    assert resp.status_code == 404
    assert "message" in await resp.get_json()


async def test_failures_hide_details_unless_debug(client, shopper, monkeypatch):
    _, headers = shopper

    async def broken(user_id, data):
        raise OperationFailed("Failed to place order", "disk I/O error")

    monkeypatch.setattr(order_service, "place_order", broken)

    resp = await client.post("/orders", json={}, headers=headers)
    assert resp.status_code == 500
    assert await resp.get_json() == {"message": "Failed to place order"}

    monkeypatch.setattr(settings, "APP_DEBUG", True)
    resp = await client.post("/orders", json={}, headers=headers)
    assert (await resp.get_json())["error"] == "disk I/O error"


async def test_unexpected_errors_are_500(client, shopper, monkeypatch):
    _, headers = shopper

    async def boom(user_id):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(order_service, "recent_orders", boom)
    resp = await client.get("/orders/recent", headers=headers)
    assert resp.status_code == 500
    assert "error" not in await resp.get_json()
