from typing import Optional

from pydantic import BaseModel, Field
from quart import Blueprint, jsonify, request

from ..common.policy import Capability, current_user, requires
from ..common.validation import parse_body
from . import service
from .serializers import order_to_dict

bp = Blueprint("orders", __name__)


class OrderIn(BaseModel):
    shipping_address: Optional[str] = None
    billing_address: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class StatusIn(BaseModel):
    status: str
    notes: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)


class PaymentStatusIn(BaseModel):
    payment_status: str


@bp.get("/orders")
async def orders_list():
    return jsonify(await service.list_orders(current_user().id, request.args))


@bp.get("/orders/history")
async def orders_history():
    return jsonify(await service.order_history(current_user().id, request.args))


@bp.get("/orders/recent")
async def orders_recent():
    return jsonify(await service.recent_orders(current_user().id))


@bp.get("/orders/statistics")
async def orders_statistics():
    return jsonify(await service.statistics(current_user().id))


@bp.post("/orders")
async def order_place():
    body = await parse_body(OrderIn)
    order = await service.place_order(current_user().id, body.model_dump())
    return jsonify(
        {"message": "Order placed successfully", "order": order_to_dict(order), "order_number": order.order_number}
    ), 201


@bp.get("/orders/<int:order_id>")
async def order_detail(order_id: int):
    return jsonify(await service.get_order(current_user(), order_id))


@bp.post("/orders/<int:order_id>/cancel")
async def order_cancel(order_id: int):
    order = await service.cancel_order(current_user(), order_id)
    return jsonify({"message": "Order cancelled successfully", "order": order_to_dict(order)})


@bp.put("/orders/<int:order_id>/status")
@requires(Capability.MANAGE_ORDERS)
async def order_status_update(order_id: int):
    body = await parse_body(StatusIn)
    result = await service.update_status(order_id, body.status, body.model_dump(exclude_unset=True))
    return jsonify({"message": "Order status updated successfully", **result})


@bp.put("/orders/<int:order_id>/payment-status")
@requires(Capability.MANAGE_ORDERS)
async def order_payment_status_update(order_id: int):
    body = await parse_body(PaymentStatusIn)
    result = await service.update_payment_status(order_id, body.payment_status)
    return jsonify({"message": "Payment status updated successfully", **result})


@bp.get("/admin/orders")
@requires(Capability.MANAGE_ORDERS)
async def admin_orders():
    return jsonify(await service.admin_list_orders(request.args))
