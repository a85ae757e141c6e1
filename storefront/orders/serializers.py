from typing import Any, Dict

from ..common.db import isoformat, is_loaded
from ..products.serializers import product_to_dict
from ..users.serializers import user_brief
from .model import Order, OrderItem


def order_item_to_dict(item: OrderItem) -> Dict[str, Any]:
    data = {
        "id": item.id,
        "order_id": item.order_id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "price": item.price,
        "subtotal": round(item.quantity * item.price, 2),
    }
    if is_loaded(item, "product"):
        data["product"] = product_to_dict(item.product) if item.product else None
    return data


def order_to_dict(order: Order) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "total_amount": order.total_amount,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "tracking_number": order.tracking_number,
        "notes": order.notes,
        "created_at": isoformat(order.created_at),
        "updated_at": isoformat(order.updated_at),
    }
    if is_loaded(order, "items"):
        data["items"] = [order_item_to_dict(i) for i in order.items]
    if is_loaded(order, "user") and order.user is not None:
        data["user"] = user_brief(order.user)
    return data
