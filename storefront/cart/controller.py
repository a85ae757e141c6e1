from pydantic import BaseModel, Field
from quart import Blueprint, jsonify

from ..common.policy import current_user
from ..common.validation import parse_body
from . import service

bp = Blueprint("cart", __name__)


class CartAdd(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class CartUpdate(BaseModel):
    quantity: int = Field(ge=1)


@bp.get("/cart")
async def cart_get():
    return jsonify(await service.get_cart(current_user().id))


@bp.post("/cart")
async def cart_add():
    body = await parse_body(CartAdd)
    item = await service.add_item(current_user().id, body.product_id, body.quantity)
    return jsonify({"message": "Added to cart", "cart_item": item}), 201


@bp.put("/cart/<int:item_id>")
async def cart_update(item_id: int):
    body = await parse_body(CartUpdate)
    item = await service.update_item(current_user().id, item_id, body.quantity)
    return jsonify({"message": "Cart updated", "cart_item": item})


@bp.delete("/cart/<int:item_id>")
async def cart_remove(item_id: int):
    await service.remove_item(current_user().id, item_id)
    return jsonify({"message": "Removed from cart"})


@bp.delete("/cart")
async def cart_clear():
    await service.clear_cart(current_user().id)
    return jsonify({"message": "Cart cleared"})
