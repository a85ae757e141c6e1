from pydantic import BaseModel
from quart import Blueprint, jsonify

from ..common.policy import current_user
from ..common.validation import parse_body
from . import service

bp = Blueprint("wishlist", __name__)


class WishlistAdd(BaseModel):
    product_id: int


@bp.get("/wishlist")
async def wishlist_get():
    return jsonify(await service.list_items(current_user().id))


@bp.post("/wishlist")
async def wishlist_add():
    body = await parse_body(WishlistAdd)
    item = await service.add_item(current_user().id, body.product_id)
    return jsonify({"message": "Added to wishlist", "wishlist": item}), 201


@bp.delete("/wishlist/<int:item_id>")
async def wishlist_remove(item_id: int):
    await service.remove_item(current_user().id, item_id)
    return jsonify({"message": "Removed from wishlist"})
