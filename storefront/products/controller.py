from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl
from quart import Blueprint, jsonify, request

from ..common.policy import Capability, current_user, public, requires
from ..common.validation import parse_body
from . import service

bp = Blueprint("products", __name__)


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str
    price: float = Field(ge=0)
    stock_quantity: int = Field(ge=0)
    category_id: int
    images: Optional[List[HttpUrl]] = None
    sku: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None

    def to_data(self):
        data = self.model_dump()
        if self.images is not None:
            data["images"] = [str(url) for url in self.images]
        return data


@bp.get("/products")
@public
async def products_list():
    return jsonify(await service.list_products(request.args))


# static paths are declared before /products/<int:product_id>
@bp.get("/products/search")
@public
async def products_search():
    return jsonify(await service.search_products(request.args))


@bp.get("/products/most-sold")
@public
async def products_most_sold():
    return jsonify(await service.most_sold(request.args))


@bp.get("/products/most-reviewed")
@public
async def products_most_reviewed():
    return jsonify(await service.most_reviewed(request.args))


@bp.get("/products/trending")
@public
async def products_trending():
    return jsonify(await service.trending(request.args))


@bp.get("/products/<int:product_id>")
@public
async def product_detail(product_id: int):
    return jsonify(await service.get_product(product_id, viewer=current_user()))


@bp.post("/products")
@requires(Capability.MANAGE_CATALOG)
async def product_create():
    body = await parse_body(ProductIn)
    product = await service.create_product(body.to_data())
    return jsonify({"success": True, "message": "Product created successfully", "data": product}), 201


@bp.put("/products/<int:product_id>")
@requires(Capability.MANAGE_CATALOG)
async def product_update(product_id: int):
    body = await parse_body(ProductIn)
    product = await service.update_product(product_id, body.to_data(), body.model_fields_set)
    return jsonify({"success": True, "message": "Product updated successfully", "data": product})


@bp.delete("/products/<int:product_id>")
@requires(Capability.MANAGE_CATALOG)
async def product_delete(product_id: int):
    return jsonify(await service.delete_product(product_id))
