from typing import Optional

from pydantic import BaseModel, Field
from quart import Blueprint, jsonify

from ..common.policy import Capability, public, requires
from ..common.validation import parse_body
from . import service

bp = Blueprint("categories", __name__)


class CategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None


@bp.get("/categories")
@public
async def categories_list():
    return jsonify(await service.list_categories())


@bp.get("/categories/<int:category_id>")
@public
async def category_detail(category_id: int):
    return jsonify(await service.get_category(category_id))


@bp.post("/categories")
@requires(Capability.MANAGE_CATALOG)
async def category_create():
    body = await parse_body(CategoryIn)
    category = await service.create_category(body.model_dump())
    return jsonify({"message": "Category created successfully", "category": category}), 201


@bp.put("/categories/<int:category_id>")
@requires(Capability.MANAGE_CATALOG)
async def category_update(category_id: int):
    body = await parse_body(CategoryIn)
    category = await service.update_category(category_id, body.model_dump())
    return jsonify({"message": "Category updated successfully", "category": category})


@bp.delete("/categories/<int:category_id>")
@requires(Capability.MANAGE_CATALOG)
async def category_delete(category_id: int):
    await service.delete_category(category_id)
    return jsonify({"message": "Category deleted successfully"})
