from typing import Any, Dict

from ..categories.serializers import category_brief
from ..common.db import isoformat, is_loaded
from .model import Product


def product_brief(product: Product) -> Dict[str, Any]:
    return {"id": product.id, "name": product.name, "price": product.price, "images": product.images or []}


def product_to_dict(product: Product, **extra: Any) -> Dict[str, Any]:
    data = {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "price": product.price,
        "stock_quantity": product.stock_quantity,
        "sku": product.sku,
        "images": product.images or [],
        "is_active": product.is_active,
        "category_id": product.category_id,
        "created_at": isoformat(product.created_at),
        "updated_at": isoformat(product.updated_at),
    }
    if is_loaded(product, "category"):
        data["category"] = category_brief(product.category) if product.category else None
    data.update(extra)
    return data
