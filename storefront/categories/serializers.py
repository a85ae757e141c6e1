from typing import Any, Dict

from ..common.db import isoformat
from .model import Category


def category_brief(category: Category) -> Dict[str, Any]:
    return {"id": category.id, "name": category.name, "slug": category.slug}


def category_to_dict(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image": category.image,
        "is_active": category.is_active,
        "created_at": isoformat(category.created_at),
        "updated_at": isoformat(category.updated_at),
    }
