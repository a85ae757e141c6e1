from typing import Any, Dict

from ..common.db import isoformat, is_loaded
from ..products.serializers import product_brief
from ..users.serializers import user_brief
from .model import Review


def review_to_dict(review: Review) -> Dict[str, Any]:
    data = {
        "id": review.id,
        "user_id": review.user_id,
        "product_id": review.product_id,
        "rating": review.rating,
        "comment": review.comment,
        "status": review.status,
        "admin_notes": review.admin_notes,
        "created_at": isoformat(review.created_at),
        "updated_at": isoformat(review.updated_at),
    }
    if is_loaded(review, "user") and review.user is not None:
        data["user"] = user_brief(review.user)
    if is_loaded(review, "product") and review.product is not None:
        data["product"] = product_brief(review.product)
    return data
