from typing import List, Optional

from pydantic import BaseModel, Field
from quart import Blueprint, jsonify, request

from ..common.policy import Capability, current_user, public, requires
from ..common.validation import parse_body
from . import service
from .model import STATUS_APPROVED, STATUS_REJECTED

bp = Blueprint("reviews", __name__)


class ReviewIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewCreate(ReviewIn):
    product_id: int


class ApproveIn(BaseModel):
    admin_notes: Optional[str] = Field(default=None, max_length=500)


class RejectIn(BaseModel):
    admin_notes: str = Field(min_length=1, max_length=500)


class BulkApproveIn(ApproveIn):
    review_ids: List[int] = Field(min_length=1)


class BulkRejectIn(RejectIn):
    review_ids: List[int] = Field(min_length=1)


@bp.post("/reviews")
async def review_create():
    body = await parse_body(ReviewCreate)
    review, created = await service.submit_review(current_user().id, body.model_dump())
    if created:
        return jsonify({"message": "Review submitted successfully. It will be visible after approval.", "review": review}), 201
    return jsonify({"message": "Review updated successfully. It will be visible after re-approval.", "review": review})


@bp.get("/reviews/my-reviews")
async def my_reviews():
    return jsonify(await service.my_reviews(current_user().id, request.args))


@bp.put("/reviews/<int:review_id>")
async def review_update(review_id: int):
    body = await parse_body(ReviewIn)
    review = await service.update_review(current_user(), review_id, body.model_dump())
    return jsonify({"message": "Review updated successfully. It will be visible after re-approval.", "review": review})


@bp.delete("/reviews/<int:review_id>")
async def review_delete(review_id: int):
    await service.delete_review(current_user(), review_id)
    return jsonify({"message": "Review deleted successfully"})


@bp.get("/products/<int:product_id>/reviews")
@public
async def product_reviews(product_id: int):
    return jsonify(await service.product_reviews(product_id, current_user(), request.args))


@bp.get("/admin/reviews")
@requires(Capability.MODERATE_REVIEWS)
async def admin_reviews():
    return jsonify(await service.admin_list_reviews(request.args))


@bp.post("/admin/reviews/<int:review_id>/approve")
@requires(Capability.MODERATE_REVIEWS)
async def admin_review_approve(review_id: int):
    body = await parse_body(ApproveIn)
    review = await service.moderate(review_id, STATUS_APPROVED, body.admin_notes)
    return jsonify({"message": "Review approved successfully", "review": review})


@bp.post("/admin/reviews/<int:review_id>/reject")
@requires(Capability.MODERATE_REVIEWS)
async def admin_review_reject(review_id: int):
    body = await parse_body(RejectIn)
    review = await service.moderate(review_id, STATUS_REJECTED, body.admin_notes)
    return jsonify({"message": "Review rejected successfully", "review": review})


@bp.post("/admin/reviews/bulk-approve")
@requires(Capability.MODERATE_REVIEWS)
async def admin_reviews_bulk_approve():
    body = await parse_body(BulkApproveIn)
    count = await service.bulk_moderate(body.review_ids, STATUS_APPROVED, body.admin_notes)
    return jsonify({"message": f"{count} reviews approved successfully", "approved_count": count})


@bp.post("/admin/reviews/bulk-reject")
@requires(Capability.MODERATE_REVIEWS)
async def admin_reviews_bulk_reject():
    body = await parse_body(BulkRejectIn)
    count = await service.bulk_moderate(body.review_ids, STATUS_REJECTED, body.admin_notes)
    return jsonify({"message": f"{count} reviews rejected successfully", "rejected_count": count})
