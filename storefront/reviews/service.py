import logging
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..common.database import AsyncSessionLocal
from ..common.errors import BusinessRuleError, Forbidden, NotFound, ValidationFailed
from ..common.pagination import page_args, paginate
from ..common.policy import Capability, ensure_owner_or, has_capability
from ..common.validation import date_range_args, int_arg
from ..products.model import Product
from .model import Review, STATUSES, STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED
from .serializers import review_to_dict
from .stats import product_rating, rating_distribution

_logger = logging.getLogger(__name__)

PRODUCT_REVIEW_SORTS = ("rating", "created_at")


async def _get_review(session: AsyncSession, review_id: int) -> Review:
    review = await session.get(
        Review,
        review_id,
        options=[selectinload(Review.user), selectinload(Review.product)],
        populate_existing=True,
    )
    if review is None:
        raise NotFound("Review")
    return review


async def _status_stats(session: AsyncSession, *criteria) -> Dict[str, Any]:
    def status_count(status):
        return sa.func.sum(sa.case((Review.status == status, 1), else_=0))

    res = await session.execute(
        sa.select(
            sa.func.count(Review.id),
            status_count(STATUS_APPROVED),
            status_count(STATUS_PENDING),
            status_count(STATUS_REJECTED),
        ).where(*criteria)
    )
    total, approved, pending, rejected = res.one()
    avg = await session.execute(sa.select(sa.func.avg(Review.rating)).where(*criteria, Review.status == STATUS_APPROVED))
    return {
        "total_reviews": int(total or 0),
        "approved_reviews": int(approved or 0),
        "pending_reviews": int(pending or 0),
        "rejected_reviews": int(rejected or 0),
        "average_rating": float(avg.scalar() or 0),
    }


def _filter_status(stmt, args):
    # unknown statuses are ignored rather than rejected
    if args.get("status") in STATUSES:
        stmt = stmt.where(Review.status == args["status"])
    return stmt


async def submit_review(user_id: int, data: Dict[str, Any]):
    """Create the caller's review, or rewrite the existing one and send it back to moderation.

    Returns ``(review, created)``.
    """
    async with AsyncSessionLocal() as session:
        if await session.get(Product, data["product_id"]) is None:
            raise ValidationFailed.single("product_id", "The selected product id is invalid.")
        res = await session.execute(
            sa.select(Review).where(Review.user_id == user_id, Review.product_id == data["product_id"])
        )
        review = res.scalars().first()
        created = review is None
        if created:
            review = Review(user_id=user_id, product_id=data["product_id"], status=STATUS_PENDING)
            session.add(review)
        else:
            _logger.warning("Duplicate review, updating existing | review_id=%s user_id=%s", review.id, user_id)
        review.rating = data["rating"]
        review.comment = data.get("comment")
        review.status = STATUS_PENDING
        review.admin_notes = None
        await session.commit()
        review = await _get_review(session, review.id)
    _logger.info("Review submitted | review_id=%s product_id=%s created=%s", review.id, review.product_id, created)
    return review_to_dict(review), created


async def my_reviews(user_id: int, args) -> Dict[str, Any]:
    stmt = (
        sa.select(Review)
        .options(selectinload(Review.user), selectinload(Review.product))
        .where(Review.user_id == user_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    stmt = _filter_status(stmt, args)
    product_id = int_arg(args, "product_id")
    if product_id is not None:
        stmt = stmt.where(Review.product_id == product_id)
    rating = int_arg(args, "rating")
    if rating is not None:
        stmt = stmt.where(Review.rating == rating)
    window = date_range_args(args)
    if window:
        stmt = stmt.where(Review.created_at.between(*window))

    page, per_page = page_args(args, 15)
    async with AsyncSessionLocal() as session:
        reviews, meta = await paginate(session, stmt, page, per_page)
        stats = await _status_stats(session, Review.user_id == user_id)
    return {
        "data": [review_to_dict(r) for r in reviews],
        "pagination": meta,
        "stats": stats,
        "filters": {k: args[k] for k in ("status", "product_id", "rating") if k in args},
    }


async def update_review(user, review_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        review = await _get_review(session, review_id)
        if review.user_id != user.id:
            raise Forbidden()
        if review.status == STATUS_APPROVED:
            raise BusinessRuleError("Approved reviews cannot be modified")
        review.rating = data["rating"]
        review.comment = data.get("comment")
        review.status = STATUS_PENDING
        review.admin_notes = None
        await session.commit()
        review = await _get_review(session, review_id)
    _logger.info("Review updated | review_id=%s", review_id)
    return review_to_dict(review)


async def delete_review(user, review_id: int) -> None:
    async with AsyncSessionLocal() as session:
        review = await session.get(Review, review_id)
        if review is None:
            raise NotFound("Review")
        ensure_owner_or(user, review.user_id, Capability.MODERATE_REVIEWS)
        await session.delete(review)
        await session.commit()
    _logger.info("Review deleted | review_id=%s by user_id=%s", review_id, user.id)


async def product_reviews(product_id: int, viewer, args) -> Dict[str, Any]:
    moderator = has_capability(viewer, Capability.MODERATE_REVIEWS)
    stmt = sa.select(Review).options(selectinload(Review.user)).where(Review.product_id == product_id)
    if moderator:
        stmt = _filter_status(stmt, args)
    else:
        stmt = stmt.where(Review.status == STATUS_APPROVED)
    rating = int_arg(args, "rating")
    if rating is not None:
        stmt = stmt.where(Review.rating == rating)

    sort_by = args.get("sort_by")
    if sort_by in PRODUCT_REVIEW_SORTS:
        key = getattr(Review, sort_by)
        stmt = stmt.order_by(key.asc() if args.get("sort_order") == "asc" else key.desc())
    stmt = stmt.order_by(Review.created_at.desc(), Review.id.desc())

    page, per_page = page_args(args, 10)
    async with AsyncSessionLocal() as session:
        product = await session.get(Product, product_id)
        if product is None:
            raise NotFound("Product")
        reviews, meta = await paginate(session, stmt, page, per_page)
        average, total = await product_rating(session, product_id)
        distribution = await rating_distribution(session, product_id)
    return {
        "data": [review_to_dict(r) for r in reviews],
        "pagination": meta,
        "product": {"id": product.id, "name": product.name, "average_rating": average, "total_reviews": total},
        "rating_distribution": distribution,
    }


async def admin_list_reviews(args) -> Dict[str, Any]:
    stmt = (
        sa.select(Review)
        .options(selectinload(Review.user), selectinload(Review.product))
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    stmt = _filter_status(stmt, args)
    for name, column in (("user_id", Review.user_id), ("product_id", Review.product_id), ("rating", Review.rating)):
        value = int_arg(args, name)
        if value is not None:
            stmt = stmt.where(column == value)
    if args.get("search"):
        stmt = stmt.where(Review.comment.ilike(f"%{args['search']}%"))

    page, per_page = page_args(args, 20)
    async with AsyncSessionLocal() as session:
        reviews, meta = await paginate(session, stmt, page, per_page)
        stats = await _status_stats(session, sa.true())
    return {
        "success": True,
        "message": "Reviews retrieved successfully",
        "data": [review_to_dict(r) for r in reviews],
        "pagination": meta,
        "stats": stats,
        "filters": {k: args[k] for k in ("status", "user_id", "product_id", "rating", "search") if k in args},
    }


async def moderate(review_id: int, status: str, notes: Optional[str]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        review = await _get_review(session, review_id)
        if review.status == status:
            raise BusinessRuleError(f"Review is already {status}")
        review.status = status
        review.admin_notes = notes
        await session.commit()
        review = await _get_review(session, review_id)
    _logger.info("Review moderated | review_id=%s status=%s", review_id, status)
    return review_to_dict(review)


async def bulk_moderate(review_ids: List[int], status: str, notes: Optional[str]) -> int:
    """Move every listed review to ``status``; reviews already there are skipped."""
    async with AsyncSessionLocal() as session:
        async with session.begin():
            res = await session.execute(sa.select(Review).where(Review.id.in_(review_ids)))
            reviews = res.scalars().all()
            missing = set(review_ids) - {r.id for r in reviews}
            if missing:
                raise ValidationFailed.single("review_ids", "The selected review ids are invalid.")
            changed = 0
            for review in reviews:
                if review.status == status:
                    continue
                review.status = status
                review.admin_notes = notes
                changed += 1
    _logger.info("Reviews bulk moderated | status=%s count=%s", status, changed)
    return changed
