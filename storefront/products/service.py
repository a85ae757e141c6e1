import logging
import string
import time
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..categories.model import Category
from ..common.database import AsyncSessionLocal
from ..common.errors import ApiError, NotFound, ValidationFailed
from ..common.pagination import page_args, paginate
from ..common.policy import Capability, has_capability
from ..common.text import random_suffix, slugify
from ..common.validation import choice_arg, float_arg, int_arg, period_start, truthy_arg, PERIODS
from ..orders.model import Order, OrderItem, STATUS_DELIVERED
from ..reviews.model import Review, STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED
from ..reviews.serializers import review_to_dict
from ..reviews.stats import approved_count_subquery, average_rating_subquery, product_rating, rating_distribution
from .model import Product
from .serializers import product_to_dict

_logger = logging.getLogger(__name__)

SORT_COLUMNS = ("name", "price", "created_at", "updated_at")
SEARCH_SORTS = ("relevance", "price_asc", "price_desc", "rating", "newest")
REVIEW_TYPES = ("all", "approved", "pending")

# trending score weights
SOLD_WEIGHT = 0.5
REVIEWS_WEIGHT = 0.3
RATING_WEIGHT = 0.2
RATING_SCALE = 10


def sold_quantity_subquery():
    """Units sold through delivered orders, per product."""
    return (
        sa.select(sa.func.coalesce(sa.func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(OrderItem.product_id == Product.id, Order.status == STATUS_DELIVERED)
        .correlate(Product)
        .scalar_subquery()
    )


def _rated_select():
    return (
        sa.select(
            Product,
            average_rating_subquery().label("average_rating"),
            approved_count_subquery().label("total_reviews"),
        )
        .options(selectinload(Product.category))
        .where(Product.is_active.is_(True))
    )


def _rated_dict(row) -> Dict[str, Any]:
    product, avg, count = row[0], row[1], row[2]
    return product_to_dict(product, average_rating=float(avg or 0), total_reviews=int(count or 0))


async def _ensure_category(session: AsyncSession, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    if await session.get(Category, category_id) is None:
        raise ValidationFailed.single("category_id", "The selected category id is invalid.")


def _search_clause(term: str):
    like = f"%{term}%"
    return sa.or_(Product.name.ilike(like), Product.description.ilike(like), Product.sku.ilike(like))


async def list_products(args) -> Dict[str, Any]:
    stmt = _rated_select()

    category_id = int_arg(args, "category_id")
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    if args.get("category_slug"):
        stmt = stmt.where(Product.category.has(Category.slug == args["category_slug"]))
    if args.get("search"):
        stmt = stmt.where(_search_clause(args["search"]))
    min_price = float_arg(args, "min_price")
    if min_price is not None:
        stmt = stmt.where(Product.price >= min_price)
    max_price = float_arg(args, "max_price")
    if max_price is not None:
        stmt = stmt.where(Product.price <= max_price)
    if "in_stock" in args:
        stmt = stmt.where(Product.stock_quantity > 0)
    min_rating = float_arg(args, "min_rating")
    if min_rating is not None:
        stmt = stmt.where(average_rating_subquery() >= min_rating)

    sort_by = args.get("sort_by", "created_at")
    ascending = args.get("sort_order", "desc") == "asc"
    if sort_by in SORT_COLUMNS:
        key = getattr(Product, sort_by)
    elif sort_by == "rating":
        key = average_rating_subquery()
    elif sort_by == "popularity":
        key = sold_quantity_subquery()
    else:
        key, ascending = Product.created_at, False
    stmt = stmt.order_by(key.asc() if ascending else key.desc(), Product.id.desc())

    page, per_page = page_args(args, 12)
    async with AsyncSessionLocal() as session:
        rows, meta = await paginate(session, stmt, page, per_page, scalars=False)

    return {
        "success": True,
        "data": [_rated_dict(r) for r in rows],
        "pagination": meta,
        "filters": {
            k: args[k] for k in ("search", "category_id", "min_price", "max_price", "sort_by", "sort_order") if k in args
        },
    }


async def search_products(args) -> Dict[str, Any]:
    term = (args.get("query") or "").strip()
    if len(term) < 2:
        raise ValidationFailed.single("query", "The query must be at least 2 characters.")
    sort_by = choice_arg(args, "sort_by", SEARCH_SORTS, default="relevance")
    limit = int_arg(args, "limit", default=20, minimum=1, maximum=100)

    stmt = _rated_select().where(_search_clause(term))
    category_id = int_arg(args, "category_id")
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    min_price = float_arg(args, "min_price")
    if min_price is not None:
        stmt = stmt.where(Product.price >= min_price)
    max_price = float_arg(args, "max_price")
    if max_price is not None:
        stmt = stmt.where(Product.price <= max_price)
    if truthy_arg(args, "in_stock"):
        stmt = stmt.where(Product.stock_quantity > 0)

    if sort_by == "price_asc":
        stmt = stmt.order_by(Product.price.asc())
    elif sort_by == "price_desc":
        stmt = stmt.order_by(Product.price.desc())
    elif sort_by == "rating":
        stmt = stmt.order_by(average_rating_subquery().desc())
    elif sort_by == "newest":
        stmt = stmt.order_by(Product.created_at.desc())
    else:
        relevance = sa.case(
            (Product.name.ilike(f"{term}%"), 3),
            (Product.description.ilike(f"%{term}%"), 2),
            else_=1,
        )
        stmt = stmt.order_by(relevance.desc())
    stmt = stmt.order_by(Product.id.desc())

    page, _ = page_args(args, limit)
    async with AsyncSessionLocal() as session:
        rows, meta = await paginate(session, stmt, page, limit, scalars=False)

    return {
        "success": True,
        "data": [_rated_dict(r) for r in rows],
        "pagination": meta,
        "search_query": term,
        "filters_applied": {k: v for k, v in args.items() if k not in ("query", "page", "per_page")},
    }


async def get_product(product_id: int, viewer=None) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        product = await session.get(Product, product_id, options=[selectinload(Product.category)])
        if product is None:
            raise NotFound("Product")
        if not product.is_active and not has_capability(viewer, Capability.MANAGE_CATALOG):
            raise ApiError("Product is not available", 404, success=False)

        res = await session.execute(
            sa.select(Review)
            .options(selectinload(Review.user))
            .where(Review.product_id == product_id, Review.status == STATUS_APPROVED)
            .order_by(Review.created_at.desc(), Review.id.desc())
        )
        reviews = res.scalars().all()
        average, total = await product_rating(session, product_id)
        distribution = await rating_distribution(session, product_id)

        related_stmt = (
            _rated_select()
            .where(Product.category_id == product.category_id, Product.id != product_id)
            .order_by(Product.id)
            .limit(4)
        )
        related = (await session.execute(related_stmt)).all() if product.category_id is not None else []

        res = await session.execute(
            sa.select(sa.func.sum(OrderItem.quantity), sa.func.count(sa.distinct(OrderItem.order_id))).where(
                OrderItem.product_id == product_id
            )
        )
        total_sold, total_orders = res.one()

    data = product_to_dict(
        product,
        average_rating=average,
        total_reviews=total,
        approved_reviews=[review_to_dict(r) for r in reviews],
        rating_distribution=distribution,
        sales_data={"total_sold": int(total_sold or 0), "total_orders": int(total_orders or 0)},
    )
    return {"success": True, "data": {"product": data, "related_products": [_rated_dict(r) for r in related]}}


async def most_sold(args) -> Dict[str, Any]:
    limit = int_arg(args, "limit", default=10, minimum=1, maximum=50)
    period = choice_arg(args, "period", PERIODS, default="all_time")
    min_sold = int_arg(args, "min_sold", minimum=0)
    category_id = int_arg(args, "category_id")

    total_sold = sa.func.sum(OrderItem.quantity).label("total_sold")
    stmt = (
        sa.select(
            OrderItem.product_id,
            total_sold,
            sa.func.count(sa.distinct(OrderItem.order_id)).label("total_orders"),
            sa.func.sum(OrderItem.quantity * OrderItem.price).label("total_revenue"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .where(Order.status == STATUS_DELIVERED, Product.is_active.is_(True))
        .group_by(OrderItem.product_id)
        .order_by(total_sold.desc(), OrderItem.product_id)
        .limit(limit)
    )
    since = period_start(period)
    if since is not None:
        stmt = stmt.where(Order.created_at >= since)
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    if min_sold is not None:
        stmt = stmt.having(total_sold >= min_sold)

    async with AsyncSessionLocal() as session:
        await _ensure_category(session, category_id)
        sales = (await session.execute(stmt)).all()
        products = await _rated_by_id(session, [s.product_id for s in sales])

    data = []
    for s in sales:
        item = products[s.product_id]
        item.update(total_sold=int(s.total_sold or 0), total_orders=int(s.total_orders or 0), total_revenue=float(s.total_revenue or 0))
        data.append(item)

    return {
        "success": True,
        "data": data,
        "meta": {
            "total": len(data),
            "limit": limit,
            "period": period,
            "total_sold_sum": sum(d["total_sold"] for d in data),
            "total_revenue_sum": round(sum(d["total_revenue"] for d in data), 2),
            "total_orders_sum": sum(d["total_orders"] for d in data),
        },
    }


async def _rated_by_id(session: AsyncSession, product_ids) -> Dict[int, Dict[str, Any]]:
    if not product_ids:
        return {}
    res = await session.execute(_rated_select().where(Product.id.in_(product_ids)))
    return {row[0].id: _rated_dict(row) for row in res.all()}


def _status_count(status: str):
    return sa.func.sum(sa.case((Review.status == status, 1), else_=0))


async def most_reviewed(args) -> Dict[str, Any]:
    limit = int_arg(args, "limit", default=10, minimum=1, maximum=50)
    review_type = choice_arg(args, "review_type", REVIEW_TYPES, default="all")
    min_rating = int_arg(args, "min_rating", minimum=1, maximum=5)
    min_reviews = int_arg(args, "min_reviews", minimum=0)
    period = choice_arg(args, "period", PERIODS, default="all_time")
    category_id = int_arg(args, "category_id")

    total_reviews = sa.func.count(Review.id).label("total_reviews")
    stmt = (
        sa.select(
            Review.product_id,
            total_reviews,
            sa.func.avg(Review.rating).label("average_rating"),
            _status_count(STATUS_APPROVED).label("approved_reviews"),
            _status_count(STATUS_PENDING).label("pending_reviews"),
            _status_count(STATUS_REJECTED).label("rejected_reviews"),
        )
        .join(Product, Product.id == Review.product_id)
        .where(Product.is_active.is_(True))
        .group_by(Review.product_id)
        .order_by(total_reviews.desc(), Review.product_id)
        .limit(limit)
    )
    if review_type == "approved":
        stmt = stmt.where(Review.status == STATUS_APPROVED)
    elif review_type == "pending":
        stmt = stmt.where(Review.status == STATUS_PENDING)
    if min_rating is not None:
        stmt = stmt.where(Review.rating >= min_rating)
    since = period_start(period)
    if since is not None:
        stmt = stmt.where(Review.created_at >= since)
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    if min_reviews is not None:
        stmt = stmt.having(total_reviews >= min_reviews)

    async with AsyncSessionLocal() as session:
        await _ensure_category(session, category_id)
        stats = (await session.execute(stmt)).all()
        products = await _rated_by_id(session, [s.product_id for s in stats])
        data = []
        for s in stats:
            item = products[s.product_id]
            item.update(
                total_reviews=int(s.total_reviews),
                approved_reviews=int(s.approved_reviews or 0),
                pending_reviews=int(s.pending_reviews or 0),
                rejected_reviews=int(s.rejected_reviews or 0),
                average_rating=round(float(s.average_rating or 0), 1),
            )
            if item["approved_reviews"] > 0:
                item["rating_distribution"] = await rating_distribution(session, s.product_id)
            sold = await session.execute(
                sa.select(sa.func.sum(OrderItem.quantity))
                .join(Order, Order.id == OrderItem.order_id)
                .where(OrderItem.product_id == s.product_id, Order.status == STATUS_DELIVERED)
            )
            item["total_sold"] = int(sold.scalar() or 0)
            data.append(item)

    averages = [d["average_rating"] for d in data]
    return {
        "success": True,
        "data": data,
        "meta": {
            "total": len(data),
            "limit": limit,
            "review_type": review_type,
            "period": period,
            "total_reviews_sum": sum(d["total_reviews"] for d in data),
            "overall_average_rating": round(sum(averages) / len(averages), 1) if averages else 0,
        },
    }


async def trending(args) -> Dict[str, Any]:
    """Weighted mix of delivered sales, approved review count and approved rating; never stored."""
    limit = int_arg(args, "limit", default=10, minimum=1, maximum=50)
    category_id = int_arg(args, "category_id")

    sold = sold_quantity_subquery()
    reviews = approved_count_subquery()
    rating = sa.func.coalesce(average_rating_subquery(), 0)
    score = (sold * SOLD_WEIGHT + reviews * REVIEWS_WEIGHT + rating * RATING_SCALE * RATING_WEIGHT).label("trending_score")
    stmt = (
        _rated_select()
        .add_columns(sold.label("total_sold"), score)
        .order_by(score.desc(), Product.id)
        .limit(limit)
    )
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)

    async with AsyncSessionLocal() as session:
        await _ensure_category(session, category_id)
        rows = (await session.execute(stmt)).all()

    data = []
    for row in rows:
        item = _rated_dict(row)
        item.update(total_sold=int(row.total_sold or 0), trending_score=round(float(row.trending_score or 0), 2))
        data.append(item)
    return {"success": True, "data": data, "meta": {"total": len(data), "limit": limit}}


def _generate_sku() -> str:
    return f"SKU-{random_suffix(8, string.ascii_uppercase + string.digits)}-{int(time.time())}"


async def _ensure_unique(session: AsyncSession, field: str, value, exclude_id: Optional[int] = None) -> None:
    column = getattr(Product, field)
    stmt = sa.select(Product.id).where(column == value)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    if (await session.execute(stmt)).first() is not None:
        raise ValidationFailed.single(field, f"The {field} has already been taken.")


async def _load(session: AsyncSession, product_id: int) -> Product:
    product = await session.get(Product, product_id, options=[selectinload(Product.category)], populate_existing=True)
    if product is None:
        raise NotFound("Product")
    return product


async def create_product(data: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        await _ensure_unique(session, "name", data["name"])
        if data.get("sku"):
            await _ensure_unique(session, "sku", data["sku"])
        await _ensure_category(session, data["category_id"])
        product = Product(
            name=data["name"],
            slug=f"{slugify(data['name'])}-{random_suffix()}",
            description=data["description"],
            price=data["price"],
            stock_quantity=data["stock_quantity"],
            sku=data.get("sku") or _generate_sku(),
            images=data.get("images") or [],
            category_id=data["category_id"],
            is_active=True if data.get("is_active") is None else data["is_active"],
        )
        session.add(product)
        await session.commit()
        product = await _load(session, product.id)
    _logger.info("Product created | product_id=%s sku=%s", product.id, product.sku)
    return product_to_dict(product)


async def update_product(product_id: int, data: Dict[str, Any], provided) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        product = await session.get(Product, product_id)
        if product is None:
            raise NotFound("Product")
        await _ensure_unique(session, "name", data["name"], exclude_id=product_id)
        if data.get("sku"):
            await _ensure_unique(session, "sku", data["sku"], exclude_id=product_id)
        await _ensure_category(session, data["category_id"])

        if product.name != data["name"]:
            product.slug = f"{slugify(data['name'])}-{random_suffix()}"
        product.name = data["name"]
        product.description = data["description"]
        product.price = data["price"]
        product.stock_quantity = data["stock_quantity"]
        product.category_id = data["category_id"]
        if data.get("is_active") is not None:
            product.is_active = data["is_active"]
        if "sku" in provided and data.get("sku"):
            product.sku = data["sku"]
        if "images" in provided:
            product.images = data.get("images") or []
        await session.commit()
        product = await _load(session, product_id)
    _logger.info("Product updated | product_id=%s", product_id)
    return product_to_dict(product)


async def delete_product(product_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        product = await session.get(Product, product_id)
        if product is None:
            raise NotFound("Product")
        has_orders = (
            await session.execute(sa.select(OrderItem.id).where(OrderItem.product_id == product_id).limit(1))
        ).first() is not None
        if has_orders:
            product.is_active = False
            await session.commit()
            _logger.info("Product deactivated (has orders) | product_id=%s", product_id)
            return {
                "success": True,
                "message": "Product deactivated successfully (cannot delete due to existing orders)",
                "data": product_to_dict(product),
            }
        await session.delete(product)
        await session.commit()
    _logger.info("Product deleted | product_id=%s", product_id)
    return {"success": True, "message": "Product deleted successfully"}
