import logging
from datetime import timedelta
from itertools import accumulate
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from werkzeug.security import check_password_hash, generate_password_hash

from ..cart.model import CartItem
from ..common.database import AsyncSessionLocal, month_bucket
from ..common.db import utcnow
from ..common.errors import BusinessRuleError, NotFound, ValidationFailed
from ..common.pagination import page_args, paginate
from ..common.policy import ROLE_ADMIN, ROLE_USER
from ..common.validation import date_range_args, start_of_today
from ..orders.model import Order, PAYMENT_PAID, STATUS_CANCELLED, STATUS_DELIVERED, STATUS_PENDING
from ..orders.serializers import order_to_dict
from ..orders.stats import monthly_spending, top_products
from ..reviews.model import Review, STATUS_APPROVED, STATUS_PENDING as REVIEW_PENDING, STATUS_REJECTED
from ..reviews.serializers import review_to_dict
from ..wishlist.model import WishlistItem
from .model import User
from .serializers import user_to_dict
from .tokens import issue_token

_logger = logging.getLogger(__name__)

ACTIVE_WINDOW = timedelta(days=30)
ADMIN_ORDER_BY = {"name", "email", "role", "created_at", "updated_at", "last_login_at"}


async def _count(session: AsyncSession, stmt) -> int:
    return int((await session.execute(stmt)).scalar() or 0)


async def _email_taken(session: AsyncSession, email: str, exclude_id: Optional[int] = None) -> bool:
    stmt = sa.select(User.id).where(sa.func.lower(User.email) == email.lower())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return (await session.execute(stmt)).first() is not None


async def _get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound("User")
    return user


async def create_user(session: AsyncSession, data: Dict[str, Any], role: str = ROLE_USER) -> User:
    if await _email_taken(session, data["email"]):
        raise ValidationFailed.single("email", "The email has already been taken.")
    fields = {k: v for k, v in data.items() if k not in {"password", "password_confirmation", "role"}}
    user = User(**fields, role=role, password_hash=generate_password_hash(data["password"]))
    session.add(user)
    await session.flush()
    return user


async def register(data: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await create_user(session, data)
        token = await issue_token(session, user)
        await session.commit()
    _logger.info("User registered | user_id=%s", user.id)
    return {"user": user_to_dict(user), "token": token}


async def login(email: str, password: str) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        res = await session.execute(sa.select(User).where(sa.func.lower(User.email) == email.lower()))
        user = res.scalar_one_or_none()
        if user is None or not check_password_hash(user.password_hash, password):
            _logger.warning("Failed login | email=%s", email)
            raise ValidationFailed.single("email", "The provided credentials are incorrect.")
        user.last_login_at = utcnow()
        token = await issue_token(session, user)
        await session.commit()
    _logger.info("User logged in | user_id=%s", user.id)
    return {"user": user_to_dict(user), "token": token}


async def _relation_counts(session: AsyncSession, user_id: int) -> Dict[str, int]:
    return {
        "orders": await _count(session, sa.select(sa.func.count(Order.id)).where(Order.user_id == user_id)),
        "reviews": await _count(session, sa.select(sa.func.count(Review.id)).where(Review.user_id == user_id)),
        "wishlists": await _count(session, sa.select(sa.func.count(WishlistItem.id)).where(WishlistItem.user_id == user_id)),
        "carts": await _count(session, sa.select(sa.func.count(CartItem.id)).where(CartItem.user_id == user_id)),
    }


async def current_user(user_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        counts = await _relation_counts(session, user_id)
    return {
        "user": user_to_dict(user),
        "stats": {
            "total_orders": counts["orders"],
            "total_reviews": counts["reviews"],
            "total_wishlist_items": counts["wishlists"],
            "total_cart_items": counts["carts"],
        },
    }


async def _recent_orders(session: AsyncSession, user_id: int, limit: int = 5):
    res = await session.execute(
        sa.select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
    )
    return res.scalars().all()


async def _recent_reviews(session: AsyncSession, user_id: int, limit: int = 5):
    res = await session.execute(
        sa.select(Review)
        .options(selectinload(Review.product))
        .where(Review.user_id == user_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(limit)
    )
    return res.scalars().all()


async def get_profile(user_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        orders = await _recent_orders(session, user_id)
        reviews = await _recent_reviews(session, user_id)
    return {
        "user": user_to_dict(user),
        "full_address": user.full_address,
        "recent_orders": [order_to_dict(o) for o in orders],
        "recent_reviews": [review_to_dict(r) for r in reviews],
    }


async def update_profile(user_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        for field, value in changes.items():
            setattr(user, field, value)
        await session.commit()
    _logger.info("Profile updated | user_id=%s fields=%s", user_id, sorted(changes))
    return {"user": user_to_dict(user), "full_address": user.full_address}


async def update_password(user_id: int, current_password: str, new_password: str) -> None:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        if not check_password_hash(user.password_hash, current_password):
            raise ValidationFailed.single("current_password", "Current password is incorrect")
        user.password_hash = generate_password_hash(new_password)
        await session.commit()
    _logger.info("Password updated | user_id=%s", user_id)


async def profile_stats(user_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        counts = await _relation_counts(session, user_id)
        orders_of_user = sa.select(sa.func.count(Order.id)).where(Order.user_id == user_id)
        stats = {
            "total_orders": counts["orders"],
            "pending_orders": await _count(session, orders_of_user.where(Order.status == STATUS_PENDING)),
            "delivered_orders": await _count(session, orders_of_user.where(Order.status == STATUS_DELIVERED)),
            "total_reviews": counts["reviews"],
            "average_rating": float(
                (await session.execute(sa.select(sa.func.avg(Review.rating)).where(Review.user_id == user_id))).scalar() or 0
            ),
            "wishlist_items": counts["wishlists"],
            "cart_items": counts["carts"],
            "total_spent": float(
                (await session.execute(
                    sa.select(sa.func.sum(Order.total_amount)).where(Order.user_id == user_id, Order.payment_status == PAYMENT_PAID)
                )).scalar() or 0
            ),
            "member_since": user.created_at.date().isoformat(),
        }
    return {
        "stats": stats,
        "user": {"name": user.name, "email": user.email, "joined_date": f"{user.created_at:%B %d, %Y}"},
    }


# Admin


async def admin_list_users(args) -> Dict[str, Any]:
    now = utcnow()
    active_since = now - ACTIVE_WINDOW
    stmt = sa.select(
        User,
        sa.select(sa.func.count(Order.id)).where(Order.user_id == User.id).scalar_subquery().label("orders_count"),
        sa.select(sa.func.count(Review.id)).where(Review.user_id == User.id).scalar_subquery().label("reviews_count"),
        sa.select(sa.func.count(WishlistItem.id)).where(WishlistItem.user_id == User.id).scalar_subquery().label("wishlists_count"),
    )

    if args.get("role"):
        stmt = stmt.where(User.role == args["role"])
    status = args.get("status")
    if status == "active":
        stmt = stmt.where(User.last_login_at >= active_since)
    elif status == "inactive":
        stmt = stmt.where(sa.or_(User.last_login_at.is_(None), User.last_login_at < active_since))
    if args.get("search"):
        like = f"%{args['search']}%"
        stmt = stmt.where(sa.or_(User.name.ilike(like), User.email.ilike(like), User.phone.ilike(like)))
    dates = date_range_args(args)
    if dates:
        stmt = stmt.where(User.created_at.between(*dates))
    if args.get("country"):
        stmt = stmt.where(User.country == args["country"])
    if args.get("city"):
        stmt = stmt.where(User.city == args["city"])

    order_by = args.get("order_by", "created_at")
    if order_by not in ADMIN_ORDER_BY:
        order_by = "created_at"
    column = getattr(User, order_by)
    direction = args.get("order_direction", "desc")
    stmt = stmt.order_by(column.asc() if direction == "asc" else column.desc(), User.id.desc())

    page, per_page = page_args(args, 20)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    async with AsyncSessionLocal() as session:
        rows, meta = await paginate(session, stmt, page, per_page, scalars=False)
        count_users = sa.select(sa.func.count(User.id))
        stats = {
            "total_users": await _count(session, count_users),
            "admin_users": await _count(session, count_users.where(User.role == ROLE_ADMIN)),
            "regular_users": await _count(session, count_users.where(User.role == ROLE_USER)),
            "new_users_today": await _count(session, count_users.where(User.created_at >= start_of_today())),
            "new_users_this_month": await _count(session, count_users.where(User.created_at >= month_start)),
            "active_users": await _count(session, count_users.where(User.last_login_at >= active_since)),
        }
        countries = await _country_distribution(session)

    users = []
    for user, orders_count, reviews_count, wishlists_count in rows:
        item = user_to_dict(user)
        item.update(orders_count=orders_count, reviews_count=reviews_count, wishlists_count=wishlists_count)
        users.append(item)
    return {
        "data": users,
        "pagination": meta,
        "stats": stats,
        "countries_distribution": countries,
        "filters": {k: args[k] for k in ("role", "status", "search", "country", "city") if k in args},
    }


async def _country_distribution(session: AsyncSession, limit: int = 10):
    count = sa.func.count(User.id).label("count")
    res = await session.execute(
        sa.select(User.country, count).where(User.country.is_not(None)).group_by(User.country).order_by(count.desc()).limit(limit)
    )
    return [{"country": country, "count": n} for country, n in res.all()]


async def admin_user_stats() -> Dict[str, Any]:
    now = utcnow()
    since = now - timedelta(days=365)
    active_since = now - ACTIVE_WINDOW
    today = start_of_today()
    async with AsyncSessionLocal() as session:
        month = month_bucket(session, User.created_at).label("month")
        res = await session.execute(
            sa.select(month, sa.func.count(User.id)).where(User.created_at >= since).group_by(month).order_by(month)
        )
        growth_rows = res.all()
        running = list(accumulate(n for _, n in growth_rows))

        res = await session.execute(sa.select(User.role, sa.func.count(User.id)).group_by(User.role))
        roles = [{"role": role, "count": n} for role, n in res.all()]

        count_users = sa.select(sa.func.count(User.id))
        activity = {
            "active_users": await _count(session, count_users.where(User.last_login_at >= active_since)),
            "inactive_users": await _count(
                session, count_users.where(sa.or_(User.last_login_at.is_(None), User.last_login_at < active_since))
            ),
        }
        today_stats = {
            "new_users_today": await _count(session, count_users.where(User.created_at >= today)),
            "new_users_yesterday": await _count(
                session, count_users.where(User.created_at >= today - timedelta(days=1), User.created_at < today)
            ),
        }
        total = await _count(session, count_users)
        countries = await _country_distribution(session)

    return {
        "user_growth": [
            {"month": m, "new_users": n, "total_users": running[i]} for i, (m, n) in enumerate(growth_rows)
        ],
        "role_distribution": roles,
        "top_countries": countries,
        "activity_stats": activity,
        "today_stats": today_stats,
        "total_users": total,
        "date_range": {"from": since.date().isoformat(), "to": now.date().isoformat()},
    }


async def admin_create_user(data: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await create_user(session, data, role=data["role"])
        await session.commit()
    _logger.info("Admin created user | user_id=%s role=%s", user.id, user.role)
    return user_to_dict(user)


async def admin_get_user(user_id: int) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        counts = await _relation_counts(session, user_id)

        orders_of_user = sa.select(sa.func.count(Order.id)).where(Order.user_id == user_id)
        res = await session.execute(
            sa.select(sa.func.sum(Order.total_amount), sa.func.avg(Order.total_amount)).where(Order.user_id == user_id)
        )
        spent, avg_value = res.one()
        order_stats = {
            "total_spent": float(spent or 0),
            "average_order_value": float(avg_value or 0),
            "pending_orders": await _count(session, orders_of_user.where(Order.status == STATUS_PENDING)),
            "delivered_orders": await _count(session, orders_of_user.where(Order.status == STATUS_DELIVERED)),
            "cancelled_orders": await _count(session, orders_of_user.where(Order.status == STATUS_CANCELLED)),
        }

        reviews_of_user = sa.select(sa.func.count(Review.id)).where(Review.user_id == user_id)
        review_stats = {
            "approved_reviews": await _count(session, reviews_of_user.where(Review.status == STATUS_APPROVED)),
            "pending_reviews": await _count(session, reviews_of_user.where(Review.status == REVIEW_PENDING)),
            "rejected_reviews": await _count(session, reviews_of_user.where(Review.status == STATUS_REJECTED)),
            "average_rating": float(
                (await session.execute(
                    sa.select(sa.func.avg(Review.rating)).where(Review.user_id == user_id, Review.status == STATUS_APPROVED)
                )).scalar() or 0
            ),
        }

        orders = await _recent_orders(session, user_id)
        reviews = await _recent_reviews(session, user_id)
        res = await session.execute(
            sa.select(WishlistItem)
            .options(selectinload(WishlistItem.product))
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
            .limit(5)
        )
        wishlist = res.scalars().all()
        monthly = await monthly_spending(session, user_id)
        top = await top_products(session, user_id)

    data = user_to_dict(user)
    data.update(
        orders_count=counts["orders"], reviews_count=counts["reviews"],
        wishlists_count=counts["wishlists"], carts_count=counts["carts"],
    )
    return {
        "user": data,
        "full_address": user.full_address,
        "order_stats": order_stats,
        "review_stats": review_stats,
        "monthly_spending": monthly,
        "top_products": top,
        "recent_activities": {
            "recent_orders": [order_to_dict(o) for o in orders],
            "recent_reviews": [review_to_dict(r) for r in reviews],
            "recent_wishlist_items": [
                {
                    "id": w.id,
                    "product_id": w.product_id,
                    "created_at": w.created_at.isoformat(),
                    "product": {"id": w.product.id, "name": w.product.name, "price": w.product.price},
                }
                for w in wishlist
            ],
        },
    }


async def admin_update_user(user_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        if "email" in changes and await _email_taken(session, changes["email"], exclude_id=user_id):
            raise ValidationFailed.single("email", "The email has already been taken.")
        for field, value in changes.items():
            setattr(user, field, value)
        await session.commit()
    _logger.info("Admin updated user | user_id=%s fields=%s", user_id, sorted(changes))
    return user_to_dict(user)


async def admin_update_password(user_id: int, new_password: str) -> None:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        user.password_hash = generate_password_hash(new_password)
        await session.commit()
    _logger.info("Admin reset password | user_id=%s", user_id)


async def admin_delete_user(actor_id: int, user_id: int) -> None:
    async with AsyncSessionLocal() as session:
        user = await _get_user(session, user_id)
        if user.id == actor_id:
            raise BusinessRuleError("You cannot delete your own account")
        await session.delete(user)
        await session.commit()
    _logger.info("Admin deleted user | user_id=%s by=%s", user_id, actor_id)
