"""Rating aggregates. Shoppers only ever see figures computed over approved reviews."""
from typing import Any, Dict, List, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from ..products.model import Product
from .model import Review, STATUS_APPROVED


def average_rating_subquery():
    return (
        sa.select(sa.func.avg(Review.rating))
        .where(Review.product_id == Product.id, Review.status == STATUS_APPROVED)
        .correlate(Product)
        .scalar_subquery()
    )


def approved_count_subquery():
    return (
        sa.select(sa.func.count(Review.id))
        .where(Review.product_id == Product.id, Review.status == STATUS_APPROVED)
        .correlate(Product)
        .scalar_subquery()
    )


async def product_rating(session: AsyncSession, product_id: int) -> Tuple[float, int]:
    res = await session.execute(
        sa.select(sa.func.avg(Review.rating), sa.func.count(Review.id)).where(
            Review.product_id == product_id, Review.status == STATUS_APPROVED
        )
    )
    avg, count = res.one()
    return float(avg or 0), int(count or 0)


async def rating_distribution(session: AsyncSession, product_id: int) -> List[Dict[str, Any]]:
    """Counts per star for approved reviews, always five buckets from 5 down to 1."""
    res = await session.execute(
        sa.select(Review.rating, sa.func.count(Review.id))
        .where(Review.product_id == product_id, Review.status == STATUS_APPROVED)
        .group_by(Review.rating)
    )
    counts = dict(res.all())
    total = sum(counts.values())
    return [
        {
            "rating": stars,
            "count": counts.get(stars, 0),
            "percentage": round(counts.get(stars, 0) * 100.0 / total, 1) if total else 0.0,
        }
        for stars in range(5, 0, -1)
    ]
