import math
from typing import Any, Dict, List, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

MAX_PER_PAGE = 100


def page_args(args, default_per_page: int) -> Tuple[int, int]:
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        per_page = int(args.get("per_page", default_per_page))
    except (TypeError, ValueError):
        per_page = default_per_page
    return max(page, 1), min(max(per_page, 1), MAX_PER_PAGE)


async def paginate(session: AsyncSession, stmt, page: int, per_page: int, scalars: bool = True) -> Tuple[List[Any], Dict[str, Any]]:
    """Run ``stmt`` for one page and count the full result set."""
    count_stmt = sa.select(sa.func.count()).select_from(stmt.order_by(None).subquery())
    total = int((await session.execute(count_stmt)).scalar() or 0)

    res = await session.execute(stmt.limit(per_page).offset((page - 1) * per_page))
    items = list(res.scalars().all()) if scalars else list(res.all())

    first = (page - 1) * per_page + 1 if items else None
    meta = {
        "current_page": page,
        "per_page": per_page,
        "total": total,
        "last_page": max(math.ceil(total / per_page), 1),
        "from": first,
        "to": first + len(items) - 1 if items else None,
    }
    return items, meta
