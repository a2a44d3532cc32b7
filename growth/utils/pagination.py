"""
Offset pagination for list endpoints.
"""
from sqlalchemy import Select, select, func
from sqlalchemy.ext.asyncio import AsyncSession


async def paginate(db: AsyncSession, query: Select, page: int = 1, per_page: int = 20) -> dict:
    """
    Run `query` for one page.

    Returns: {"items": list, "total": int, "page": int, "per_page": int, "pages": int}
    """
    page = max(page, 1)
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await db.execute(count_query)).scalar() or 0

    result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
    return {
        "items": list(result.scalars().all()),
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": max(1, (total + per_page - 1) // per_page),
    }


def like_pattern(search: str) -> str:
    """Substring match pattern with the LIKE wildcards in user input escaped (use with escape="\\")."""
    escaped = search.replace("\\", "\\\\").replace("%", r"\%").replace("_", r"\_")
    return f"%{escaped}%"
