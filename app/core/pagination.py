from typing import Any, List, Optional, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


async def paginate_select(
    db: AsyncSession,
    stmt: Select,
    page: int = 1,
    page_size: Optional[int] = None,
) -> Tuple[List[Any], int, int]:
    """
    Run `stmt` for one page. page_size None or 0 returns every row as a single page.
    Returns (rows, total, total_pages).
    """
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    if page_size:
        offset = (page - 1) * page_size
        stmt = stmt.offset(offset).limit(page_size)
    result = await db.execute(stmt)
    rows = list(result.scalars().all())

    if page_size:
        total_pages = (total + page_size - 1) // page_size
    else:
        total_pages = 1 if total else 0
    return rows, total, total_pages
