"""
shared/utils/pagination.py
Shared list query parameters (page, limit, search, sort, order) and the
pagination block of the response envelope.
"""

import math

from fastapi import Query
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.utils.errors import ValidationFailed


class ListParams:
    """FastAPI dependency: Depends(ListParams)."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
        search: str | None = Query(None, max_length=200),
        sort: str = Query("created_at"),
        order: str = Query("desc", pattern="^(asc|desc)$"),
    ):
        self.page = page
        self.limit = limit
        self.search = search.strip() if search else None
        self.sort = sort
        self.order = order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def order_by(self, model, allowed: set[str]):
        """Resolve the sort column against a whitelist."""
        if self.sort not in allowed:
            raise ValidationFailed("Invalid sort field")
        column = getattr(model, self.sort)
        return column.asc() if self.order == "asc" else column.desc()


def pagination_meta(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


async def paginate(
    db: AsyncSession,
    query: Select,
    params: ListParams,
    options: tuple = (),
) -> tuple[list, dict]:
    """
    Run a count and a page query. Returns (rows, pagination block).
    Loader options are applied to the page query only.
    """
    total = await db.scalar(select(func.count()).select_from(query.order_by(None).subquery()))
    page_query = query.options(*options) if options else query
    result = await db.execute(page_query.offset(params.offset).limit(params.limit))
    rows = list(result.scalars().all())
    return rows, pagination_meta(params.page, params.limit, total or 0)
