"""Offset pagination shared by the list endpoints."""

import math

from sqlalchemy import func, select

from curriculum.services.helpers.payloads import parse_int

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def parse_pagination(page, page_size, *, default_size: int = DEFAULT_PAGE_SIZE,
                     max_size: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    page = parse_int(page, "page", minimum=1) or 1
    page_size = parse_int(page_size, "page_size", minimum=1) or default_size
    return page, min(page_size, max_size)


def paginate(session, stmt, *, page: int, page_size: int) -> dict:
    """Run ``stmt`` for one page; the total uses the same filters."""
    total = session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    rows = session.execute(
        stmt.limit(page_size).offset((page - 1) * page_size)
    ).scalars().all()
    return {
        "data": [row.to_dict() for row in rows],
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size) if total else 0,
        },
    }
