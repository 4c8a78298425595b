"""Page metadata for offset/limit listings (chat history endpoint)."""
from __future__ import annotations

import math
from typing import Optional

from pydantic import BaseModel


class PaginationMetadata(BaseModel):
    total_docs: int
    total_pages: int
    current_page: int
    next_page: Optional[int] = None
    prev_page: Optional[int] = None
    limit: int


def get_pagination_metadata(total_docs: int, current_page: int, limit: int) -> PaginationMetadata:
    """An empty listing still reports one (empty) page."""
    if limit < 1:
        raise ValueError("limit must be >= 1")
    total_pages = max(1, math.ceil(total_docs / limit))
    return PaginationMetadata(
        total_docs=total_docs,
        total_pages=total_pages,
        current_page=current_page,
        next_page=current_page + 1 if current_page < total_pages else None,
        prev_page=current_page - 1 if current_page > 1 else None,
        limit=limit,
    )


def page_to_offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit
