"""
Pagination helpers for the append-only ledger queries.
"""

from typing import Optional, Tuple, TypeVar

from sqlalchemy.orm import Query

from core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from core.exceptions import ValidationError

T = TypeVar('T')


def normalize_page(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    """
    Clamp limit/offset to sane values.

    Args:
        limit: Requested page size (None means DEFAULT_PAGE_SIZE)
        offset: Requested offset (None means 0)

    Returns:
        (limit, offset) tuple

    Raises:
        ValidationError: If limit or offset is negative
    """
    if limit is not None and limit < 0:
        raise ValidationError("limit must be non-negative")
    if offset is not None and offset < 0:
        raise ValidationError("offset must be non-negative")

    page_size = DEFAULT_PAGE_SIZE if limit is None else min(limit, MAX_PAGE_SIZE)
    return page_size, offset or 0


def paginate(query: Query[T], limit: Optional[int], offset: Optional[int]) -> Query[T]:
    """Apply normalized limit/offset to a query."""
    page_size, start = normalize_page(limit, offset)
    return query.limit(page_size).offset(start)
