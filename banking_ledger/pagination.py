"""
Offset pagination shared by every list operation.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Sequence, Tuple

from .errors import ValidationError


@dataclass(frozen=True)
class PaginationMeta:
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_page(page: int, limit: int, max_limit: int = 100) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}")


def paginate(items: Sequence[Any], page: int, limit: int,
             max_limit: int = 100) -> Tuple[List[Any], PaginationMeta]:
    """Slice an already-sorted sequence into one page plus metadata"""
    validate_page(page, limit, max_limit)
    total = len(items)
    total_pages = math.ceil(total / limit)
    offset = (page - 1) * limit
    meta = PaginationMeta(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )
    return list(items[offset:offset + limit]), meta
