"""Pagination helpers for history endpoints (ledger, retirements, orders)."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    total: int | None = None

    @property
    def has_more(self) -> bool:
        return self.total is not None and self.offset + len(self.items) < self.total


def paginate(limit: int, offset: int, max_limit: int = MAX_LIMIT) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset)."""
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset


def page_response(page: Page[Any]) -> dict[str, Any]:
    return {
        "items": page.items,
        "limit": page.limit,
        "offset": page.offset,
        "total": page.total,
        "has_more": page.has_more,
    }
