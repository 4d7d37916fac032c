"""Shared schema pieces."""

from pydantic import BaseModel


class PageInfo(BaseModel):
    """Pagination information for list responses."""

    next_cursor: str | None = None
