"""
Common schema types used across the API.
"""

from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class ErrorResponse(BaseModel):
    """Standard error response (kernel errors carry their code and details)."""

    detail: str
    code: Optional[str] = None
    request_id: Optional[str] = None
    extra: Dict[str, Any] = {}


class PaginatedResponse(BaseModel, Generic[T]):
    """Offset-paginated list response."""

    items: List[T]
    total: int
    limit: int
    offset: int = 0
    has_more: bool = False

    @classmethod
    def create(
        cls,
        items: List[T],
        total: int,
        limit: int,
        offset: int = 0,
    ) -> "PaginatedResponse[T]":
        return cls(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + len(items)) < total,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    database: str = "connected"
