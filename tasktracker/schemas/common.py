"""
Common Schemas
==============

Shared Pydantic schemas used across the application.
"""

from typing import Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Error detail structure."""

    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: ErrorDetail


class PaginationMeta(BaseModel):
    """Pagination metadata for responses."""

    current_page: int
    total_pages: int
    total_items: int
    per_page: int
    has_next: bool
    has_previous: bool
