"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from tasktracker.schemas.common import (
    ErrorDetail,
    ErrorResponse,
    PaginationMeta,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "PaginationMeta",
]
