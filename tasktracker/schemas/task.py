"""
Task Schemas
============

Pydantic schemas for task endpoints and service payloads.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from tasktracker.models.task import (
    DESCRIPTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    TaskPriority,
)
from tasktracker.schemas.common import PaginationMeta


# =============================================================================
# Request Schemas
# =============================================================================

class TaskCreate(BaseModel):
    """Request schema for creating a task."""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    is_completed: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class TaskUpdate(BaseModel):
    """
    Request schema for updating a task.

    Only fields present in the payload are applied. ``description`` may be
    set to null to clear it; the other fields may not.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    is_completed: Optional[bool] = None
    priority: Optional[TaskPriority] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("title", "is_completed", "priority")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v

    def changes(self) -> dict[str, Any]:
        """Fields explicitly supplied by the caller."""
        return self.model_dump(exclude_unset=True)


# =============================================================================
# Response Schemas
# =============================================================================

class TaskApiResponse(BaseModel):
    """Task as returned by the API."""

    id: str
    title: str
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    is_completed: bool
    owner_id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskEnvelope(BaseModel):
    """Single task response."""

    success: bool = True
    data: TaskApiResponse
    message: Optional[str] = None


class TaskPageResponse(BaseModel):
    """Paginated task listing."""

    success: bool = True
    data: list[TaskApiResponse]
    pagination: PaginationMeta


class DeleteTaskResponse(BaseModel):
    """Response for task deletion."""

    success: bool = True
    message: str = "Task deleted successfully"


class SyncResultData(BaseModel):
    """Outcome of an external sync. ``inserted`` is an estimate."""

    received: int
    inserted: int
    affected: int


class SyncResultResponse(BaseModel):
    """Response for the populate endpoint."""

    success: bool = True
    data: SyncResultData
