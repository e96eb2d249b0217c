"""
Tasks API Endpoints
===================

Handles task CRUD operations, completion toggles and the external sync.

Every route resolves the caller from the bearer token and delegates to
``TaskService``, which owns authorization, caching and notifications.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from tasktracker.dependencies import (
    CurrentUser,
    SyncReconcilerDep,
    TaskServiceDep,
    require_populate_key,
)
from tasktracker.schemas.common import ErrorResponse
from tasktracker.schemas.task import (
    DeleteTaskResponse,
    SyncResultResponse,
    TaskCreate,
    TaskEnvelope,
    TaskPageResponse,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_OBJECT_ERRORS = {
    403: {"model": ErrorResponse, "description": "Not the owner or an admin"},
    404: {"model": ErrorResponse, "description": "Task not found"},
}


@router.get("", response_model=TaskPageResponse)
async def list_tasks(
    current_user: CurrentUser,
    service: TaskServiceDep,
    per_page: int = Query(default=15, ge=1),
    page: int = Query(default=1, ge=1),
    priority: Optional[str] = Query(default=None),
    completed: Optional[str] = Query(default=None),
):
    """
    List the caller's tasks, newest first.

    ``completed`` accepts 1/true/yes for completed tasks; any other value
    selects incomplete ones.
    """
    result = await service.get_paginated_for_user(
        current_user,
        per_page=per_page,
        filters={"priority": priority, "completed": completed},
        page=page,
    )
    return TaskPageResponse(
        success=True,
        data=result["items"],
        pagination=result["pagination"],
    )


@router.post(
    "",
    response_model=TaskEnvelope,
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    task_data: TaskCreate,
    current_user: CurrentUser,
    service: TaskServiceDep,
):
    """
    Create a new task owned by the caller.
    """
    task = await service.create_task(current_user, task_data)
    return TaskEnvelope(
        success=True,
        data=task.to_api_dict(),
        message="Task created successfully",
    )


@router.get(
    "/populate",
    response_model=SyncResultResponse,
    dependencies=[Depends(require_populate_key)],
    responses={
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        502: {"model": ErrorResponse, "description": "External source unavailable"},
    },
)
async def populate_tasks(
    current_user: CurrentUser,
    reconciler: SyncReconcilerDep,
):
    """
    Import todos from the external source into the caller's tasks.

    Existing tasks with the same title are updated in place.
    """
    result = await reconciler.sync_for_user(current_user)
    return SyncResultResponse(success=True, data=result.to_dict())


@router.get("/{task_id}", response_model=TaskEnvelope, responses=_OBJECT_ERRORS)
async def get_task(
    task_id: str,
    current_user: CurrentUser,
    service: TaskServiceDep,
):
    """Get a single task."""
    task = await service.get_task(current_user, task_id)
    return TaskEnvelope(success=True, data=task.to_api_dict())


@router.put("/{task_id}", response_model=TaskEnvelope, responses=_OBJECT_ERRORS)
@router.patch("/{task_id}", response_model=TaskEnvelope, responses=_OBJECT_ERRORS)
async def update_task(
    task_id: str,
    task_data: TaskUpdate,
    current_user: CurrentUser,
    service: TaskServiceDep,
):
    """
    Update a task. Only the supplied fields change.
    """
    task = await service.update_task(current_user, task_id, task_data)
    return TaskEnvelope(
        success=True,
        data=task.to_api_dict(),
        message="Task updated successfully",
    )


@router.delete("/{task_id}", response_model=DeleteTaskResponse, responses=_OBJECT_ERRORS)
async def delete_task(
    task_id: str,
    current_user: CurrentUser,
    service: TaskServiceDep,
):
    """
    Permanently delete a task.
    """
    await service.delete_task(current_user, task_id)
    return DeleteTaskResponse(success=True, message="Task deleted successfully")


@router.post("/{task_id}/complete", response_model=TaskEnvelope, responses=_OBJECT_ERRORS)
async def complete_task(
    task_id: str,
    current_user: CurrentUser,
    service: TaskServiceDep,
):
    """Mark a task as completed."""
    task = await service.complete_task(current_user, task_id)
    return TaskEnvelope(
        success=True,
        data=task.to_api_dict(),
        message="Task marked as completed",
    )


@router.post("/{task_id}/incomplete", response_model=TaskEnvelope, responses=_OBJECT_ERRORS)
async def incomplete_task(
    task_id: str,
    current_user: CurrentUser,
    service: TaskServiceDep,
):
    """Mark a task as not completed."""
    task = await service.incomplete_task(current_user, task_id)
    return TaskEnvelope(
        success=True,
        data=task.to_api_dict(),
        message="Task marked as incomplete",
    )
