"""
Task Service
============

Business logic for task management.

Every mutation follows the same order: authorize, write, commit, notify,
invalidate the owner's cached listings, then return the row as re-read from
the database. Committing before invalidating means a concurrent reader that
misses the cache can only recompute from committed data.
"""

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Type, TypeVar, Union
import uuid

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.core.errors import (
    ErrorCodes,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from tasktracker.core.policy import Actor, TaskPolicy
from tasktracker.models.task import Task
from tasktracker.schemas.task import TaskCreate, TaskUpdate
from tasktracker.services.cache import TASK_CACHE_TTL, CacheKeys, TaskCache, get_task_cache
from tasktracker.services.notifications import TaskEvent, TaskNotifier, get_notifier
from tasktracker.services.task_store import (
    TaskStore,
    normalize_filters,
    parse_completed_filter,
)

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message=f"{field} must be a positive integer", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(message=f"{field} must be a positive integer", field=field) from None
    if number < 1:
        raise ValidationError(message=f"{field} must be a positive integer", field=field)
    return number


class TaskService:
    """Service for task operations."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[TaskCache] = None,
        notifier: Optional[TaskNotifier] = None,
        policy: Optional[TaskPolicy] = None,
    ):
        self.db = db
        self.store = TaskStore(db)
        self.cache = cache if cache is not None else get_task_cache()
        self.notifier = notifier if notifier is not None else get_notifier()
        self.policy = policy or TaskPolicy()

    # =========================================================================
    # Reads (cached)
    # =========================================================================

    async def list_for_user(
        self,
        actor: Actor,
        completed: Optional[Union[bool, str]] = None,
    ) -> list[dict]:
        """All of the caller's tasks, optionally by completion state."""
        if completed is None:
            key = CacheKeys.user_tasks(actor.user_id, "all")
            is_completed = None
        else:
            is_completed = parse_completed_filter(completed)
            key = CacheKeys.user_tasks(
                actor.user_id, "completed", {"completed": is_completed}
            )

        async def compute() -> list[dict]:
            tasks = await self.store.list_all(actor.user_id, is_completed)
            return [task.to_api_dict() for task in tasks]

        return await self.cache.get_or_compute(
            key, [CacheKeys.user_tag(actor.user_id)], TASK_CACHE_TTL, compute
        )

    async def get_paginated_for_user(
        self,
        actor: Actor,
        per_page: Any = 15,
        filters: Optional[Mapping[str, Any]] = None,
        page: Any = 1,
    ) -> dict:
        """
        One page of the caller's tasks, newest first.

        Returns ``{"items": [...], "pagination": {...}}``. Equivalent filter
        sets share a cache entry whatever order they were supplied in.
        """
        if not self.policy.can_view_any(actor):
            raise ForbiddenError(message="You do not have permission to list tasks.")

        per_page = _positive_int(per_page, "per_page")
        page = _positive_int(page, "page")
        try:
            filters = normalize_filters(filters)
        except ValueError:
            raise ValidationError(
                message="priority must be one of: low, medium, high",
                field="priority",
            ) from None

        key = CacheKeys.user_tasks(
            actor.user_id,
            "paginate",
            {"per_page": per_page, "page": page, **filters},
        )

        async def compute() -> dict:
            result = await self.store.query(actor.user_id, filters, page, per_page)
            return result.to_dict()

        return await self.cache.get_or_compute(
            key, [CacheKeys.user_tag(actor.user_id)], TASK_CACHE_TTL, compute
        )

    async def get_task(self, actor: Actor, task_id: Union[str, uuid.UUID]) -> Task:
        """Fetch one task the caller may view."""
        task = await self._find(task_id)
        if not self.policy.can_view(actor, task):
            raise ForbiddenError(message="You do not have permission to view this task.")
        return task

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_task(
        self,
        actor: Actor,
        data: Union[TaskCreate, Mapping[str, Any]],
    ) -> Task:
        """Create a task owned by the caller."""
        if not self.policy.can_create(actor):
            raise ForbiddenError(message="You do not have permission to create tasks.")

        payload = self._validate(TaskCreate, data)
        task = await self.store.create({**payload.model_dump(), "owner_id": actor.user_id})
        await self.db.commit()
        task = await self.store.refresh(task)

        self.notifier.emit(TaskEvent.CREATED, task.to_api_dict())
        await self._forget(task.owner_id)

        logger.info("Task %s created for user %s", task.id, actor.user_id)
        return task

    async def update_task(
        self,
        actor: Actor,
        task_id: Union[str, uuid.UUID],
        data: Union[TaskUpdate, Mapping[str, Any]],
    ) -> Task:
        """Apply a partial update to a task the caller may modify."""
        task = await self._find(task_id)
        if not self.policy.can_update(actor, task):
            raise ForbiddenError(message="You do not have permission to update this task.")

        changes = self._validate(TaskUpdate, data).changes()
        return await self._apply(task, lambda t: self.store.update(t, changes))

    async def complete_task(self, actor: Actor, task_id: Union[str, uuid.UUID]) -> Task:
        task = await self._find(task_id)
        if not self.policy.can_update(actor, task):
            raise ForbiddenError(message="You do not have permission to update this task.")
        return await self._apply(task, self.store.mark_completed)

    async def incomplete_task(self, actor: Actor, task_id: Union[str, uuid.UUID]) -> Task:
        task = await self._find(task_id)
        if not self.policy.can_update(actor, task):
            raise ForbiddenError(message="You do not have permission to update this task.")
        return await self._apply(task, self.store.mark_incomplete)

    async def delete_task(self, actor: Actor, task_id: Union[str, uuid.UUID]) -> bool:
        """Permanently delete a task the caller may delete."""
        task = await self._find(task_id)
        if not self.policy.can_delete(actor, task):
            raise ForbiddenError(message="You do not have permission to delete this task.")

        owner_id = task.owner_id
        deleted = await self.store.delete(task)
        await self.db.commit()
        if deleted:
            await self._forget(owner_id)
            logger.info("Task %s deleted by user %s", task_id, actor.user_id)
        return deleted

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _apply(self, task: Task, write: Callable[[Task], Awaitable[Task]]) -> Task:
        was_completed = task.is_completed
        await write(task)
        await self.db.commit()
        task = await self.store.refresh(task)

        if task.is_completed and not was_completed:
            self.notifier.emit(TaskEvent.COMPLETED, task.to_api_dict())
        await self._forget(task.owner_id)
        return task

    async def _find(self, task_id: Union[str, uuid.UUID]) -> Task:
        task = await self.store.get(task_id)
        if task is None:
            raise NotFoundError(code=ErrorCodes.TASK_NOT_FOUND, message="Task not found")
        return task

    async def _forget(self, owner_id: uuid.UUID) -> None:
        if not await self.cache.invalidate([CacheKeys.user_tag(owner_id)]):
            logger.warning(
                "Cached task listings for user %s could not be invalidated", owner_id
            )

    @staticmethod
    def _validate(schema: Type[SchemaT], data: Union[SchemaT, Mapping[str, Any]]) -> SchemaT:
        if isinstance(data, schema):
            return data
        try:
            return schema.model_validate(data)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(loc) for loc in first.get("loc", ())) or None
            raise ValidationError(
                message=first.get("msg", "Invalid task data"),
                field=field,
            ) from exc
