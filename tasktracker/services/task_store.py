"""
Task Store
==========

Database access for tasks: filtered/paginated listing, point lookup,
create/update/delete and a conflict-aware bulk upsert.

The store never checks permissions and never touches the cache; the task
service does both around every call.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union
import uuid

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.db.base import next_timestamp, utc_now
from tasktracker.models.task import Task, TaskPriority

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "is_completed", "priority")

DEFAULT_CONFLICT_KEYS = ("owner_id", "title")
DEFAULT_UPDATE_COLUMNS = ("description", "is_completed", "priority", "updated_at")

# Columns an upsert may never overwrite on an existing row.
_IMMUTABLE_COLUMNS = frozenset({"seq", "id", "owner_id", "created_at"})

_TRUTHY = frozenset({"1", "true", "yes"})


# =============================================================================
# Filter parsing
# =============================================================================

def parse_completed_filter(value: Any) -> bool:
    """
    Interpret a ``completed`` filter value.

    Booleans pass through; strings "1", "true" and "yes" (any case) are
    true and every other string is false.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def normalize_filters(filters: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """
    Reduce raw query filters to the recognised, typed set.

    Unknown keys and empty values are dropped. Raises ``ValueError`` for a
    priority outside low/medium/high.
    """
    normalized: dict[str, Any] = {}
    if not filters:
        return normalized

    priority = filters.get("priority")
    if priority not in (None, ""):
        normalized["priority"] = TaskPriority(
            priority.strip().lower() if isinstance(priority, str) else priority
        ).value

    if "completed" in filters and filters["completed"] is not None:
        normalized["completed"] = parse_completed_filter(filters["completed"])

    return normalized


# =============================================================================
# Results
# =============================================================================

@dataclass
class TaskPage:
    """One page of a task listing."""

    items: list[Task]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_more(self) -> bool:
        return self.page < self.last_page

    def to_dict(self) -> dict:
        return {
            "items": [task.to_api_dict() for task in self.items],
            "pagination": {
                "current_page": self.page,
                "total_pages": self.last_page,
                "total_items": self.total,
                "per_page": self.per_page,
                "has_next": self.has_more,
                "has_previous": self.page > 1,
            },
        }


def _as_uuid(value: Union[str, uuid.UUID]) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


# =============================================================================
# TaskStore
# =============================================================================

class TaskStore:
    """Repository for the ``tasks`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _ordering():
        # Newest first; equal timestamps keep insertion order.
        return (Task.created_at.desc(), Task.seq.asc())

    # ---- reads -----------------------------------------------------------

    async def query(
        self,
        owner_id: uuid.UUID,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        per_page: int = 15,
    ) -> TaskPage:
        """
        Return one page of *owner_id*'s tasks.

        Pages past the end come back empty with the real totals.
        """
        if page < 1 or per_page < 1:
            raise ValueError("page and per_page must be positive integers")

        filters = normalize_filters(filters)
        conditions = [Task.owner_id == owner_id]
        if "priority" in filters:
            conditions.append(Task.priority == TaskPriority(filters["priority"]))
        if "completed" in filters:
            conditions.append(Task.is_completed == filters["completed"])

        total = await self.db.scalar(
            select(func.count()).select_from(Task).where(*conditions)
        )
        stmt = (
            select(Task)
            .where(*conditions)
            .order_by(*self._ordering())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await self.db.execute(stmt)
        return TaskPage(
            items=list(result.scalars().all()),
            total=total or 0,
            page=page,
            per_page=per_page,
        )

    async def list_all(
        self,
        owner_id: uuid.UUID,
        is_completed: Optional[bool] = None,
    ) -> list[Task]:
        """All of an owner's tasks, optionally filtered by completion."""
        stmt = select(Task).where(Task.owner_id == owner_id)
        if is_completed is not None:
            stmt = stmt.where(Task.is_completed == is_completed)
        result = await self.db.execute(stmt.order_by(*self._ordering()))
        return list(result.scalars().all())

    async def get(self, task_id: Union[str, uuid.UUID]) -> Optional[Task]:
        """Point lookup by public id. Malformed ids resolve to ``None``."""
        try:
            key = _as_uuid(task_id)
        except (TypeError, ValueError):
            return None
        result = await self.db.execute(select(Task).where(Task.id == key))
        return result.scalar_one_or_none()

    async def count_existing_titles(
        self,
        owner_id: uuid.UUID,
        titles: Iterable[str],
    ) -> int:
        """How many of the distinct *titles* already exist for *owner_id*."""
        unique_titles = set(titles)
        if not unique_titles:
            return 0
        stmt = select(func.count(distinct(Task.title))).where(
            Task.owner_id == owner_id,
            Task.title.in_(unique_titles),
        )
        return (await self.db.scalar(stmt)) or 0

    async def refresh(self, task: Task) -> Task:
        """Re-read *task* from the database."""
        await self.db.refresh(task)
        return task

    # ---- writes ----------------------------------------------------------

    async def create(self, data: Mapping[str, Any]) -> Task:
        """Insert a task, assigning a new UUID when none is supplied."""
        values = dict(data)
        values["id"] = _as_uuid(values["id"]) if values.get("id") else uuid.uuid4()
        values["owner_id"] = _as_uuid(values["owner_id"])
        if values.get("priority") is not None:
            values["priority"] = TaskPriority(values["priority"])

        now = utc_now()
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)

        task = Task(**values)
        self.db.add(task)
        await self.db.flush()
        return task

    async def update(self, task: Task, changes: Mapping[str, Any]) -> Task:
        """
        Apply the supplied subset of title/description/is_completed/priority.

        ``updated_at`` always moves forward when anything is applied.
        """
        applied = False
        for field in UPDATABLE_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if field == "priority":
                value = TaskPriority(value)
            setattr(task, field, value)
            applied = True

        if applied:
            task.updated_at = next_timestamp(task.updated_at)
            await self.db.flush()
        return task

    async def mark_completed(self, task: Task) -> Task:
        return await self.update(task, {"is_completed": True})

    async def mark_incomplete(self, task: Task) -> Task:
        return await self.update(task, {"is_completed": False})

    async def delete(self, task: Task) -> bool:
        """Permanently delete *task*."""
        await self.db.delete(task)
        await self.db.flush()
        return True

    async def bulk_upsert(
        self,
        rows: Sequence[Mapping[str, Any]],
        conflict_keys: Sequence[str] = DEFAULT_CONFLICT_KEYS,
        update_columns: Sequence[str] = DEFAULT_UPDATE_COLUMNS,
    ) -> int:
        """
        Insert rows that match no existing task on *conflict_keys*; otherwise
        overwrite only *update_columns* on every matching task.

        Runs inside a SAVEPOINT: either every row is applied or none is.
        Rows repeating a key already seen in the same batch update the task
        that the earlier row matched or inserted.

        Returns the number of tasks inserted plus tasks updated.
        """
        conflict_keys = tuple(conflict_keys)
        update_columns = tuple(update_columns)
        if not conflict_keys:
            raise ValueError("bulk_upsert needs at least one conflict key")
        forbidden = (_IMMUTABLE_COLUMNS | set(conflict_keys)) & set(update_columns)
        if forbidden:
            raise ValueError(f"bulk_upsert cannot overwrite {sorted(forbidden)}")
        if not rows:
            return 0

        normalized = [self._normalize_row(row, conflict_keys) for row in rows]
        affected = 0

        async with self.db.begin_nested():
            conditions = [
                getattr(Task, key).in_({row[key] for row in normalized})
                for key in conflict_keys
            ]
            result = await self.db.execute(
                select(Task).where(*conditions).with_for_update()
            )

            index: dict[tuple, list[Task]] = {}
            for task in result.scalars().all():
                index.setdefault(
                    tuple(getattr(task, key) for key in conflict_keys), []
                ).append(task)

            now = utc_now()
            for row in normalized:
                key = tuple(row[k] for k in conflict_keys)
                matches = index.get(key)
                if matches:
                    for task in matches:
                        self._apply_columns(task, row, update_columns)
                        affected += 1
                    continue

                values = {k: v for k, v in row.items() if k not in ("seq",)}
                values.setdefault("id", uuid.uuid4())
                values.setdefault("created_at", now)
                values.setdefault("updated_at", now)
                task = Task(**values)
                self.db.add(task)
                index[key] = [task]
                affected += 1

            await self.db.flush()

        logger.debug("bulk_upsert applied %d rows (%d affected)", len(rows), affected)
        return affected

    @staticmethod
    def _normalize_row(row: Mapping[str, Any], conflict_keys: Sequence[str]) -> dict:
        values = dict(row)
        missing = [key for key in conflict_keys if key not in values]
        if missing:
            raise ValueError(f"bulk_upsert row is missing conflict keys {missing}")
        if "owner_id" in values:
            values["owner_id"] = _as_uuid(values["owner_id"])
        if values.get("id"):
            values["id"] = _as_uuid(values["id"])
        if values.get("priority") is not None:
            values["priority"] = TaskPriority(values["priority"])
        return values

    @staticmethod
    def _apply_columns(task: Task, row: Mapping[str, Any], update_columns: Sequence[str]) -> None:
        for column in update_columns:
            if column == "updated_at":
                task.updated_at = next_timestamp(task.updated_at)
            elif column in row:
                setattr(task, column, row[column])
