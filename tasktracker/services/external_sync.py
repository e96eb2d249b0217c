"""
External Sync
=============

Pulls todos from an external HTTP source and reconciles them into the
caller's task list.

Handles:
- Fetching the todo array with bounded retries and a fixed backoff
- Normalizing external records into task rows
- Upserting rows keyed on (owner_id, title)
- Invalidating the owner's cached listings afterwards
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.config import settings
from tasktracker.core.errors import UpstreamUnavailableError
from tasktracker.core.policy import Actor
from tasktracker.models.task import TITLE_MAX_LENGTH, TaskPriority
from tasktracker.services.cache import CacheKeys, TaskCache, get_task_cache
from tasktracker.services.task_store import TaskStore

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"

Sleep = Callable[[float], Awaitable[None]]


class ExternalTodoClient:
    """HTTP client for the external todo source."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.url = url or settings.EXTERNAL_TODOS_URL
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_SYNC_TIMEOUT
        self._transport = transport
        self._sleep = sleep

    async def fetch_todos(self, attempts: int = 3, backoff_ms: int = 100) -> list:
        """
        GET the todo array.

        Transport errors and non-2xx responses are retried up to *attempts*
        times in total, waiting *backoff_ms* between tries. A 2xx response
        whose body is not a JSON array is not retried.

        Raises:
            UpstreamUnavailableError: when every attempt failed or the body
                is not a JSON array
        """
        attempts = max(1, attempts)
        last_error = "no attempt made"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = await client.get(
                        self.url, headers={"Accept": "application/json"}
                    )
                except httpx.HTTPError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                    logger.warning(
                        "External todo fetch attempt %d/%d failed: %s",
                        attempt, attempts, last_error,
                    )
                else:
                    if response.is_success:
                        return self._parse(response)
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        "External todo fetch attempt %d/%d returned %s",
                        attempt, attempts, response.status_code,
                    )

                if attempt < attempts:
                    await self._sleep(backoff_ms / 1000)

        logger.error(
            "Failed to fetch external todos from %s after %d attempts: %s",
            self.url, attempts, last_error,
        )
        raise UpstreamUnavailableError()

    def _parse(self, response: httpx.Response) -> list:
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("External todo source returned invalid JSON: %s", exc)
            raise UpstreamUnavailableError(
                message="External source returned an invalid response"
            ) from exc

        if not isinstance(payload, list):
            logger.error(
                "External todo source returned %s instead of an array",
                type(payload).__name__,
            )
            raise UpstreamUnavailableError(
                message="External source returned an invalid response"
            )
        return payload


def normalize_todo(record: Any, owner_id) -> dict:
    """
    Map one external record onto task columns.

    A missing or blank title becomes "Untitled"; titles are cut to the
    column length. Everything else gets task defaults.
    """
    raw_title = record.get("title") if isinstance(record, dict) else None
    title = str(raw_title).strip() if raw_title is not None else ""
    completed = record.get("completed") if isinstance(record, dict) else False

    return {
        "owner_id": owner_id,
        "title": (title or UNTITLED)[:TITLE_MAX_LENGTH],
        "description": None,
        "is_completed": bool(completed),
        "priority": TaskPriority.MEDIUM,
    }


@dataclass
class SyncResult:
    """Outcome of one reconciliation run."""

    received: int
    inserted: int
    affected: int

    def to_dict(self) -> dict:
        return asdict(self)


class TaskSyncReconciler:
    """Reconciles the external todo list into one user's tasks."""

    def __init__(
        self,
        db: AsyncSession,
        client: Optional[ExternalTodoClient] = None,
        cache: Optional[TaskCache] = None,
        attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
    ):
        self.db = db
        self.store = TaskStore(db)
        self.client = client or ExternalTodoClient()
        self.cache = cache if cache is not None else get_task_cache()
        self.attempts = attempts or settings.EXTERNAL_SYNC_ATTEMPTS
        self.backoff_ms = backoff_ms if backoff_ms is not None else settings.EXTERNAL_SYNC_BACKOFF_MS

    async def sync_for_user(self, actor: Actor) -> SyncResult:
        """
        Fetch, normalize and upsert the external todos for *actor*.

        ``inserted`` is estimated from titles that already existed before
        the upsert; duplicate titles inside one payload make it inexact.
        Nothing is written when the fetch fails.
        """
        todos = await self.client.fetch_todos(
            attempts=self.attempts, backoff_ms=self.backoff_ms
        )
        rows = [normalize_todo(todo, actor.user_id) for todo in todos]
        if not rows:
            logger.info("External sync for user %s received no todos", actor.user_id)
            return SyncResult(received=0, inserted=0, affected=0)

        existing = await self.store.count_existing_titles(
            actor.user_id, [row["title"] for row in rows]
        )
        inserted = max(len(rows) - existing, 0)

        affected = await self.store.bulk_upsert(rows)
        await self.db.commit()
        await self.cache.invalidate([CacheKeys.user_tag(actor.user_id)])

        result = SyncResult(received=len(rows), inserted=inserted, affected=affected)
        logger.info(
            "External sync for user %s: received=%d inserted=%d affected=%d",
            actor.user_id, result.received, result.inserted, result.affected,
        )
        return result
