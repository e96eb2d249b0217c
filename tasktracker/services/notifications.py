"""
Task Notifications
==================

Fire-and-forget domain notifications (task created / task completed).

``TaskNotifier.emit`` schedules delivery on the running event loop and
returns immediately. Listener failures are logged and never reach the
caller. Pending deliveries are tracked so they are not garbage-collected
mid-flight and can be drained on shutdown.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TaskEvent(str, Enum):
    """Domain events emitted by the task service."""
    CREATED = "task.created"
    COMPLETED = "task.completed"


Listener = Callable[[TaskEvent, dict], Awaitable[None]]


async def log_task_created(event: TaskEvent, task: dict) -> None:
    """Write an audit log line for a new task."""
    if event is not TaskEvent.CREATED:
        return
    logger.info(
        "Task created task_id=%s title=%r user_id=%s created_at=%s",
        task.get("id"),
        task.get("title"),
        task.get("owner_id"),
        task.get("created_at"),
    )


async def log_task_completed(event: TaskEvent, task: dict) -> None:
    """Write an audit log line when a task becomes completed."""
    if event is not TaskEvent.COMPLETED:
        return
    logger.info(
        "Task completed task_id=%s user_id=%s completed_at=%s",
        task.get("id"),
        task.get("owner_id"),
        datetime.now(timezone.utc).isoformat(),
    )


class TaskNotifier:
    """Dispatches task events to registered listeners in the background."""

    def __init__(self, listeners: Optional[list[Listener]] = None) -> None:
        self._listeners: list[Listener] = list(listeners or [])
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def emit(self, event: TaskEvent, task: dict) -> None:
        """Schedule delivery of *event* and return without waiting."""
        if not self._listeners:
            return
        try:
            delivery = asyncio.get_running_loop().create_task(
                self._deliver(event, dict(task))
            )
        except RuntimeError as exc:
            logger.warning("Dropping %s notification, no running loop: %s", event.value, exc)
            return
        self._pending.add(delivery)
        delivery.add_done_callback(self._pending.discard)

    async def _deliver(self, event: TaskEvent, task: dict) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, task)
            except Exception:
                logger.exception(
                    "Notification listener %s failed for %s (task %s)",
                    getattr(listener, "__name__", listener),
                    event.value,
                    task.get("id"),
                )

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if not self._pending:
            return
        _, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for delivery in pending:
            delivery.cancel()
        if pending:
            logger.warning("Cancelled %d undelivered notifications", len(pending))


_notifier: Optional[TaskNotifier] = None


def get_notifier() -> TaskNotifier:
    """Process-wide notifier with the logging listeners attached."""
    global _notifier

    if _notifier is None:
        _notifier = TaskNotifier([log_task_created, log_task_completed])

    return _notifier
