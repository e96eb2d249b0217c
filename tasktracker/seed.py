"""
Development Seed Data
=====================

Creates an admin, a regular user and a handful of sample tasks.

Usage:
    python -m tasktracker.seed

Re-running is safe: existing users are left untouched and sample tasks are
only added to users that have none.
"""

import asyncio
import logging

from sqlalchemy import func, select

from tasktracker.db.session import close_db, create_tables, get_session_factory
from tasktracker.models.task import Task, TaskPriority
from tasktracker.models.user import Role, User
from tasktracker.services.auth_service import AuthService
from tasktracker.services.task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "password"

SEED_USERS = [
    {"name": "Admin User", "email": "admin@example.com", "roles": (Role.ADMIN, Role.USER)},
    {"name": "Regular User", "email": "user@example.com", "roles": (Role.USER,)},
]

SAMPLE_TASKS = [
    {"title": "Write project brief", "priority": TaskPriority.HIGH},
    {"title": "Review pull requests", "priority": TaskPriority.MEDIUM},
    {"title": "Book team lunch", "priority": TaskPriority.LOW, "is_completed": True},
    {
        "title": "Plan next sprint",
        "description": "Collect estimates and draft the sprint goal.",
        "priority": TaskPriority.MEDIUM,
    },
]


async def _ensure_user(auth_service: AuthService, profile: dict) -> User:
    user = await auth_service.get_user_by_email(profile["email"])
    if user is None:
        user = await auth_service.create_user(
            name=profile["name"],
            email=profile["email"],
            password=DEFAULT_PASSWORD,
            roles=profile["roles"],
        )
        logger.info("Created user %s (%s)", profile["email"], user.user_id)
    return user


async def seed() -> None:
    await create_tables()

    async with get_session_factory()() as session:
        auth_service = AuthService(session)
        store = TaskStore(session)

        for profile in SEED_USERS:
            user = await _ensure_user(auth_service, profile)
            count = await session.scalar(
                select(func.count()).select_from(Task).where(Task.owner_id == user.user_id)
            )
            if count:
                continue
            for sample in SAMPLE_TASKS:
                await store.create({**sample, "owner_id": user.user_id})
            logger.info("Added %d sample tasks for %s", len(SAMPLE_TASKS), profile["email"])

        await session.commit()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    async def _run() -> None:
        try:
            await seed()
        finally:
            await close_db()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
