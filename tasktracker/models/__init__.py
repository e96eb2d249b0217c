"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations and relationships.
"""

from tasktracker.models.user import Role, User
from tasktracker.models.task import Task, TaskPriority

__all__ = [
    # User
    "User",
    "Role",
    # Task
    "Task",
    "TaskPriority",
]
