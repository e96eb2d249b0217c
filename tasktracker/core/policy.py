"""
Task Access Policy
==================

Pure authorization decisions over (actor, task, action). No I/O.

Per-object actions (view, update, delete) are allowed for the task's owner
and for admins. Listing is not restricted here; the task service scopes
collection queries to the caller's own tasks.
"""

from typing import Protocol
import uuid

from tasktracker.models.user import Role


class Actor(Protocol):
    user_id: uuid.UUID

    def has_role(self, role: Role) -> bool: ...


class OwnedTask(Protocol):
    owner_id: uuid.UUID


class TaskPolicy:
    """Authorization rules for tasks."""

    def is_owner_or_admin(self, actor: Actor, task: OwnedTask) -> bool:
        return actor.user_id == task.owner_id or actor.has_role(Role.ADMIN)

    def can_view_any(self, actor: Actor) -> bool:
        return True

    def can_view(self, actor: Actor, task: OwnedTask) -> bool:
        return self.is_owner_or_admin(actor, task)

    def can_create(self, actor: Actor) -> bool:
        return True

    def can_update(self, actor: Actor, task: OwnedTask) -> bool:
        return self.is_owner_or_admin(actor, task)

    def can_delete(self, actor: Actor, task: OwnedTask) -> bool:
        return self.is_owner_or_admin(actor, task)
