"""
User Model
==========

SQLAlchemy model for user accounts and their roles.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tasktracker.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from tasktracker.models.task import Task


class Role(str, Enum):
    """Roles a user may hold."""
    USER = "user"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """
    User account model.

    Roles are stored as a plain JSON list of role names; ``role_set`` is the
    parsed view used by the access policy.
    """

    __tablename__ = "users"

    # Primary Key
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Account fields
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    roles: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [Role.USER.value],
    )

    # Relationships
    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="owner",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, email={self.email})>"

    @property
    def role_set(self) -> frozenset[Role]:
        """Known roles held by this user; unknown names are ignored."""
        known = {r.value for r in Role}
        return frozenset(Role(r) for r in (self.roles or []) if r in known)

    def has_role(self, role: Role) -> bool:
        return role in self.role_set

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.user_id),
            "name": self.name,
            "email": self.email,
            "roles": sorted(r.value for r in self.role_set),
        }
