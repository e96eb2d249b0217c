"""
Task Models
===========

SQLAlchemy model for tasks.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import (
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tasktracker.db.base import Base, TimestampMixin, as_aware

if TYPE_CHECKING:
    from tasktracker.models.user import User


TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 5000


# =============================================================================
# Enums
# =============================================================================

class TaskPriority(str, Enum):
    """Task priority level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Models
# =============================================================================

class Task(Base, TimestampMixin):
    """
    Task model.

    ``seq`` is an internal surrogate key that follows insertion order and
    breaks ``created_at`` ties when listing. The public identifier is ``id``.
    """

    __tablename__ = "tasks"

    # Primary Key
    seq: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Public identifier
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        unique=True,
        nullable=False,
        default=uuid.uuid4,
    )

    # Foreign Keys
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )

    # Task details
    title: Mapped[str] = mapped_column(
        String(TITLE_MAX_LENGTH),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    is_completed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        SQLEnum(
            TaskPriority,
            name="taskpriority",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )

    # Relationships
    owner: Mapped["User"] = relationship(
        "User",
        back_populates="tasks",
    )

    # Indexes
    __table_args__ = (
        Index("idx_task_owner", "owner_id"),
        Index("idx_task_is_completed", "is_completed"),
        Index("idx_task_priority", "priority"),
        Index("idx_task_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title={self.title[:30]})>"

    def to_api_dict(self) -> dict:
        """Serialize to the JSON shape returned by the API and stored in cache."""
        created_at = as_aware(self.created_at)
        updated_at = as_aware(self.updated_at)
        priority = self.priority or TaskPriority.MEDIUM
        return {
            "id": str(self.id),
            "title": self.title,
            "description": self.description,
            "priority": TaskPriority(priority).value,
            "is_completed": bool(self.is_completed),
            "owner_id": str(self.owner_id),
            "created_at": created_at.isoformat() if created_at else None,
            "updated_at": updated_at.isoformat() if updated_at else None,
        }
