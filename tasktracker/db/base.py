"""
Database Base Model
===================

Provides the base class for all SQLAlchemy models.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on the way back from the database; Postgres does not.
    """
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Return ``now`` or, if the clock has not moved past *previous*, previous + 1µs."""
    now = utc_now()
    previous = as_aware(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class Base(DeclarativeBase):
    """
    Base class for all database models.

    Provides common columns and functionality.
    """

    # Type annotation for class attributes
    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """
    Mixin that adds created_at and updated_at timestamps.

    Both are generated in Python so ``updated_at`` can be forced to advance
    on every mutation (see ``next_timestamp``).
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
