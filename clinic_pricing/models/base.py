"""
SQLAlchemy Base Model
Source: https://docs.sqlalchemy.org/en/20/orm/declarative_styles.html
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimeStampedModel:
    """
    Mixin for models with created_at and updated_at timestamps.

    created_at also breaks ties when ordering business rules, so it is
    never updated after insert.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class UUIDModel:
    """
    Mixin for models with UUID primary key.

    Source: https://www.postgresql.org/docs/17/datatype-uuid.html
    """

    id: Mapped[UUID] = mapped_column(  # type: ignore[type-arg]
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )


class SoftDeleteModel:
    """Mixin for rows that are hidden rather than removed."""

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="Actor that soft-deleted the row",
    )
