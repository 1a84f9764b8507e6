"""
Factor Setting Model.

Effective-dated coefficient values per (component kind, hashtagged,
financial year). The version column is SQLAlchemy's optimistic
concurrency token; the year freeze compares and swaps it.
Source: https://docs.sqlalchemy.org/en/20/orm/versioning.html
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinic_pricing.core.enums import FreezeState, ServiceComponentType
from clinic_pricing.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel


class FactorSetting(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Coefficient value in force for a component kind.

    The effective window is half-open: [effective_from, effective_to).
    Once frozen, a setting is read-only and may only back historical
    re-display of calculations dated before frozen_at.
    """

    __tablename__ = "factor_settings"

    factor_type: Mapped[ServiceComponentType] = mapped_column(
        Enum(ServiceComponentType),
        nullable=False,
        index=True,
        comment="Technical or professional",
    )
    is_hashtagged: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Factor value per coefficient unit",
    )
    financial_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    effective_to: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Freeze state machine
    freeze_state: Mapped[FreezeState] = mapped_column(
        Enum(FreezeState),
        default=FreezeState.OPEN,
        nullable=False,
        index=True,
    )
    frozen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    frozen_by: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="Optimistic concurrency token",
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("value > 0", name="ck_factor_settings_positive"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="ck_factor_settings_window",
        ),
        CheckConstraint(
            "(freeze_state = 'FROZEN') = (frozen_at IS NOT NULL)",
            name="ck_factor_settings_frozen_at",
        ),
        Index(
            "ix_factor_settings_lookup",
            "factor_type",
            "is_hashtagged",
            "financial_year",
            "effective_from",
            postgresql_where=text("is_deleted = false"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<FactorSetting(type={self.factor_type}, hashtagged={self.is_hashtagged}, "
            f"year={self.financial_year}, value={self.value})>"
        )
