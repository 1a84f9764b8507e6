"""
Business Rule Model.

Rules are append-only: edits create a new row and deactivate the old one.
Condition and action payloads are JSONB lists of tagged objects, parsed
into typed variants when the rule engine loads them.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from clinic_pricing.core.enums import BusinessRuleType
from clinic_pricing.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel


class BusinessRule(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Priority-ordered, scoped, effective-dated business rule.

    Null scope columns are wildcards.
    """

    __tablename__ = "business_rules"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    rule_type: Mapped[BusinessRuleType] = mapped_column(
        Enum(BusinessRuleType),
        nullable=False,
        index=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Higher value is applied first",
    )

    # Scope filters
    plan_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    category_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    service_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    is_hashtagged: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True,
    )

    # Validity
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    # Payloads
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        default=list,
        nullable=False,
    )
    actions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        default=list,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Message surfaced when a validation rule fails",
    )

    created_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index("ix_business_rules_type_active", "rule_type", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<BusinessRule(id={self.id}, type={self.rule_type}, priority={self.priority})>"
