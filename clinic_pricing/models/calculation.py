"""
Insurance Calculation and Audit Event Models.

InsuranceCalculation rows are immutable. Corrections soft-delete the row
and insert a replacement pointing back through supersedes_id.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from clinic_pricing.core.enums import CalculationOutcome, InsuranceCalculationType
from clinic_pricing.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel


class InsuranceCalculation(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Auditable split of one service's amount between patient and insurers.

    Invariant: insurance_share + supplementary_share + patient_share
    == service_amount + deductible.
    """

    __tablename__ = "insurance_calculations"

    patient_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("insurance_plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    patient_insurance_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("patient_insurances.id", ondelete="RESTRICT"),
        nullable=False,
    )
    supplementary_plan_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("insurance_plans.id", ondelete="RESTRICT"),
        nullable=True,
    )
    supplementary_patient_insurance_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("patient_insurances.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Amounts
    base_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    service_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Adjusted billable amount after rule effects",
    )
    coverage_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    insurance_share: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    supplementary_share: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0"),
        nullable=False,
    )
    patient_share: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    copay: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    deductible: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    coverage_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    outcome: Mapped[CalculationOutcome] = mapped_column(
        Enum(CalculationOutcome),
        nullable=False,
    )
    calculation_type: Mapped[InsuranceCalculationType] = mapped_column(
        Enum(InsuranceCalculationType),
        nullable=False,
    )
    calculation_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    applied_rule_ids: Mapped[list[UUID]] = mapped_column(
        ARRAY(PG_UUID(as_uuid=True)),
        default=list,
        nullable=False,
    )

    # Context links
    reception_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    appointment_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    supersedes_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("insurance_calculations.id", ondelete="RESTRICT"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "insurance_share + supplementary_share + patient_share"
            " = service_amount + COALESCE(deductible, 0)",
            name="ck_insurance_calculations_reconciled",
        ),
        CheckConstraint(
            "insurance_share >= 0 AND supplementary_share >= 0 AND patient_share >= 0",
            name="ck_insurance_calculations_non_negative",
        ),
        Index("ix_insurance_calculations_patient_service", "patient_id", "service_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<InsuranceCalculation(id={self.id}, service_id={self.service_id}, "
            f"insurer={self.insurance_share}, patient={self.patient_share})>"
        )


class CalculationAuditEvent(Base):
    """Append-only audit trail of calculation outcomes."""

    __tablename__ = "calculation_audit_events"

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    calculation_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    outcome: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        default=dict,
        nullable=False,
    )
