"""
Insurance Provider, Plan, Plan Service, Tariff and Patient Insurance Models.

Override precedence when pricing a service for a plan:
InsuranceTariff (service, plan) > PlanService (plan, category) > InsurancePlan defaults.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_pricing.core.enums import InsuranceType
from clinic_pricing.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel


class InsuranceProvider(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """Insurance company offering one or more plans."""

    __tablename__ = "insurance_providers"

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    plans: Mapped[list["InsurancePlan"]] = relationship(back_populates="provider")

    def __repr__(self) -> str:
        return f"<InsuranceProvider(id={self.id}, code='{self.code}')>"


class InsurancePlan(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Insurance plan with default coverage and deductible.

    Percentages are stored on a 0-100 scale.
    """

    __tablename__ = "insurance_plans"

    provider_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("insurance_providers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    plan_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    insurance_type: Mapped[InsuranceType] = mapped_column(
        Enum(InsuranceType),
        default=InsuranceType.PRIMARY,
        nullable=False,
        comment="Primary or supplementary plan",
    )
    coverage_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Default coverage percent (0-100)",
    )
    deductible: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0"),
        nullable=False,
        comment="Default patient-borne deductible",
    )
    valid_from: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    valid_to: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    provider: Mapped["InsuranceProvider"] = relationship(back_populates="plans")
    plan_services: Mapped[list["PlanService"]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "coverage_percent >= 0 AND coverage_percent <= 100",
            name="ck_insurance_plans_coverage_range",
        ),
        CheckConstraint("deductible >= 0", name="ck_insurance_plans_deductible"),
    )

    def __repr__(self) -> str:
        return f"<InsurancePlan(id={self.id}, code='{self.plan_code}')>"


class PlanService(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """Per-(plan, service category) override of plan coverage."""

    __tablename__ = "plan_services"

    plan_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("insurance_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("service_categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    coverage_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Coverage override (0-100)",
    )
    patient_share_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Fixed patient share (0-100)",
    )
    is_covered: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    plan: Mapped["InsurancePlan"] = relationship(back_populates="plan_services")

    __table_args__ = (
        Index(
            "ix_plan_services_plan_category",
            "plan_id",
            "category_id",
            unique=True,
            postgresql_where=text("is_deleted = false"),
        ),
    )


class InsuranceTariff(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Per-(service, plan) tariff override.

    Explicit amounts take precedence over percentage math.
    """

    __tablename__ = "insurance_tariffs"

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
    insurance_type: Mapped[InsuranceType] = mapped_column(
        Enum(InsuranceType),
        default=InsuranceType.PRIMARY,
        nullable=False,
    )
    is_covered: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Explicit amounts
    tariff_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    patient_share: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    insurer_share: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    # Percentages
    coverage_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    supplementary_coverage_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )
    supplementary_max_payment: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2),
        nullable=True,
    )

    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Higher wins when several tariffs match",
    )
    valid_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_insurance_tariffs_service_plan", "service_id", "plan_id", "insurance_type"),
        CheckConstraint(
            "tariff_price IS NULL OR tariff_price >= 0",
            name="ck_insurance_tariffs_price",
        ),
    )


class PatientInsurance(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """A patient's enrolment in an insurance plan."""

    __tablename__ = "patient_insurances"

    patient_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("insurance_plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    policy_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    card_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_primary: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="Lower value is preferred",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    plan: Mapped["InsurancePlan"] = relationship()
