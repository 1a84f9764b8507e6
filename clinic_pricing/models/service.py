"""
Service, Component and Department Override Models.

A service's base price is the sum of its component coefficients
multiplied by the factor in force for each component kind.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_pricing.core.enums import ServiceComponentType
from clinic_pricing.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel


class ServiceCategory(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """Grouping of services that plan-level overrides are keyed on."""

    __tablename__ = "service_categories"

    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Category title",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    services: Mapped[list["Service"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<ServiceCategory(id={self.id}, title='{self.title}')>"


class Service(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Billable clinical service.

    is_hashtagged selects the hashtagged coefficient table for the service.
    """

    __tablename__ = "services"

    category_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("service_categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Owning service category",
    )
    service_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="National tariff code",
    )
    title: Mapped[str] = mapped_column(
        String(250),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    is_hashtagged: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    category: Mapped["ServiceCategory"] = relationship(back_populates="services")
    components: Mapped[list["ServiceComponent"]] = relationship(
        back_populates="service",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index(
            "ix_services_code_active",
            "service_code",
            unique=True,
            postgresql_where=text("is_deleted = false"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, code='{self.service_code}')>"


class ServiceComponent(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Technical or professional component of a service.

    Components are never edited once billed against; repricing adds a new
    component or a new factor setting.
    """

    __tablename__ = "service_components"

    service_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    component_type: Mapped[ServiceComponentType] = mapped_column(
        Enum(ServiceComponentType),
        nullable=False,
        comment="Technical or professional",
    )
    coefficient: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Relative value units of the component",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    service: Mapped["Service"] = relationship(back_populates="components")

    __table_args__ = (
        CheckConstraint("coefficient > 0", name="ck_service_components_positive"),
        Index("ix_service_components_service_type", "service_id", "component_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<ServiceComponent(service_id={self.service_id}, "
            f"type={self.component_type}, coefficient={self.coefficient})>"
        )


class DepartmentServiceOverride(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """Department-specific factor values for a shared service."""

    __tablename__ = "department_service_overrides"

    service_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    department_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Department offering the service",
    )
    override_technical_factor: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2),
        nullable=True,
    )
    override_professional_factor: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_department_overrides_service_department",
            "service_id",
            "department_id",
            unique=True,
            postgresql_where=text("is_deleted = false"),
        ),
    )
