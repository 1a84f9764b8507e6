"""
Pydantic Schemas for Service Pricing.

Read-snapshot shapes consumed by the coefficient resolver and the base
price calculator, plus the breakdown they produce.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from clinic_pricing.core.enums import FreezeState, ServiceComponentType


# =============================================================================
# Service Schemas
# =============================================================================


class ServiceComponentData(BaseModel):
    """Technical or professional component of a service."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    component_type: ServiceComponentType
    coefficient: Decimal = Field(..., gt=0, description="Relative value units")
    is_active: bool = True
    is_deleted: bool = False

    @property
    def is_billable(self) -> bool:
        return self.is_active and not self.is_deleted


class ServiceData(BaseModel):
    """Billable service together with its components."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    category_id: UUID
    service_code: str = Field(..., min_length=1, max_length=50)
    title: str = ""
    is_hashtagged: bool = False
    is_active: bool = True
    is_deleted: bool = False
    components: tuple[ServiceComponentData, ...] = ()

    def active_components(self) -> list[ServiceComponentData]:
        """Components that take part in pricing."""
        return [c for c in self.components if c.is_billable]


class DepartmentOverrideData(BaseModel):
    """Department-specific factor values for a shared service."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    service_id: UUID
    department_id: UUID
    override_technical_factor: Optional[Decimal] = Field(None, gt=0)
    override_professional_factor: Optional[Decimal] = Field(None, gt=0)
    is_active: bool = True
    is_deleted: bool = False

    def factor_for(self, kind: ServiceComponentType) -> Optional[Decimal]:
        if not self.is_active or self.is_deleted:
            return None
        if kind == ServiceComponentType.TECHNICAL:
            return self.override_technical_factor
        return self.override_professional_factor


# =============================================================================
# Factor Setting Schemas
# =============================================================================


class FactorSettingData(BaseModel):
    """Snapshot of a factor setting as seen by the resolver."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    factor_type: ServiceComponentType
    is_hashtagged: bool = False
    value: Decimal = Field(..., gt=0)
    financial_year: int
    effective_from: datetime
    effective_to: Optional[datetime] = None
    is_active: bool = True
    is_deleted: bool = False
    freeze_state: FreezeState = FreezeState.OPEN
    frozen_at: Optional[datetime] = None
    frozen_by: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_window_and_freeze(self) -> "FactorSettingData":
        if self.effective_to is not None and self.effective_to <= self.effective_from:
            raise ValueError("effective_to must be after effective_from")
        if (self.freeze_state == FreezeState.FROZEN) != (self.frozen_at is not None):
            raise ValueError("frozen_at must be set exactly when the setting is frozen")
        return self

    @property
    def is_frozen(self) -> bool:
        return self.freeze_state == FreezeState.FROZEN

    def contains(self, at: datetime) -> bool:
        """Check the half-open window [effective_from, effective_to)."""
        if at < self.effective_from:
            return False
        return self.effective_to is None or at < self.effective_to


class ResolvedFactor(BaseModel):
    """Factor value chosen by the coefficient resolver."""

    model_config = ConfigDict(frozen=True)

    setting_id: UUID
    factor_type: ServiceComponentType
    is_hashtagged: bool
    value: Decimal
    financial_year: int
    effective_from: datetime
    is_frozen: bool = False


# =============================================================================
# Base Price Breakdown
# =============================================================================


class ComponentPriceLine(BaseModel):
    """One component's contribution to a base price, unrounded."""

    model_config = ConfigDict(frozen=True)

    component_id: UUID
    component_type: ServiceComponentType
    coefficient: Decimal
    factor: Decimal
    factor_setting_id: UUID
    department_override: bool = False
    amount: Decimal


class BasePriceBreakdown(BaseModel):
    """Base price of a service with per-component detail."""

    model_config = ConfigDict(frozen=True)

    service_id: UUID
    calculation_date: datetime
    lines: tuple[ComponentPriceLine, ...]
    unrounded_total: Decimal
    total: Decimal
    department_id: Optional[UUID] = None

    @property
    def department_override_applied(self) -> bool:
        return any(line.department_override for line in self.lines)

    def amount_for(self, kind: ServiceComponentType) -> Decimal:
        """Unrounded sum of the lines of one component kind."""
        return sum(
            (line.amount for line in self.lines if line.component_type == kind),
            Decimal("0"),
        )
