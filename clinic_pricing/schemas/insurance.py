"""
Pydantic Schemas for Insurance Coverage.

Plans, plan-category overrides, tariffs, patient enrolments and the
coverage the resolver chain produces from them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from clinic_pricing.core.enums import CoverageSource, Gender, InsuranceType


def _within(day: date, start: Optional[date], end: Optional[date]) -> bool:
    """Inclusive date window with open ends."""
    if start is not None and day < start:
        return False
    return end is None or day <= end


# =============================================================================
# Plan Schemas
# =============================================================================


class InsurancePlanData(BaseModel):
    """Insurance plan with default coverage and deductible."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    provider_id: UUID = Field(default_factory=uuid4)
    plan_code: str = ""
    name: str = ""
    insurance_type: InsuranceType = InsuranceType.PRIMARY
    coverage_percent: Decimal = Field(..., ge=0, le=100)
    deductible: Decimal = Field(default=Decimal("0"), ge=0)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    is_deleted: bool = False

    def is_valid_on(self, day: date) -> bool:
        return self.is_active and not self.is_deleted and _within(day, self.valid_from, self.valid_to)


class PlanServiceData(BaseModel):
    """Per-(plan, category) override of plan coverage."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    plan_id: UUID
    category_id: UUID
    coverage_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    patient_share_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    is_covered: bool = True
    is_deleted: bool = False


class InsuranceTariffData(BaseModel):
    """Per-(service, plan) tariff override."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    service_id: UUID
    plan_id: UUID
    insurance_type: InsuranceType = InsuranceType.PRIMARY
    is_covered: bool = True
    tariff_price: Optional[Decimal] = Field(None, ge=0)
    patient_share: Optional[Decimal] = Field(None, ge=0)
    insurer_share: Optional[Decimal] = Field(None, ge=0)
    coverage_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    supplementary_coverage_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    supplementary_max_payment: Optional[Decimal] = Field(None, ge=0)
    priority: int = 0
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    is_deleted: bool = False
    created_at: Optional[datetime] = None

    def is_valid_on(self, day: date) -> bool:
        return self.is_active and not self.is_deleted and _within(day, self.valid_from, self.valid_to)


# =============================================================================
# Patient Schemas
# =============================================================================


class PatientInsuranceData(BaseModel):
    """A patient's enrolment in a plan."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    patient_id: UUID
    plan: InsurancePlanData
    policy_number: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    is_primary: bool = False
    priority: int = Field(default=1, description="Lower value is preferred")
    is_active: bool = True
    is_deleted: bool = False

    def is_valid_on(self, day: date) -> bool:
        """Active, inside its own window, and backed by a valid plan."""
        return (
            self.is_active
            and not self.is_deleted
            and _within(day, self.start_date, self.end_date)
            and self.plan.is_valid_on(day)
        )


class PatientProfile(BaseModel):
    """Patient attributes that age and gender rules read."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    patient_id: UUID
    birth_date: Optional[date] = None
    gender: Gender = Gender.UNKNOWN

    def age_on(self, day: date) -> Optional[int]:
        """Completed years on the given day."""
        if self.birth_date is None:
            return None
        years = day.year - self.birth_date.year
        if (day.month, day.day) < (self.birth_date.month, self.birth_date.day):
            years -= 1
        return years


class InsuranceSelection(BaseModel):
    """Primary and supplementary relationships chosen for a calculation."""

    model_config = ConfigDict(frozen=True)

    primary: Optional[PatientInsuranceData] = None
    supplementary: Optional[PatientInsuranceData] = None

    @property
    def is_empty(self) -> bool:
        return self.primary is None and self.supplementary is None


# =============================================================================
# Resolved Coverage
# =============================================================================


class ResolvedCoverage(BaseModel):
    """
    Coverage for one (service, plan) after the precedence chain.

    When has_explicit_shares is true the composer takes the share amounts
    as given and skips percent math.
    """

    model_config = ConfigDict(frozen=True)

    plan_id: UUID
    is_covered: bool = True
    coverage_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    patient_share_percent: Optional[Decimal] = None
    deductible: Decimal = Decimal("0")
    price_override: Optional[Decimal] = None
    insurer_share_override: Optional[Decimal] = None
    patient_share_override: Optional[Decimal] = None
    tariff_id: Optional[UUID] = None
    sources: dict[str, CoverageSource] = Field(default_factory=dict)

    @property
    def has_explicit_shares(self) -> bool:
        return self.insurer_share_override is not None or self.patient_share_override is not None


class SupplementaryTerms(BaseModel):
    """Coverage a supplementary plan offers on the patient's residual share."""

    model_config = ConfigDict(frozen=True)

    plan_id: UUID
    coverage_percent: Decimal = Field(..., ge=0, le=100)
    max_payment: Optional[Decimal] = Field(None, ge=0)
    is_covered: bool = True
    source: CoverageSource = CoverageSource.PLAN_DEFAULT
    tariff_id: Optional[UUID] = None
