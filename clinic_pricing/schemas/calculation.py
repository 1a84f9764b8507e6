"""
Pydantic Schemas for Calculation Results.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from clinic_pricing.core.enums import (
    CalculationMode,
    CalculationOutcome,
    InsuranceCalculationType,
)
from clinic_pricing.schemas.pricing import BasePriceBreakdown

ZERO = Decimal("0")


class CompositionResult(BaseModel):
    """Split of one service's payable amount between payers."""

    model_config = ConfigDict(frozen=True)

    is_covered: bool = True
    base_amount: Decimal
    adjusted_amount: Decimal
    coverage_percent: Decimal
    insurer_share: Decimal
    supplementary_share: Decimal = ZERO
    patient_share: Decimal
    deductible: Decimal = ZERO
    discount_amount: Decimal = ZERO
    penalty_amount: Decimal = ZERO
    payment_cap_applied: bool = False
    supplementary_capped: bool = False
    explicit_shares: bool = False
    rounding_adjustment: Decimal = Field(
        default=ZERO,
        description="Remainder moved to the patient share by rounding",
    )

    @property
    def total_payable(self) -> Decimal:
        return self.adjusted_amount + self.deductible

    @property
    def total_insurer_share(self) -> Decimal:
        return self.insurer_share + self.supplementary_share


class InsuranceCalculationRecord(BaseModel):
    """Immutable calculation record, one per (patient, service, plan)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    patient_id: UUID
    service_id: UUID
    plan_id: UUID
    patient_insurance_id: UUID
    supplementary_plan_id: Optional[UUID] = None
    supplementary_patient_insurance_id: Optional[UUID] = None

    base_price: Decimal
    service_amount: Decimal
    coverage_percent: Decimal
    insurance_share: Decimal
    supplementary_share: Decimal = ZERO
    patient_share: Decimal
    copay: Optional[Decimal] = None
    deductible: Optional[Decimal] = None
    coverage_override: Optional[Decimal] = None

    outcome: CalculationOutcome
    calculation_type: InsuranceCalculationType = InsuranceCalculationType.SERVICE
    calculation_date: datetime
    is_valid: bool = True
    notes: Optional[str] = None
    applied_rule_ids: tuple[UUID, ...] = ()

    reception_id: Optional[UUID] = None
    appointment_id: Optional[UUID] = None
    supersedes_id: Optional[UUID] = None

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    @property
    def total_payable(self) -> Decimal:
        return self.service_amount + (self.deductible or ZERO)


class ServiceCalculationOutcome(BaseModel):
    """Success or typed failure for one service of a batch."""

    model_config = ConfigDict(frozen=True)

    service_id: UUID
    outcome: CalculationOutcome
    record: Optional[InsuranceCalculationRecord] = None
    base_price: Optional[BasePriceBreakdown] = None
    composition: Optional[CompositionResult] = None
    error: Optional[dict[str, Any]] = None

    @property
    def is_success(self) -> bool:
        return self.outcome != CalculationOutcome.FAILED

    @property
    def error_code(self) -> Optional[str]:
        return self.error["code"] if self.error else None


class CalculationSet(BaseModel):
    """Per-service outcomes of one orchestrated batch, with totals."""

    model_config = ConfigDict(frozen=True)

    patient_id: UUID
    calculation_date: datetime
    mode: CalculationMode = CalculationMode.NEW
    outcomes: tuple[ServiceCalculationOutcome, ...] = ()

    @property
    def records(self) -> list[InsuranceCalculationRecord]:
        return [o.record for o in self.outcomes if o.record is not None]

    @property
    def failures(self) -> list[ServiceCalculationOutcome]:
        return [o for o in self.outcomes if not o.is_success]

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def total_service_amount(self) -> Decimal:
        return sum((r.service_amount for r in self.records), ZERO)

    @property
    def total_insurer_share(self) -> Decimal:
        return sum((r.insurance_share for r in self.records), ZERO)

    @property
    def total_supplementary_share(self) -> Decimal:
        return sum((r.supplementary_share for r in self.records), ZERO)

    @property
    def total_patient_share(self) -> Decimal:
        return sum((r.patient_share for r in self.records), ZERO)
