"""
Pydantic Schemas for the Clinic Pricing Engine.

Engine inputs are read snapshots of the ORM rows; outputs are immutable
result objects.
"""

from clinic_pricing.schemas.pricing import (
    BasePriceBreakdown,
    ComponentPriceLine,
    DepartmentOverrideData,
    FactorSettingData,
    ResolvedFactor,
    ServiceComponentData,
    ServiceData,
)
from clinic_pricing.schemas.insurance import (
    InsurancePlanData,
    InsuranceSelection,
    InsuranceTariffData,
    PatientInsuranceData,
    PatientProfile,
    PlanServiceData,
    ResolvedCoverage,
    SupplementaryTerms,
)
from clinic_pricing.schemas.rules import (
    BusinessRuleData,
    RuleContext,
    RuleEffect,
    RuleScope,
)
from clinic_pricing.schemas.calculation import (
    CalculationSet,
    CompositionResult,
    InsuranceCalculationRecord,
    ServiceCalculationOutcome,
)

__all__ = [
    # Pricing
    "ServiceComponentData",
    "ServiceData",
    "DepartmentOverrideData",
    "FactorSettingData",
    "ResolvedFactor",
    "ComponentPriceLine",
    "BasePriceBreakdown",
    # Insurance
    "InsurancePlanData",
    "PlanServiceData",
    "InsuranceTariffData",
    "PatientInsuranceData",
    "PatientProfile",
    "InsuranceSelection",
    "ResolvedCoverage",
    "SupplementaryTerms",
    # Rules
    "BusinessRuleData",
    "RuleScope",
    "RuleContext",
    "RuleEffect",
    # Results
    "CompositionResult",
    "InsuranceCalculationRecord",
    "ServiceCalculationOutcome",
    "CalculationSet",
]
