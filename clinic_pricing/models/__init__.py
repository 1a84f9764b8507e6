"""
SQLAlchemy Models for the Clinic Pricing Engine.

This module exports all database models for the application.
"""

from clinic_pricing.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel

# Service pricing
from clinic_pricing.models.service import (
    DepartmentServiceOverride,
    Service,
    ServiceCategory,
    ServiceComponent,
)
from clinic_pricing.models.factor_setting import FactorSetting

# Insurance
from clinic_pricing.models.insurance import (
    InsurancePlan,
    InsuranceProvider,
    InsuranceTariff,
    PatientInsurance,
    PlanService,
)
from clinic_pricing.models.business_rule import BusinessRule

# Results and audit
from clinic_pricing.models.calculation import CalculationAuditEvent, InsuranceCalculation

__all__ = [
    "Base",
    "TimeStampedModel",
    "UUIDModel",
    "SoftDeleteModel",
    "ServiceCategory",
    "Service",
    "ServiceComponent",
    "DepartmentServiceOverride",
    "FactorSetting",
    "InsuranceProvider",
    "InsurancePlan",
    "PlanService",
    "InsuranceTariff",
    "PatientInsurance",
    "BusinessRule",
    "InsuranceCalculation",
    "CalculationAuditEvent",
]
