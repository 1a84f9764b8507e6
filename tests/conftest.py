"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import pytest

from clinic_pricing.core.config import PricingSettings
from clinic_pricing.core.enums import (
    BusinessRuleType,
    Gender,
    InsuranceType,
    ServiceComponentType,
)
from clinic_pricing.repositories.memory import InMemoryAuditSink, InMemoryPricingRepository
from clinic_pricing.schemas.insurance import (
    InsurancePlanData,
    InsuranceTariffData,
    PatientInsuranceData,
    PatientProfile,
    PlanServiceData,
)
from clinic_pricing.schemas.pricing import (
    DepartmentOverrideData,
    FactorSettingData,
    ServiceComponentData,
    ServiceData,
)
from clinic_pricing.schemas.rules import BusinessRuleData
from clinic_pricing.services.calculation_orchestrator import CalculationOrchestrator

FINANCIAL_YEAR = 2025
YEAR_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
NEXT_YEAR_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
CALCULATION_AT = datetime(2025, 6, 15, 9, 30, tzinfo=timezone.utc)


class PricingCatalog:
    """Builder over an in-memory repository for test scenarios."""

    def __init__(self, repo: InMemoryPricingRepository):
        self.repo = repo
        self.category_id = uuid4()
        self.patient_id = uuid4()
        self.at = CALCULATION_AT

    def add_factor(
        self,
        kind: ServiceComponentType,
        value: str,
        *,
        hashtagged: bool = False,
        effective_from: datetime = YEAR_START,
        effective_to: Optional[datetime] = NEXT_YEAR_START,
        financial_year: int = FINANCIAL_YEAR,
        **kwargs: Any,
    ) -> FactorSettingData:
        return self.repo.add_factor_setting(
            FactorSettingData(
                factor_type=kind,
                value=Decimal(value),
                is_hashtagged=hashtagged,
                effective_from=effective_from,
                effective_to=effective_to,
                financial_year=financial_year,
                **kwargs,
            )
        )

    def add_standard_factors(self) -> None:
        """Technical 10,000 and professional 25,000 per unit, both hashtag classes."""
        for hashtagged in (False, True):
            self.add_factor(ServiceComponentType.TECHNICAL, "10000", hashtagged=hashtagged)
            self.add_factor(ServiceComponentType.PROFESSIONAL, "25000", hashtagged=hashtagged)

    def add_service(
        self,
        technical: Optional[str] = "50",
        professional: Optional[str] = "20",
        *,
        hashtagged: bool = False,
        category_id: Optional[UUID] = None,
        service_code: Optional[str] = None,
    ) -> ServiceData:
        """Defaults price at 50 * 10,000 + 20 * 25,000 = 1,000,000."""
        components = []
        if technical is not None:
            components.append(
                ServiceComponentData(
                    component_type=ServiceComponentType.TECHNICAL, coefficient=Decimal(technical)
                )
            )
        if professional is not None:
            components.append(
                ServiceComponentData(
                    component_type=ServiceComponentType.PROFESSIONAL,
                    coefficient=Decimal(professional),
                )
            )
        return self.repo.add_service(
            ServiceData(
                category_id=category_id or self.category_id,
                service_code=service_code or f"S-{uuid4().hex[:6]}",
                is_hashtagged=hashtagged,
                components=tuple(components),
            )
        )

    def add_plan(
        self,
        coverage_percent: str = "70",
        *,
        deductible: str = "0",
        insurance_type: InsuranceType = InsuranceType.PRIMARY,
        plan_code: str = "PLAN",
        **kwargs: Any,
    ) -> InsurancePlanData:
        return self.repo.add_plan(
            InsurancePlanData(
                plan_code=plan_code,
                name=plan_code.title(),
                insurance_type=insurance_type,
                coverage_percent=Decimal(coverage_percent),
                deductible=Decimal(deductible),
                **kwargs,
            )
        )

    def enroll(
        self,
        plan: InsurancePlanData,
        *,
        is_primary: bool = True,
        priority: int = 1,
        start_date: date = date(2025, 1, 1),
        end_date: Optional[date] = None,
        patient_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> PatientInsuranceData:
        return self.repo.add_patient_insurance(
            PatientInsuranceData(
                patient_id=patient_id or self.patient_id,
                plan=plan,
                start_date=start_date,
                end_date=end_date,
                is_primary=is_primary,
                priority=priority,
                **kwargs,
            )
        )

    def add_profile(
        self,
        birth_date: Optional[date] = None,
        gender: Gender = Gender.UNKNOWN,
    ) -> PatientProfile:
        return self.repo.add_patient_profile(
            PatientProfile(patient_id=self.patient_id, birth_date=birth_date, gender=gender)
        )

    def add_tariff(
        self,
        service: ServiceData,
        plan: InsurancePlanData,
        **kwargs: Any,
    ) -> InsuranceTariffData:
        return self.repo.add_tariff(
            InsuranceTariffData(service_id=service.id, plan_id=plan.id, **kwargs)
        )

    def add_plan_service(
        self,
        plan: InsurancePlanData,
        *,
        category_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> PlanServiceData:
        return self.repo.add_plan_service(
            PlanServiceData(plan_id=plan.id, category_id=category_id or self.category_id, **kwargs)
        )

    def add_department_override(
        self,
        service: ServiceData,
        department_id: UUID,
        **kwargs: Any,
    ) -> DepartmentOverrideData:
        return self.repo.add_department_override(
            DepartmentOverrideData(service_id=service.id, department_id=department_id, **kwargs)
        )

    def add_rule(
        self,
        rule_type: BusinessRuleType,
        actions: list[dict[str, Any]],
        *,
        conditions: Optional[list[dict[str, Any]]] = None,
        priority: int = 0,
        name: Optional[str] = None,
        **kwargs: Any,
    ) -> BusinessRuleData:
        return self.repo.add_business_rule(
            BusinessRuleData(
                name=name or f"{rule_type.value} rule",
                rule_type=rule_type,
                priority=priority,
                conditions=conditions or [],
                actions=actions,
                **kwargs,
            )
        )


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return PricingSettings(_env_file=None, ENVIRONMENT="testing")


@pytest.fixture
def repo():
    return InMemoryPricingRepository()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def catalog(repo):
    """Repository with the standard 2025 factors seeded."""
    catalog = PricingCatalog(repo)
    catalog.add_standard_factors()
    return catalog


@pytest.fixture
def orchestrator(catalog, settings, audit_sink):
    """Orchestrator over the catalog with the clock fixed at the calculation date."""
    return CalculationOrchestrator(
        catalog.repo,
        calculation_store=catalog.repo,
        audit_sink=audit_sink,
        settings=settings,
        clock=lambda: CALCULATION_AT,
    )


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
