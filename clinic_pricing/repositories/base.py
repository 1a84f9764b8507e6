"""
Collaborator Interfaces.

The engine reads reference data through PricingDataSource and writes
through CalculationStore, FactorSettingStore and AuditEventSink. Store
implementations only stage writes; the caller owns the transaction.
"""

from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

from clinic_pricing.core.enums import ServiceComponentType
from clinic_pricing.schemas.calculation import InsuranceCalculationRecord
from clinic_pricing.schemas.insurance import (
    InsuranceTariffData,
    PatientInsuranceData,
    PatientProfile,
    PlanServiceData,
)
from clinic_pricing.schemas.pricing import (
    DepartmentOverrideData,
    FactorSettingData,
    ServiceData,
)
from clinic_pricing.schemas.rules import BusinessRuleData, RuleScope


class PricingDataSource(Protocol):
    """Read-only reference data for a calculation."""

    async def get_service(self, service_id: UUID) -> Optional[ServiceData]:  # pragma: no cover - Protocol definition
        ...

    async def get_factor_settings(
        self,
        kind: ServiceComponentType,
        hashtagged: bool,
        as_of: datetime,
    ) -> list[FactorSettingData]:  # pragma: no cover - Protocol definition
        """All candidate settings; the resolver decides between them."""
        ...

    async def get_department_override(
        self,
        service_id: UUID,
        department_id: UUID,
    ) -> Optional[DepartmentOverrideData]:  # pragma: no cover - Protocol definition
        ...

    async def get_active_patient_insurances(
        self,
        patient_id: UUID,
        as_of: datetime,
    ) -> list[PatientInsuranceData]:  # pragma: no cover - Protocol definition
        ...

    async def get_patient_profile(self, patient_id: UUID) -> Optional[PatientProfile]:  # pragma: no cover - Protocol definition
        ...

    async def get_tariffs(
        self,
        service_id: UUID,
        plan_id: UUID,
        as_of: datetime,
    ) -> list[InsuranceTariffData]:  # pragma: no cover - Protocol definition
        ...

    async def get_plan_service(
        self,
        plan_id: UUID,
        category_id: UUID,
    ) -> Optional[PlanServiceData]:  # pragma: no cover - Protocol definition
        ...

    async def get_applicable_business_rules(
        self,
        scope: RuleScope,
        as_of: datetime,
    ) -> list[BusinessRuleData]:  # pragma: no cover - Protocol definition
        ...


class CalculationStore(Protocol):
    """Staging of calculation records inside the caller's transaction."""

    async def persist_calculation(self, record: InsuranceCalculationRecord) -> UUID:  # pragma: no cover - Protocol definition
        ...

    async def soft_delete_calculation(
        self,
        calculation_id: UUID,
        actor: str,
        reason: Optional[str] = None,
    ) -> bool:  # pragma: no cover - Protocol definition
        ...

    async def soft_delete_for_context(
        self,
        *,
        reception_id: Optional[UUID] = None,
        appointment_id: Optional[UUID] = None,
        actor: str,
    ) -> int:  # pragma: no cover - Protocol definition
        ...

    async def get_calculation(self, calculation_id: UUID) -> Optional[InsuranceCalculationRecord]:  # pragma: no cover - Protocol definition
        ...

    async def list_calculations(
        self,
        patient_id: UUID,
        include_deleted: bool = False,
    ) -> list[InsuranceCalculationRecord]:  # pragma: no cover - Protocol definition
        ...


class FactorSettingStore(Protocol):
    """Factor settings administration, including the year freeze."""

    async def list_factor_settings(self, financial_year: int) -> list[FactorSettingData]:  # pragma: no cover - Protocol definition
        ...

    async def freeze_financial_year(
        self,
        financial_year: int,
        expected_versions: dict[UUID, int],
        actor: str,
        frozen_at: datetime,
    ) -> int:  # pragma: no cover - Protocol definition
        """
        Freeze every listed setting or none of them.

        Raises ConcurrentFreezeError when any version no longer matches.
        """
        ...


class AuditEventSink(Protocol):
    """Observability collaborator for calculation outcomes."""

    async def emit(
        self,
        calculation_id: Optional[UUID],
        outcome: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:  # pragma: no cover - Protocol definition
        ...
