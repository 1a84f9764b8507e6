"""
In-Memory Repository.

Backs demo mode and the test suite. Every read returns immutable
snapshots taken under a lock, so a calculation never sees a partially
applied year freeze.
"""

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from clinic_pricing.core.enums import FreezeState, InsuranceType, ServiceComponentType
from clinic_pricing.core.errors import ConcurrentFreezeError, FrozenYearError
from clinic_pricing.schemas.calculation import InsuranceCalculationRecord
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
from clinic_pricing.schemas.rules import BusinessRuleData, RuleScope

logger = logging.getLogger(__name__)


class InMemoryPricingRepository:
    """
    Thread-safe in-memory implementation of every collaborator interface.

    Seed it with the add_* helpers, or call load_demo_data() for a small
    ready-made catalog.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: dict[UUID, ServiceData] = {}
        self._factor_settings: dict[UUID, FactorSettingData] = {}
        self._department_overrides: dict[tuple[UUID, UUID], DepartmentOverrideData] = {}
        self._plans: dict[UUID, InsurancePlanData] = {}
        self._plan_services: dict[tuple[UUID, UUID], PlanServiceData] = {}
        self._tariffs: dict[UUID, InsuranceTariffData] = {}
        self._patient_insurances: dict[UUID, PatientInsuranceData] = {}
        self._profiles: dict[UUID, PatientProfile] = {}
        self._rules: dict[UUID, BusinessRuleData] = {}
        self._calculations: dict[UUID, InsuranceCalculationRecord] = {}

    # =========================================================================
    # Seeding
    # =========================================================================

    def add_service(self, service: ServiceData) -> ServiceData:
        with self._lock:
            self._services[service.id] = service
        return service

    def add_factor_setting(self, setting: FactorSettingData) -> FactorSettingData:
        """Add a setting; a frozen financial year is read-only."""
        with self._lock:
            year_frozen = any(
                s.is_frozen and s.financial_year == setting.financial_year and not s.is_deleted
                for s in self._factor_settings.values()
            )
            if year_frozen:
                raise FrozenYearError(
                    f"Financial year {setting.financial_year} is frozen",
                    details={"financial_year": setting.financial_year},
                )
            self._factor_settings[setting.id] = setting
        return setting

    def add_department_override(self, override: DepartmentOverrideData) -> DepartmentOverrideData:
        with self._lock:
            self._department_overrides[(override.service_id, override.department_id)] = override
        return override

    def add_plan(self, plan: InsurancePlanData) -> InsurancePlanData:
        with self._lock:
            self._plans[plan.id] = plan
        return plan

    def add_plan_service(self, plan_service: PlanServiceData) -> PlanServiceData:
        with self._lock:
            key = (plan_service.plan_id, plan_service.category_id)
            existing = self._plan_services.get(key)
            if existing is not None and not existing.is_deleted:
                raise ValueError(
                    f"Plan {plan_service.plan_id} already has an override for "
                    f"category {plan_service.category_id}"
                )
            self._plan_services[key] = plan_service
        return plan_service

    def add_tariff(self, tariff: InsuranceTariffData) -> InsuranceTariffData:
        with self._lock:
            self._tariffs[tariff.id] = tariff
        return tariff

    def add_patient_insurance(self, insurance: PatientInsuranceData) -> PatientInsuranceData:
        with self._lock:
            self._patient_insurances[insurance.id] = insurance
            self._plans.setdefault(insurance.plan.id, insurance.plan)
        return insurance

    def add_patient_profile(self, profile: PatientProfile) -> PatientProfile:
        with self._lock:
            self._profiles[profile.patient_id] = profile
        return profile

    def add_business_rule(self, rule: BusinessRuleData) -> BusinessRuleData:
        with self._lock:
            self._rules[rule.id] = rule
        return rule

    def deactivate_business_rule(self, rule_id: UUID) -> None:
        """Rules are never removed, only deactivated."""
        with self._lock:
            rule = self._rules[rule_id]
            self._rules[rule_id] = rule.model_copy(update={"is_active": False})

    # =========================================================================
    # PricingDataSource
    # =========================================================================

    async def get_service(self, service_id: UUID) -> Optional[ServiceData]:
        with self._lock:
            return self._services.get(service_id)

    async def get_factor_settings(
        self,
        kind: ServiceComponentType,
        hashtagged: bool,
        as_of: datetime,
    ) -> list[FactorSettingData]:
        with self._lock:
            return [
                s
                for s in self._factor_settings.values()
                if s.factor_type == kind
                and s.is_hashtagged == hashtagged
                and not s.is_deleted
                and s.contains(as_of)
            ]

    async def get_department_override(
        self,
        service_id: UUID,
        department_id: UUID,
    ) -> Optional[DepartmentOverrideData]:
        with self._lock:
            return self._department_overrides.get((service_id, department_id))

    async def get_active_patient_insurances(
        self,
        patient_id: UUID,
        as_of: datetime,
    ) -> list[PatientInsuranceData]:
        day = as_of.date()
        with self._lock:
            return [
                pi
                for pi in self._patient_insurances.values()
                if pi.patient_id == patient_id and pi.is_valid_on(day)
            ]

    async def get_patient_profile(self, patient_id: UUID) -> Optional[PatientProfile]:
        with self._lock:
            return self._profiles.get(patient_id)

    async def get_tariffs(
        self,
        service_id: UUID,
        plan_id: UUID,
        as_of: datetime,
    ) -> list[InsuranceTariffData]:
        day = as_of.date()
        with self._lock:
            return [
                t
                for t in self._tariffs.values()
                if t.service_id == service_id and t.plan_id == plan_id and t.is_valid_on(day)
            ]

    async def get_plan_service(
        self,
        plan_id: UUID,
        category_id: UUID,
    ) -> Optional[PlanServiceData]:
        with self._lock:
            plan_service = self._plan_services.get((plan_id, category_id))
        if plan_service is None or plan_service.is_deleted:
            return None
        return plan_service

    async def get_applicable_business_rules(
        self,
        scope: RuleScope,
        as_of: datetime,
    ) -> list[BusinessRuleData]:
        with self._lock:
            return [r for r in self._rules.values() if scope.admits(r) and r.is_effective_at(as_of)]

    # =========================================================================
    # CalculationStore
    # =========================================================================

    async def persist_calculation(self, record: InsuranceCalculationRecord) -> UUID:
        with self._lock:
            if record.id in self._calculations:
                raise ValueError(f"Calculation {record.id} already exists and is immutable")
            self._calculations[record.id] = record
        return record.id

    async def soft_delete_calculation(
        self,
        calculation_id: UUID,
        actor: str,
        reason: Optional[str] = None,
    ) -> bool:
        with self._lock:
            record = self._calculations.get(calculation_id)
            if record is None or record.is_deleted:
                return False
            self._calculations[calculation_id] = self._deleted_copy(record, actor, reason)
        return True

    async def soft_delete_for_context(
        self,
        *,
        reception_id: Optional[UUID] = None,
        appointment_id: Optional[UUID] = None,
        actor: str,
    ) -> int:
        if reception_id is None and appointment_id is None:
            raise ValueError("reception_id or appointment_id is required")
        count = 0
        with self._lock:
            for calc_id, record in list(self._calculations.items()):
                if record.is_deleted:
                    continue
                if (reception_id is not None and record.reception_id == reception_id) or (
                    appointment_id is not None and record.appointment_id == appointment_id
                ):
                    self._calculations[calc_id] = self._deleted_copy(record, actor, None)
                    count += 1
        return count

    async def get_calculation(self, calculation_id: UUID) -> Optional[InsuranceCalculationRecord]:
        with self._lock:
            return self._calculations.get(calculation_id)

    async def list_calculations(
        self,
        patient_id: UUID,
        include_deleted: bool = False,
    ) -> list[InsuranceCalculationRecord]:
        with self._lock:
            records = [
                r
                for r in self._calculations.values()
                if r.patient_id == patient_id and (include_deleted or not r.is_deleted)
            ]
        return sorted(records, key=lambda r: r.calculation_date)

    @staticmethod
    def _deleted_copy(
        record: InsuranceCalculationRecord,
        actor: str,
        reason: Optional[str],
    ) -> InsuranceCalculationRecord:
        notes = record.notes
        if reason:
            notes = f"{notes}; voided: {reason}" if notes else f"voided: {reason}"
        return record.model_copy(
            update={
                "is_deleted": True,
                "deleted_at": datetime.now(timezone.utc),
                "deleted_by": actor,
                "notes": notes,
            }
        )

    # =========================================================================
    # FactorSettingStore
    # =========================================================================

    async def list_factor_settings(self, financial_year: int) -> list[FactorSettingData]:
        with self._lock:
            return [
                s
                for s in self._factor_settings.values()
                if s.financial_year == financial_year and not s.is_deleted
            ]

    async def freeze_financial_year(
        self,
        financial_year: int,
        expected_versions: dict[UUID, int],
        actor: str,
        frozen_at: datetime,
    ) -> int:
        with self._lock:
            for setting_id, expected in expected_versions.items():
                current = self._factor_settings.get(setting_id)
                if (
                    current is None
                    or current.financial_year != financial_year
                    or current.version != expected
                    or current.is_frozen
                ):
                    raise ConcurrentFreezeError(
                        f"Factor setting {setting_id} changed during freeze of year {financial_year}",
                        details={"setting_id": setting_id, "expected_version": expected},
                    )
            for setting_id in expected_versions:
                current = self._factor_settings[setting_id]
                self._factor_settings[setting_id] = current.model_copy(
                    update={
                        "freeze_state": FreezeState.FROZEN,
                        "frozen_at": frozen_at,
                        "frozen_by": actor,
                        "version": current.version + 1,
                    }
                )
        return len(expected_versions)

    def bump_factor_setting_version(self, setting_id: UUID) -> None:
        """Simulate a concurrent edit of a factor setting."""
        with self._lock:
            current = self._factor_settings[setting_id]
            self._factor_settings[setting_id] = current.model_copy(
                update={"version": current.version + 1}
            )

    # =========================================================================
    # Demo Data
    # =========================================================================

    def load_demo_data(self, financial_year: Optional[int] = None) -> dict[str, Any]:
        """
        Seed a small catalog and return the ids of what was created.

        Factors are the national technical/professional values per unit.
        """
        year = financial_year or datetime.now(timezone.utc).year
        year_start = datetime(year, 1, 1, tzinfo=timezone.utc)

        for kind, hashtagged, value in (
            (ServiceComponentType.TECHNICAL, False, Decimal("10000")),
            (ServiceComponentType.PROFESSIONAL, False, Decimal("25000")),
            (ServiceComponentType.TECHNICAL, True, Decimal("12500")),
            (ServiceComponentType.PROFESSIONAL, True, Decimal("25000")),
        ):
            self.add_factor_setting(
                FactorSettingData(
                    factor_type=kind,
                    is_hashtagged=hashtagged,
                    value=value,
                    financial_year=year,
                    effective_from=year_start,
                    effective_to=datetime(year + 1, 1, 1, tzinfo=timezone.utc),
                )
            )

        outpatient = uuid4()
        imaging = uuid4()
        visit = self.add_service(
            ServiceData(
                category_id=outpatient,
                service_code="901910",
                title="General practitioner visit",
                components=(
                    ServiceComponentData(
                        component_type=ServiceComponentType.TECHNICAL, coefficient=Decimal("2.00")
                    ),
                    ServiceComponentData(
                        component_type=ServiceComponentType.PROFESSIONAL, coefficient=Decimal("4.00")
                    ),
                ),
            )
        )
        ultrasound = self.add_service(
            ServiceData(
                category_id=imaging,
                service_code="700805",
                title="Abdominal ultrasound",
                is_hashtagged=True,
                components=(
                    ServiceComponentData(
                        component_type=ServiceComponentType.TECHNICAL, coefficient=Decimal("18.50")
                    ),
                    ServiceComponentData(
                        component_type=ServiceComponentType.PROFESSIONAL, coefficient=Decimal("6.25")
                    ),
                ),
            )
        )

        social_security = self.add_plan(
            InsurancePlanData(plan_code="SSO-BASIC", name="Social Security", coverage_percent=Decimal("70"))
        )
        supplementary = self.add_plan(
            InsurancePlanData(
                plan_code="SUPP-GOLD",
                name="Supplementary Gold",
                insurance_type=InsuranceType.SUPPLEMENTARY,
                coverage_percent=Decimal("50"),
            )
        )
        self.add_plan_service(
            PlanServiceData(plan_id=social_security.id, category_id=imaging, coverage_percent=Decimal("90"))
        )

        patient_id = uuid4()
        self.add_patient_profile(PatientProfile(patient_id=patient_id))
        self.add_patient_insurance(
            PatientInsuranceData(
                patient_id=patient_id,
                plan=social_security,
                start_date=year_start.date(),
                is_primary=True,
            )
        )
        self.add_patient_insurance(
            PatientInsuranceData(
                patient_id=patient_id,
                plan=supplementary,
                start_date=year_start.date(),
                priority=2,
            )
        )

        logger.info(f"Loaded demo pricing data for financial year {year}")
        return {
            "financial_year": year,
            "patient_id": patient_id,
            "service_ids": [visit.id, ultrasound.id],
            "plan_ids": [social_security.id, supplementary.id],
        }


class InMemoryAuditSink:
    """Collects audit events in a list."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def emit(
        self,
        calculation_id: Optional[UUID],
        outcome: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.events.append(
            {
                "timestamp": datetime.now(timezone.utc),
                "calculation_id": calculation_id,
                "outcome": outcome,
                "details": details or {},
            }
        )
