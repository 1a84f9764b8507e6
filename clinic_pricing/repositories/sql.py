"""
SQLAlchemy Repository.

AsyncSession-backed implementation of the collaborator interfaces for
live mode. Writes are only flushed; the caller commits or rolls back
through db.unit_of_work().
"""

import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clinic_pricing.core.enums import FreezeState, ServiceComponentType
from clinic_pricing.core.errors import ConcurrentFreezeError
from clinic_pricing.models import (
    BusinessRule,
    CalculationAuditEvent,
    DepartmentServiceOverride,
    FactorSetting,
    InsuranceCalculation,
    InsuranceTariff,
    PatientInsurance,
    PlanService,
    Service,
)
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
from clinic_pricing.utils.logging import get_logger

logger = get_logger(__name__)

ProfileLookup = Callable[[UUID], Awaitable[Optional[PatientProfile]]]


class SqlPricingRepository:
    """
    Reference data reads, calculation records and factor freezing over
    one AsyncSession.

    Patient demographics live outside this schema; pass profile_lookup
    to feed age and gender rules.
    """

    def __init__(
        self,
        session: AsyncSession,
        profile_lookup: Optional[ProfileLookup] = None,
    ):
        self.session = session
        self.profile_lookup = profile_lookup

    # =========================================================================
    # PricingDataSource
    # =========================================================================

    async def get_service(self, service_id: UUID) -> Optional[ServiceData]:
        result = await self.session.execute(
            select(Service)
            .where(Service.id == service_id, Service.is_deleted.is_(False))
            .options(selectinload(Service.components))
        )
        service = result.scalar_one_or_none()
        return ServiceData.model_validate(service) if service else None

    async def get_factor_settings(
        self,
        kind: ServiceComponentType,
        hashtagged: bool,
        as_of: datetime,
    ) -> list[FactorSettingData]:
        result = await self.session.execute(
            select(FactorSetting).where(
                FactorSetting.factor_type == kind,
                FactorSetting.is_hashtagged.is_(hashtagged),
                FactorSetting.is_deleted.is_(False),
                FactorSetting.effective_from <= as_of,
                or_(FactorSetting.effective_to.is_(None), FactorSetting.effective_to > as_of),
            )
        )
        return [FactorSettingData.model_validate(s) for s in result.scalars().all()]

    async def get_department_override(
        self,
        service_id: UUID,
        department_id: UUID,
    ) -> Optional[DepartmentOverrideData]:
        result = await self.session.execute(
            select(DepartmentServiceOverride).where(
                DepartmentServiceOverride.service_id == service_id,
                DepartmentServiceOverride.department_id == department_id,
                DepartmentServiceOverride.is_deleted.is_(False),
            )
        )
        override = result.scalar_one_or_none()
        return DepartmentOverrideData.model_validate(override) if override else None

    async def get_active_patient_insurances(
        self,
        patient_id: UUID,
        as_of: datetime,
    ) -> list[PatientInsuranceData]:
        day = as_of.date()
        result = await self.session.execute(
            select(PatientInsurance)
            .where(
                PatientInsurance.patient_id == patient_id,
                PatientInsurance.is_active.is_(True),
                PatientInsurance.is_deleted.is_(False),
                PatientInsurance.start_date <= day,
                or_(PatientInsurance.end_date.is_(None), PatientInsurance.end_date >= day),
            )
            .options(selectinload(PatientInsurance.plan))
        )
        insurances = [PatientInsuranceData.model_validate(pi) for pi in result.scalars().all()]
        return [pi for pi in insurances if pi.is_valid_on(day)]

    async def get_patient_profile(self, patient_id: UUID) -> Optional[PatientProfile]:
        if self.profile_lookup is None:
            return None
        return await self.profile_lookup(patient_id)

    async def get_tariffs(
        self,
        service_id: UUID,
        plan_id: UUID,
        as_of: datetime,
    ) -> list[InsuranceTariffData]:
        day = as_of.date()
        result = await self.session.execute(
            select(InsuranceTariff).where(
                InsuranceTariff.service_id == service_id,
                InsuranceTariff.plan_id == plan_id,
                InsuranceTariff.is_active.is_(True),
                InsuranceTariff.is_deleted.is_(False),
                or_(InsuranceTariff.valid_from.is_(None), InsuranceTariff.valid_from <= day),
                or_(InsuranceTariff.valid_to.is_(None), InsuranceTariff.valid_to >= day),
            )
        )
        return [InsuranceTariffData.model_validate(t) for t in result.scalars().all()]

    async def get_plan_service(
        self,
        plan_id: UUID,
        category_id: UUID,
    ) -> Optional[PlanServiceData]:
        result = await self.session.execute(
            select(PlanService).where(
                PlanService.plan_id == plan_id,
                PlanService.category_id == category_id,
                PlanService.is_deleted.is_(False),
            )
        )
        plan_service = result.scalar_one_or_none()
        return PlanServiceData.model_validate(plan_service) if plan_service else None

    async def get_applicable_business_rules(
        self,
        scope: RuleScope,
        as_of: datetime,
    ) -> list[BusinessRuleData]:
        query = select(BusinessRule).where(
            BusinessRule.is_active.is_(True),
            BusinessRule.is_deleted.is_(False),
            or_(BusinessRule.plan_id.is_(None), BusinessRule.plan_id == scope.plan_id),
            or_(BusinessRule.category_id.is_(None), BusinessRule.category_id == scope.category_id),
            or_(BusinessRule.service_id.is_(None), BusinessRule.service_id == scope.service_id),
            or_(BusinessRule.is_hashtagged.is_(None), BusinessRule.is_hashtagged == scope.is_hashtagged),
            or_(BusinessRule.start_date.is_(None), BusinessRule.start_date <= as_of),
            or_(BusinessRule.end_date.is_(None), BusinessRule.end_date >= as_of),
        )
        result = await self.session.execute(query)
        return [BusinessRuleData.model_validate(r) for r in result.scalars().all()]

    # =========================================================================
    # CalculationStore
    # =========================================================================

    async def persist_calculation(self, record: InsuranceCalculationRecord) -> UUID:
        values = record.model_dump()
        values["applied_rule_ids"] = list(record.applied_rule_ids)
        self.session.add(InsuranceCalculation(**values))
        await self.session.flush()
        return record.id

    async def soft_delete_calculation(
        self,
        calculation_id: UUID,
        actor: str,
        reason: Optional[str] = None,
    ) -> bool:
        calculation = await self.session.get(InsuranceCalculation, calculation_id)
        if calculation is None or calculation.is_deleted:
            return False
        calculation.is_deleted = True
        calculation.deleted_at = datetime.now(timezone.utc)
        calculation.deleted_by = actor
        if reason:
            calculation.notes = (
                f"{calculation.notes}; voided: {reason}" if calculation.notes else f"voided: {reason}"
            )
        await self.session.flush()
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

        context_filters = []
        if reception_id is not None:
            context_filters.append(InsuranceCalculation.reception_id == reception_id)
        if appointment_id is not None:
            context_filters.append(InsuranceCalculation.appointment_id == appointment_id)

        result = await self.session.execute(
            update(InsuranceCalculation)
            .where(InsuranceCalculation.is_deleted.is_(False), or_(*context_filters))
            .values(is_deleted=True, deleted_at=datetime.now(timezone.utc), deleted_by=actor)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_calculation(self, calculation_id: UUID) -> Optional[InsuranceCalculationRecord]:
        calculation = await self.session.get(InsuranceCalculation, calculation_id)
        return InsuranceCalculationRecord.model_validate(calculation) if calculation else None

    async def list_calculations(
        self,
        patient_id: UUID,
        include_deleted: bool = False,
    ) -> list[InsuranceCalculationRecord]:
        query = select(InsuranceCalculation).where(InsuranceCalculation.patient_id == patient_id)
        if not include_deleted:
            query = query.where(InsuranceCalculation.is_deleted.is_(False))
        result = await self.session.execute(query.order_by(InsuranceCalculation.calculation_date))
        return [InsuranceCalculationRecord.model_validate(c) for c in result.scalars().all()]

    # =========================================================================
    # FactorSettingStore
    # =========================================================================

    async def list_factor_settings(self, financial_year: int) -> list[FactorSettingData]:
        result = await self.session.execute(
            select(FactorSetting).where(
                FactorSetting.financial_year == financial_year,
                FactorSetting.is_deleted.is_(False),
            )
        )
        return [FactorSettingData.model_validate(s) for s in result.scalars().all()]

    async def freeze_financial_year(
        self,
        financial_year: int,
        expected_versions: dict[UUID, int],
        actor: str,
        frozen_at: datetime,
    ) -> int:
        """
        Compare-and-swap every setting inside a savepoint.

        A row whose version moved makes the UPDATE match nothing; the
        savepoint then rolls back the rows already swapped.
        """
        async with self.session.begin_nested():
            for setting_id, expected in expected_versions.items():
                result = await self.session.execute(
                    update(FactorSetting)
                    .where(
                        FactorSetting.id == setting_id,
                        FactorSetting.financial_year == financial_year,
                        FactorSetting.version == expected,
                        FactorSetting.freeze_state == FreezeState.OPEN,
                    )
                    .values(
                        freeze_state=FreezeState.FROZEN,
                        frozen_at=frozen_at,
                        frozen_by=actor,
                        version=expected + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConcurrentFreezeError(
                        f"Factor setting {setting_id} changed during freeze of year {financial_year}",
                        details={"setting_id": setting_id, "expected_version": expected},
                    )
        self.session.expire_all()
        return len(expected_versions)


class SqlAuditSink:
    """Stores audit events as CalculationAuditEvent rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def emit(
        self,
        calculation_id: Optional[UUID],
        outcome: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        # JSONB accepts only JSON types; Decimals and UUIDs become strings
        payload = json.loads(json.dumps(details or {}, default=str))
        self.session.add(
            CalculationAuditEvent(
                calculation_id=calculation_id,
                outcome=outcome,
                details=payload,
            )
        )
        await self.session.flush()
        logger.debug(f"Stored audit event {outcome} for calculation {calculation_id}")
