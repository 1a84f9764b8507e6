"""
Calculation Orchestrator.

Entry point of the engine. For each requested service:

    base price -> coverage -> business rules -> composition -> record

Data-integrity errors and business rule violations abort the whole
batch before anything is persisted. Composition errors fail only the
affected service. "Not covered" is a successful outcome in which the
patient pays everything.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from clinic_pricing.core.config import PricingSettings, get_settings
from clinic_pricing.core.enums import (
    CalculationMode,
    CalculationOutcome,
    EffectKind,
    Gender,
    InsuranceCalculationType,
)
from clinic_pricing.core.errors import (
    CompositionError,
    InvalidCalculationRequest,
    NoActiveInsuranceError,
    PricingError,
    ServiceNotFoundError,
    SupplementaryWithoutPrimaryError,
)
from clinic_pricing.core.money import ZERO
from clinic_pricing.repositories.base import AuditEventSink, CalculationStore, PricingDataSource
from clinic_pricing.schemas.calculation import (
    CalculationSet,
    CompositionResult,
    InsuranceCalculationRecord,
    ServiceCalculationOutcome,
)
from clinic_pricing.schemas.insurance import (
    InsuranceSelection,
    PatientInsuranceData,
    PatientProfile,
    ResolvedCoverage,
    SupplementaryTerms,
)
from clinic_pricing.schemas.pricing import BasePriceBreakdown, ServiceData
from clinic_pricing.schemas.rules import RuleContext
from clinic_pricing.services.audit import LoggingAuditSink
from clinic_pricing.services.base_price import BasePriceCalculator
from clinic_pricing.services.business_rule_engine import BusinessRuleEngine, RuleEvaluation
from clinic_pricing.services.coverage_resolver import CoverageResolver
from clinic_pricing.services.insurance_composer import InsuranceComposer

logger = logging.getLogger(__name__)


def select_insurances(
    insurances: list[PatientInsuranceData],
    as_of: datetime,
) -> InsuranceSelection:
    """
    Pick the primary and supplementary relationships valid on a date.

    Primary: flagged primary, lowest priority value first.
    Supplementary: best-priority non-primary relationship on another plan.
    """
    day = as_of.date()
    valid = sorted(
        (pi for pi in insurances if pi.is_valid_on(day)),
        key=lambda pi: (pi.priority, pi.start_date, str(pi.id)),
    )
    primary = next((pi for pi in valid if pi.is_primary), None)
    supplementary = next(
        (
            pi
            for pi in valid
            if not pi.is_primary and (primary is None or pi.plan.id != primary.plan.id)
        ),
        None,
    )
    return InsuranceSelection(primary=primary, supplementary=supplementary)


class CalculationOrchestrator:
    """
    Sequences the pricing components for one or many services.

    Records are persisted only for NEW calculations, after the whole
    batch has been computed, through a store that stages writes in the
    caller's transaction.
    """

    def __init__(
        self,
        data_source: PricingDataSource,
        calculation_store: Optional[CalculationStore] = None,
        audit_sink: Optional[AuditEventSink] = None,
        settings: Optional[PricingSettings] = None,
        *,
        base_price_calculator: Optional[BasePriceCalculator] = None,
        coverage_resolver: Optional[CoverageResolver] = None,
        rule_engine: Optional[BusinessRuleEngine] = None,
        composer: Optional[InsuranceComposer] = None,
        clock: Optional[Callable[[], datetime]] = None,
        abort_sink: Optional[AuditEventSink] = None,
    ):
        self.data_source = data_source
        self.calculation_store = calculation_store
        self.audit_sink = audit_sink or LoggingAuditSink()
        # Aborted batches roll back the caller's transaction; their events need a sink outside it
        self.abort_sink = abort_sink or self.audit_sink
        self.settings = settings or get_settings()
        self.base_price_calculator = base_price_calculator or BasePriceCalculator(
            data_source, settings=self.settings
        )
        self.coverage_resolver = coverage_resolver or CoverageResolver(data_source)
        self.rule_engine = rule_engine or BusinessRuleEngine(data_source)
        self.composer = composer or InsuranceComposer(self.settings)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # Public API
    # =========================================================================

    async def calculate(
        self,
        patient_id: UUID,
        service_ids: list[UUID],
        as_of: datetime,
        *,
        mode: CalculationMode = CalculationMode.NEW,
        calculation_type: Optional[InsuranceCalculationType] = None,
        reception_id: Optional[UUID] = None,
        appointment_id: Optional[UUID] = None,
        department_id: Optional[UUID] = None,
    ) -> CalculationSet:
        """
        Calculate insurance shares for a batch of services.

        Args:
            patient_id: Patient being billed
            service_ids: Requested services, one record each
            as_of: Calculation date (timezone-aware)
            mode: NEW persists and refuses frozen years; HISTORICAL only re-displays
            calculation_type: Defaults from the reception/appointment link
            reception_id: Reception the services belong to
            appointment_id: Appointment the services belong to
            department_id: Department whose factor overrides apply

        Returns:
            CalculationSet with one outcome per service

        Raises:
            InvalidCalculationRequest: Empty batch, naive or too-distant date
            NoActiveInsuranceError: The patient has no valid insurance
            DataIntegrityError: Missing/ambiguous/frozen factors, missing components
            BusinessRuleViolation: A Validation rule failed
        """
        self._validate_request(service_ids, as_of)
        calculation_type = calculation_type or self._infer_type(reception_id, appointment_id)

        try:
            selection = await self._select_insurances(patient_id, as_of)
            profile = await self.data_source.get_patient_profile(patient_id)

            outcomes: list[ServiceCalculationOutcome] = []
            for service_id in service_ids:
                outcomes.append(
                    await self._calculate_one(
                        patient_id,
                        service_id,
                        as_of,
                        selection=selection,
                        profile=profile,
                        mode=mode,
                        calculation_type=calculation_type,
                        reception_id=reception_id,
                        appointment_id=appointment_id,
                        department_id=department_id,
                    )
                )
        except PricingError as e:
            logger.error(
                f"Calculation batch for patient {patient_id} aborted [{e.code}]: {e.message}"
            )
            if mode == CalculationMode.NEW:
                await self.abort_sink.emit(None, "aborted", {"patient_id": patient_id, **e.to_dict()})
            raise

        if mode == CalculationMode.NEW:
            await self._persist(outcomes)

        return CalculationSet(
            patient_id=patient_id,
            calculation_date=as_of,
            mode=mode,
            outcomes=tuple(outcomes),
        )

    async def calculate_service(
        self,
        patient_id: UUID,
        service_id: UUID,
        as_of: datetime,
        **kwargs: Any,
    ) -> ServiceCalculationOutcome:
        """Single-service variant of calculate()."""
        result = await self.calculate(patient_id, [service_id], as_of, **kwargs)
        return result.outcomes[0]

    async def void_for_reception(self, reception_id: UUID, actor: str) -> int:
        """Soft-delete every calculation of a voided reception."""
        store = self._require_store()
        count = await store.soft_delete_for_context(reception_id=reception_id, actor=actor)
        logger.info(f"Voided {count} calculation(s) of reception {reception_id} by {actor}")
        await self.audit_sink.emit(None, "voided", {"reception_id": reception_id, "count": count})
        return count

    async def void_for_appointment(self, appointment_id: UUID, actor: str) -> int:
        """Soft-delete every calculation of a voided appointment."""
        store = self._require_store()
        count = await store.soft_delete_for_context(appointment_id=appointment_id, actor=actor)
        logger.info(f"Voided {count} calculation(s) of appointment {appointment_id} by {actor}")
        await self.audit_sink.emit(None, "voided", {"appointment_id": appointment_id, "count": count})
        return count

    async def supersede(
        self,
        calculation_id: UUID,
        as_of: datetime,
        *,
        actor: str,
        reason: Optional[str] = None,
        department_id: Optional[UUID] = None,
    ) -> InsuranceCalculationRecord:
        """
        Replace a calculation with a fresh one for the same patient and service.

        The old record is soft-deleted; the replacement points back to it.

        Raises:
            InvalidCalculationRequest: Unknown or already deleted calculation,
                or the recalculation failed for the service
        """
        store = self._require_store()
        original = await store.get_calculation(calculation_id)
        if original is None or original.is_deleted:
            raise InvalidCalculationRequest(
                f"Calculation {calculation_id} does not exist or was already voided",
                details={"calculation_id": calculation_id},
            )

        self._validate_request([original.service_id], as_of)
        selection = await self._select_insurances(original.patient_id, as_of)
        profile = await self.data_source.get_patient_profile(original.patient_id)
        outcome = await self._calculate_one(
            original.patient_id,
            original.service_id,
            as_of,
            selection=selection,
            profile=profile,
            mode=CalculationMode.NEW,
            calculation_type=original.calculation_type,
            reception_id=original.reception_id,
            appointment_id=original.appointment_id,
            department_id=department_id,
        )
        if outcome.record is None:
            raise InvalidCalculationRequest(
                f"Recalculation of {calculation_id} failed: {outcome.error_code}",
                service_id=original.service_id,
                details=outcome.error or {},
            )

        replacement = outcome.record.model_copy(update={"supersedes_id": original.id})
        await store.soft_delete_calculation(original.id, actor, reason or "superseded")
        await store.persist_calculation(replacement)
        await self.audit_sink.emit(
            replacement.id,
            "superseded",
            {"supersedes_id": original.id, "actor": actor, "reason": reason},
        )
        logger.info(f"Calculation {original.id} superseded by {replacement.id} ({actor})")
        return replacement

    async def get_patient_calculations(
        self,
        patient_id: UUID,
        include_deleted: bool = False,
    ) -> list[InsuranceCalculationRecord]:
        return await self._require_store().list_calculations(patient_id, include_deleted)

    # =========================================================================
    # Per-service pipeline
    # =========================================================================

    async def _calculate_one(
        self,
        patient_id: UUID,
        service_id: UUID,
        as_of: datetime,
        *,
        selection: InsuranceSelection,
        profile: Optional[PatientProfile],
        mode: CalculationMode,
        calculation_type: InsuranceCalculationType,
        reception_id: Optional[UUID],
        appointment_id: Optional[UUID],
        department_id: Optional[UUID],
    ) -> ServiceCalculationOutcome:
        service = await self.data_source.get_service(service_id)
        if service is None or service.is_deleted or not service.is_active:
            raise ServiceNotFoundError(f"Service {service_id} not found", service_id=service_id)

        breakdown = await self.base_price_calculator.calculate(
            service, as_of, mode=mode, department_id=department_id
        )

        try:
            if selection.primary is None:
                raise SupplementaryWithoutPrimaryError(
                    "Supplementary insurance cannot be applied without a valid primary insurance",
                    service_id=service.id,
                    details={"supplementary_patient_insurance_id": selection.supplementary.id}
                    if selection.supplementary
                    else {},
                )

            primary = selection.primary
            coverage = await self.coverage_resolver.resolve(service, primary.plan, as_of)

            context = RuleContext(
                patient_id=patient_id,
                patient_age=profile.age_on(as_of.date()) if profile else None,
                patient_gender=profile.gender if profile else Gender.UNKNOWN,
                service_id=service.id,
                category_id=service.category_id,
                plan_id=primary.plan.id,
                is_hashtagged=service.is_hashtagged,
                calculation_date=as_of,
                service_amount=breakdown.total,
                coverage=coverage,
            )
            evaluation = await self.rule_engine.evaluate_context(context)
            evaluation.raise_for_violation()

            terms: Optional[SupplementaryTerms] = None
            if selection.supplementary is not None and coverage.is_covered:
                terms = await self.coverage_resolver.resolve_supplementary(
                    service, selection.supplementary.plan, as_of
                )

            composition = self.composer.compose(
                breakdown.total,
                coverage,
                evaluation.effects if coverage.is_covered else [],
                terms,
            )
        except CompositionError as e:
            if e.service_id is None:
                e.service_id = service.id
            logger.warning(f"Calculation of service {service.service_code} failed [{e.code}]: {e.message}")
            return ServiceCalculationOutcome(
                service_id=service.id,
                outcome=CalculationOutcome.FAILED,
                base_price=breakdown,
                error=e.to_dict(),
            )

        record = self._build_record(
            patient_id=patient_id,
            service=service,
            primary=primary,
            supplementary=selection.supplementary if terms is not None else None,
            breakdown=breakdown,
            coverage=coverage,
            evaluation=evaluation,
            composition=composition,
            as_of=as_of,
            calculation_type=calculation_type,
            reception_id=reception_id,
            appointment_id=appointment_id,
        )

        logger.info(
            f"Calculated service {service.service_code} for patient {patient_id} "
            f"under plan {primary.plan.plan_code}: amount={record.service_amount} "
            f"insurer={record.insurance_share} supplementary={record.supplementary_share} "
            f"patient={record.patient_share} ({record.outcome.value})"
        )

        return ServiceCalculationOutcome(
            service_id=service.id,
            outcome=record.outcome,
            record=record,
            base_price=breakdown,
            composition=composition,
        )

    def _build_record(
        self,
        *,
        patient_id: UUID,
        service: ServiceData,
        primary: PatientInsuranceData,
        supplementary: Optional[PatientInsuranceData],
        breakdown: BasePriceBreakdown,
        coverage: ResolvedCoverage,
        evaluation: RuleEvaluation,
        composition: CompositionResult,
        as_of: datetime,
        calculation_type: InsuranceCalculationType,
        reception_id: Optional[UUID],
        appointment_id: Optional[UUID],
    ) -> InsuranceCalculationRecord:
        notes: list[str] = []
        if not composition.is_covered:
            source = coverage.sources.get("is_covered")
            notes.append(f"not covered ({source.value if source else 'plan'})")
        if breakdown.department_override_applied:
            notes.append(f"department override {breakdown.department_id}")
        if composition.payment_cap_applied:
            notes.append("payment limit applied")
        if composition.supplementary_capped:
            notes.append("supplementary cap applied")
        if composition.explicit_shares:
            notes.append(f"explicit tariff shares {coverage.tariff_id}")

        coverage_rule_applied = composition.is_covered and any(
            e.kind in (EffectKind.COVERAGE_SET, EffectKind.COVERAGE_DELTA) for e in evaluation.effects
        )

        return InsuranceCalculationRecord(
            patient_id=patient_id,
            service_id=service.id,
            plan_id=primary.plan.id,
            patient_insurance_id=primary.id,
            supplementary_plan_id=supplementary.plan.id if supplementary else None,
            supplementary_patient_insurance_id=supplementary.id if supplementary else None,
            base_price=breakdown.total,
            service_amount=composition.adjusted_amount,
            coverage_percent=composition.coverage_percent,
            insurance_share=composition.insurer_share,
            supplementary_share=composition.supplementary_share,
            patient_share=composition.patient_share,
            copay=coverage.patient_share_override if composition.explicit_shares else None,
            deductible=composition.deductible if composition.deductible > ZERO else None,
            coverage_override=composition.coverage_percent if coverage_rule_applied else None,
            outcome=CalculationOutcome.COVERED if composition.is_covered else CalculationOutcome.NOT_COVERED,
            calculation_type=calculation_type,
            calculation_date=as_of,
            notes="; ".join(notes) or None,
            applied_rule_ids=tuple(evaluation.applied_rule_ids) if composition.is_covered else (),
            reception_id=reception_id,
            appointment_id=appointment_id,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_request(self, service_ids: list[UUID], as_of: datetime) -> None:
        if not service_ids:
            raise InvalidCalculationRequest("At least one service is required")
        if as_of.tzinfo is None or as_of.utcoffset() is None:
            raise InvalidCalculationRequest(
                "Calculation date must be timezone-aware",
                details={"as_of": as_of.isoformat()},
            )
        latest = self.clock() + timedelta(days=self.settings.MAX_FUTURE_CALCULATION_DAYS)
        if as_of > latest:
            raise InvalidCalculationRequest(
                f"Calculation date {as_of.isoformat()} is too far in the future",
                details={"as_of": as_of.isoformat(), "latest": latest.isoformat()},
            )

    @staticmethod
    def _infer_type(
        reception_id: Optional[UUID],
        appointment_id: Optional[UUID],
    ) -> InsuranceCalculationType:
        if reception_id is not None:
            return InsuranceCalculationType.RECEPTION
        if appointment_id is not None:
            return InsuranceCalculationType.APPOINTMENT
        return InsuranceCalculationType.SERVICE

    async def _select_insurances(self, patient_id: UUID, as_of: datetime) -> InsuranceSelection:
        insurances = await self.data_source.get_active_patient_insurances(patient_id, as_of)
        selection = select_insurances(insurances, as_of)
        if selection.is_empty:
            raise NoActiveInsuranceError(
                f"Patient {patient_id} has no valid insurance on {as_of.date().isoformat()}",
                details={"patient_id": patient_id},
            )
        return selection

    def _require_store(self) -> CalculationStore:
        if self.calculation_store is None:
            raise InvalidCalculationRequest("No calculation store is configured")
        return self.calculation_store

    async def _persist(self, outcomes: list[ServiceCalculationOutcome]) -> None:
        persist = self.settings.PERSIST_CALCULATIONS and self.calculation_store is not None
        for outcome in outcomes:
            if outcome.record is not None:
                if persist:
                    await self.calculation_store.persist_calculation(outcome.record)
                await self.audit_sink.emit(
                    outcome.record.id,
                    outcome.outcome.value,
                    {
                        "service_id": outcome.service_id,
                        "insurance_share": outcome.record.insurance_share,
                        "supplementary_share": outcome.record.supplementary_share,
                        "patient_share": outcome.record.patient_share,
                    },
                )
            else:
                await self.audit_sink.emit(
                    None,
                    outcome.outcome.value,
                    {"service_id": outcome.service_id, **(outcome.error or {})},
                )


# =============================================================================
# Wiring
# =============================================================================

_demo_repository: Optional[Any] = None
_calculation_orchestrator: Optional[CalculationOrchestrator] = None


def get_default_data_source() -> Any:
    """In-memory repository seeded with demo data (demo mode)."""
    global _demo_repository
    if _demo_repository is None:
        from clinic_pricing.repositories.memory import InMemoryPricingRepository

        _demo_repository = InMemoryPricingRepository()
        _demo_repository.load_demo_data()
    return _demo_repository


def get_calculation_orchestrator() -> CalculationOrchestrator:
    """
    Get singleton orchestrator for demo mode.

    In live mode calculations run inside a database transaction; use
    build_sql_orchestrator(session) within unit_of_work() instead.
    """
    global _calculation_orchestrator
    if _calculation_orchestrator is None:
        settings = get_settings()
        if not settings.is_demo_mode:
            raise InvalidCalculationRequest(
                "The shared orchestrator is only available in demo mode"
            )
        repository = get_default_data_source()
        _calculation_orchestrator = CalculationOrchestrator(
            repository,
            calculation_store=repository,
            settings=settings,
        )
    return _calculation_orchestrator


def build_sql_orchestrator(
    session: Any,
    settings: Optional[PricingSettings] = None,
    profile_lookup: Optional[Callable[[UUID], Any]] = None,
) -> CalculationOrchestrator:
    """
    Orchestrator whose reads and writes go through one AsyncSession.

    Outcome events are stored as CalculationAuditEvent rows in the same
    transaction. Aborted batches are only logged, since unit_of_work()
    rolls their session back.
    """
    from clinic_pricing.repositories.sql import SqlAuditSink, SqlPricingRepository
    from clinic_pricing.services.audit import CompositeAuditSink

    repository = SqlPricingRepository(session, profile_lookup=profile_lookup)
    return CalculationOrchestrator(
        repository,
        calculation_store=repository,
        audit_sink=CompositeAuditSink(LoggingAuditSink(), SqlAuditSink(session)),
        abort_sink=LoggingAuditSink(),
        settings=settings,
    )
