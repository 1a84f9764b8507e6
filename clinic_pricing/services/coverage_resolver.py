"""
Coverage Resolver.

Precedence is a single ordered strategy chain:

    TariffCoverageStrategy       (service, plan)
    PlanServiceCoverageStrategy  (plan, service category)
    PlanDefaultCoverageStrategy  (plan)

Each strategy fills only the fields no earlier strategy has set. A
"not covered" answer at any level ends the chain.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from clinic_pricing.core.enums import CoverageSource, InsuranceType
from clinic_pricing.core.money import ONE_HUNDRED, ZERO
from clinic_pricing.repositories.base import PricingDataSource
from clinic_pricing.schemas.insurance import (
    InsurancePlanData,
    InsuranceTariffData,
    ResolvedCoverage,
    SupplementaryTerms,
)
from clinic_pricing.schemas.pricing import ServiceData

logger = logging.getLogger(__name__)


@dataclass
class CoverageDraft:
    """Coverage fields collected while walking the chain."""

    is_covered: bool = True
    coverage_percent: Optional[Decimal] = None
    patient_share_percent: Optional[Decimal] = None
    deductible: Optional[Decimal] = None
    price_override: Optional[Decimal] = None
    insurer_share_override: Optional[Decimal] = None
    patient_share_override: Optional[Decimal] = None
    tariff_id: Optional[UUID] = None
    sources: dict[str, CoverageSource] = field(default_factory=dict)

    def offer(self, name: str, value: Optional[Decimal], source: CoverageSource) -> None:
        """Set a field unless an earlier level already set it."""
        if value is None or getattr(self, name) is not None:
            return
        setattr(self, name, value)
        self.sources[name] = source

    def offer_coverage(
        self,
        coverage_percent: Optional[Decimal],
        patient_share_percent: Optional[Decimal],
        source: CoverageSource,
    ) -> None:
        """Coverage is one field: a fixed patient share implies 100 minus that share."""
        if self.coverage_percent is not None:
            return
        if patient_share_percent is not None:
            self.patient_share_percent = patient_share_percent
            self.coverage_percent = ONE_HUNDRED - patient_share_percent
            self.sources["patient_share_percent"] = source
            self.sources["coverage_percent"] = source
        elif coverage_percent is not None:
            self.coverage_percent = coverage_percent
            self.sources["coverage_percent"] = source

    def mark_not_covered(self, source: CoverageSource) -> None:
        self.is_covered = False
        self.sources["is_covered"] = source


@dataclass
class CoverageRequest:
    service: ServiceData
    plan: InsurancePlanData
    at: datetime


class CoverageStrategy(Protocol):
    """One level of the precedence chain."""

    source: CoverageSource

    async def apply(self, request: CoverageRequest, draft: CoverageDraft) -> None:  # pragma: no cover - Protocol definition
        ...


def pick_tariff(
    tariffs: list[InsuranceTariffData],
    insurance_type: InsuranceType,
    at: datetime,
) -> Optional[InsuranceTariffData]:
    """Highest priority wins, then the most recently created, then id."""
    day = at.date()
    valid = [t for t in tariffs if t.insurance_type == insurance_type and t.is_valid_on(day)]
    if not valid:
        return None
    valid.sort(
        key=lambda t: (
            t.priority,
            t.created_at.timestamp() if t.created_at else 0.0,
            str(t.id),
        ),
        reverse=True,
    )
    return valid[0]


class TariffCoverageStrategy:
    """Per-(service, plan) tariff; explicit amounts beat percent math."""

    source = CoverageSource.TARIFF

    def __init__(self, data_source: PricingDataSource):
        self.data_source = data_source

    async def apply(self, request: CoverageRequest, draft: CoverageDraft) -> None:
        tariffs = await self.data_source.get_tariffs(request.service.id, request.plan.id, request.at)
        tariff = pick_tariff(tariffs, InsuranceType.PRIMARY, request.at)
        if tariff is None:
            return

        draft.tariff_id = tariff.id
        if not tariff.is_covered:
            draft.mark_not_covered(self.source)
            return

        draft.offer("price_override", tariff.tariff_price, self.source)
        draft.offer("insurer_share_override", tariff.insurer_share, self.source)
        draft.offer("patient_share_override", tariff.patient_share, self.source)
        draft.offer_coverage(tariff.coverage_percent, None, self.source)


class PlanServiceCoverageStrategy:
    """Per-(plan, category) override."""

    source = CoverageSource.PLAN_SERVICE

    def __init__(self, data_source: PricingDataSource):
        self.data_source = data_source

    async def apply(self, request: CoverageRequest, draft: CoverageDraft) -> None:
        plan_service = await self.data_source.get_plan_service(
            request.plan.id, request.service.category_id
        )
        if plan_service is None or plan_service.is_deleted:
            return
        if not plan_service.is_covered:
            draft.mark_not_covered(self.source)
            return
        draft.offer_coverage(
            plan_service.coverage_percent,
            plan_service.patient_share_percent,
            self.source,
        )


class PlanDefaultCoverageStrategy:
    """Plan-wide coverage percent and deductible."""

    source = CoverageSource.PLAN_DEFAULT

    async def apply(self, request: CoverageRequest, draft: CoverageDraft) -> None:
        draft.offer_coverage(request.plan.coverage_percent, None, self.source)
        draft.offer("deductible", request.plan.deductible, self.source)


class CoverageResolver:
    """Walks the strategy chain for a service and plan."""

    def __init__(
        self,
        data_source: PricingDataSource,
        strategies: Optional[list[CoverageStrategy]] = None,
    ):
        self.data_source = data_source
        self.strategies: list[CoverageStrategy] = strategies or [
            TariffCoverageStrategy(data_source),
            PlanServiceCoverageStrategy(data_source),
            PlanDefaultCoverageStrategy(),
        ]

    async def resolve(
        self,
        service: ServiceData,
        plan: InsurancePlanData,
        at: datetime,
    ) -> ResolvedCoverage:
        """Resolve primary coverage of a service under a plan."""
        request = CoverageRequest(service=service, plan=plan, at=at)
        draft = CoverageDraft()

        for strategy in self.strategies:
            await strategy.apply(request, draft)
            if not draft.is_covered:
                logger.info(
                    f"Service {service.service_code} not covered by plan {plan.plan_code} "
                    f"({strategy.source.value})"
                )
                return ResolvedCoverage(
                    plan_id=plan.id,
                    is_covered=False,
                    coverage_percent=ZERO,
                    deductible=ZERO,
                    tariff_id=draft.tariff_id,
                    sources=draft.sources,
                )

        return ResolvedCoverage(
            plan_id=plan.id,
            is_covered=True,
            coverage_percent=draft.coverage_percent if draft.coverage_percent is not None else ZERO,
            patient_share_percent=draft.patient_share_percent,
            deductible=draft.deductible if draft.deductible is not None else ZERO,
            price_override=draft.price_override,
            insurer_share_override=draft.insurer_share_override,
            patient_share_override=draft.patient_share_override,
            tariff_id=draft.tariff_id,
            sources=draft.sources,
        )

    async def resolve_supplementary(
        self,
        service: ServiceData,
        plan: InsurancePlanData,
        at: datetime,
    ) -> SupplementaryTerms:
        """
        Terms a supplementary plan offers for a service.

        A Supplementary tariff supplies percent and cap; otherwise the
        plan's default percent applies with no cap.
        """
        tariffs = await self.data_source.get_tariffs(service.id, plan.id, at)
        tariff = pick_tariff(tariffs, InsuranceType.SUPPLEMENTARY, at)

        if tariff is not None:
            if not tariff.is_covered:
                return SupplementaryTerms(
                    plan_id=plan.id,
                    coverage_percent=ZERO,
                    is_covered=False,
                    source=CoverageSource.TARIFF,
                    tariff_id=tariff.id,
                )
            percent = tariff.supplementary_coverage_percent
            if percent is None:
                percent = tariff.coverage_percent
            return SupplementaryTerms(
                plan_id=plan.id,
                coverage_percent=percent if percent is not None else plan.coverage_percent,
                max_payment=tariff.supplementary_max_payment,
                source=CoverageSource.TARIFF,
                tariff_id=tariff.id,
            )

        return SupplementaryTerms(
            plan_id=plan.id,
            coverage_percent=plan.coverage_percent,
            source=CoverageSource.PLAN_DEFAULT,
        )
