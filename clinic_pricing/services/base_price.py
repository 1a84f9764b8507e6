"""
Base Price Calculator.

base price = sum(coefficient_i * factor_i) over active components,
rounded once at the end, half away from zero.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from clinic_pricing.core.config import PricingSettings, get_settings
from clinic_pricing.core.enums import CalculationMode, ServiceComponentType
from clinic_pricing.core.errors import NoComponentsDefinedError
from clinic_pricing.core.money import ZERO, round_money
from clinic_pricing.repositories.base import PricingDataSource
from clinic_pricing.schemas.pricing import (
    BasePriceBreakdown,
    ComponentPriceLine,
    DepartmentOverrideData,
    ResolvedFactor,
    ServiceData,
)
from clinic_pricing.services.coefficient_resolver import CoefficientResolver

logger = logging.getLogger(__name__)

REQUIRED_COMPONENTS = (ServiceComponentType.TECHNICAL, ServiceComponentType.PROFESSIONAL)


class BasePriceCalculator:
    """Prices a service from its components and the factors in force."""

    def __init__(
        self,
        data_source: PricingDataSource,
        resolver: Optional[CoefficientResolver] = None,
        settings: Optional[PricingSettings] = None,
    ):
        self.data_source = data_source
        self.resolver = resolver or CoefficientResolver(data_source)
        self.settings = settings or get_settings()

    async def calculate(
        self,
        service: ServiceData,
        at: datetime,
        mode: CalculationMode = CalculationMode.NEW,
        department_id: Optional[UUID] = None,
    ) -> BasePriceBreakdown:
        """
        Calculate a service's base price.

        Both factors are resolved even when a department override
        replaces them, so freeze and ambiguity checks still apply.

        Raises:
            NoComponentsDefinedError: No active technical or professional component
        """
        components = service.active_components()
        present = {c.component_type for c in components}
        missing = [kind.value for kind in REQUIRED_COMPONENTS if kind not in present]
        if missing:
            raise NoComponentsDefinedError(
                f"Service {service.service_code} has no active {', '.join(missing)} component",
                service_id=service.id,
                details={"missing": ",".join(missing)},
            )

        override: Optional[DepartmentOverrideData] = None
        if department_id is not None:
            override = await self.data_source.get_department_override(service.id, department_id)

        factors: dict[ServiceComponentType, ResolvedFactor] = {}
        for kind in REQUIRED_COMPONENTS:
            factors[kind] = await self.resolver.resolve(kind, service.is_hashtagged, at, mode)

        lines: list[ComponentPriceLine] = []
        unrounded = ZERO
        for component in components:
            resolved = factors[component.component_type]
            factor = resolved.value
            overridden = False
            if override is not None:
                override_factor = override.factor_for(component.component_type)
                if override_factor is not None:
                    factor = override_factor
                    overridden = True

            amount = component.coefficient * factor
            unrounded += amount
            lines.append(
                ComponentPriceLine(
                    component_id=component.id,
                    component_type=component.component_type,
                    coefficient=component.coefficient,
                    factor=factor,
                    factor_setting_id=resolved.setting_id,
                    department_override=overridden,
                    amount=amount,
                )
            )

        total = round_money(unrounded, self.settings.ROUNDING_UNIT)
        logger.debug(f"Base price for service {service.service_code}: {unrounded} -> {total}")

        return BasePriceBreakdown(
            service_id=service.id,
            calculation_date=at,
            lines=tuple(lines),
            unrounded_total=unrounded,
            total=total,
            department_id=department_id,
        )
