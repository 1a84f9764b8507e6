"""
Services Layer for the Clinic Pricing Engine.

Exports coefficient resolution, base pricing, coverage resolution,
business rules, insurance composition, year freezing and the
calculation orchestrator.
"""

from clinic_pricing.services.coefficient_resolver import CoefficientResolver
from clinic_pricing.services.base_price import BasePriceCalculator
from clinic_pricing.services.coverage_resolver import (
    CoverageResolver,
    PlanDefaultCoverageStrategy,
    PlanServiceCoverageStrategy,
    TariffCoverageStrategy,
    pick_tariff,
)
from clinic_pricing.services.business_rule_engine import (
    BusinessRuleEngine,
    CompiledRule,
    RuleEvaluation,
)
from clinic_pricing.services.insurance_composer import InsuranceComposer
from clinic_pricing.services.factor_freeze import (
    FactorYearFreezer,
    FreezeStateMachine,
    year_state,
)
from clinic_pricing.services.audit import CompositeAuditSink, LoggingAuditSink
from clinic_pricing.services.calculation_orchestrator import (
    CalculationOrchestrator,
    build_sql_orchestrator,
    get_calculation_orchestrator,
    get_default_data_source,
    select_insurances,
)

__all__ = [
    # Pricing
    "CoefficientResolver",
    "BasePriceCalculator",
    # Coverage
    "CoverageResolver",
    "TariffCoverageStrategy",
    "PlanServiceCoverageStrategy",
    "PlanDefaultCoverageStrategy",
    "pick_tariff",
    # Rules
    "BusinessRuleEngine",
    "CompiledRule",
    "RuleEvaluation",
    # Composition
    "InsuranceComposer",
    # Freeze
    "FactorYearFreezer",
    "FreezeStateMachine",
    "year_state",
    # Orchestration
    "CalculationOrchestrator",
    "select_insurances",
    "get_default_data_source",
    "get_calculation_orchestrator",
    "build_sql_orchestrator",
    # Audit
    "LoggingAuditSink",
    "CompositeAuditSink",
]
