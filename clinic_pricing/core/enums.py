"""
Core Enumerations for the Pricing and Coverage Engine.

Values are persisted as strings, so renaming a member is a data migration.
"""

from enum import Enum


# =============================================================================
# Service Pricing Enums
# =============================================================================


class ServiceComponentType(str, Enum):
    """Component kinds a billable service is built from."""

    TECHNICAL = "technical"
    PROFESSIONAL = "professional"


class FreezeState(str, Enum):
    """Lifecycle of a financial year's coefficient settings."""

    OPEN = "open"
    FROZEN = "frozen"


class FreezeEvent(str, Enum):
    """Events that drive the year-freeze state machine."""

    FREEZE = "freeze"


class CalculationMode(str, Enum):
    """Why a calculation is being run."""

    NEW = "new"  # Produces a billable, persisted record as of now
    HISTORICAL = "historical"  # Re-display of a past calculation, never persisted


# =============================================================================
# Insurance Enums
# =============================================================================


class InsuranceType(str, Enum):
    """Role an insurance plan or tariff plays for a patient."""

    PRIMARY = "primary"
    SUPPLEMENTARY = "supplementary"


class InsuranceCalculationType(str, Enum):
    """Context that triggered an insurance calculation."""

    SERVICE = "service"
    RECEPTION = "reception"
    APPOINTMENT = "appointment"


class Gender(str, Enum):
    """Patient gender as used by gender-based rules."""

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"


class CoverageSource(str, Enum):
    """Which level of the coverage chain supplied a resolved value."""

    TARIFF = "tariff"
    PLAN_SERVICE = "plan_service"
    PLAN_DEFAULT = "plan_default"
    BUSINESS_RULE = "business_rule"


# =============================================================================
# Business Rule Enums
# =============================================================================


class BusinessRuleType(str, Enum):
    """Rule types understood by the business rule engine."""

    COVERAGE_PERCENT = "coverage_percent"
    DEDUCTIBLE = "deductible"
    PAYMENT_LIMIT = "payment_limit"
    SUPPLEMENTARY_INSURANCE = "supplementary_insurance"
    VALIDATION = "validation"
    DISCOUNT = "discount"
    PENALTY = "penalty"
    AGE_BASED_DISCOUNT = "age_based_discount"
    GENDER_BASED_DISCOUNT = "gender_based_discount"
    SERVICE_BASED_DISCOUNT = "service_based_discount"
    INSURANCE_BASED_DISCOUNT = "insurance_based_discount"
    CUSTOM_RULE = "custom_rule"


class RuleScopeLevel(int, Enum):
    """Specificity of a rule's scope; higher wins ties on priority."""

    GLOBAL = 0
    INSURANCE_PLAN = 1
    SERVICE_CATEGORY = 2
    SERVICE = 3


class EffectKind(str, Enum):
    """Typed effects produced by applied business rules."""

    COVERAGE_SET = "coverage_set"
    COVERAGE_DELTA = "coverage_delta"
    DEDUCTIBLE = "deductible"
    DISCOUNT_PERCENT = "discount_percent"
    DISCOUNT_AMOUNT = "discount_amount"
    PENALTY_PERCENT = "penalty_percent"
    PENALTY_AMOUNT = "penalty_amount"
    PAYMENT_CAP = "payment_cap"
    SUPPLEMENTARY = "supplementary"


# =============================================================================
# Outcome Enums
# =============================================================================


class CalculationOutcome(str, Enum):
    """Per-service result of an orchestrated calculation."""

    COVERED = "covered"
    NOT_COVERED = "not_covered"
    FAILED = "failed"


class IntegrationMode(str, Enum):
    """System integration mode."""

    DEMO = "demo"  # In-memory repository with seeded data
    LIVE = "live"  # PostgreSQL-backed repository
