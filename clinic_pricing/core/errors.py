"""
Pricing Engine Exceptions.

Error taxonomy:
- DataIntegrityError: bad or locked reference data, always aborts
- EligibilityError: the patient has nothing to bill against
- BusinessRuleViolation: a Validation rule rejected the calculation
- CompositionError: share composition failed for one service only
- FreezeError: the year-freeze transition was refused

"Not covered" is a valid outcome and has no exception.
"""

from typing import Any, Optional
from uuid import UUID


class PricingError(Exception):
    """Base class for all pricing engine errors."""

    code: str = "PRICING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        service_id: Optional[UUID] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.service_id = service_id
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the outer API layer."""
        return {
            "code": self.code,
            "message": self.message,
            "service_id": str(self.service_id) if self.service_id else None,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# =============================================================================
# Data Integrity
# =============================================================================


class DataIntegrityError(PricingError):
    """Reference data is missing, ambiguous or locked."""

    code = "DATA_INTEGRITY"


class AmbiguousOrMissingFactorError(DataIntegrityError):
    """Zero or several equally specific factor settings are in force."""

    code = "AMBIGUOUS_OR_MISSING_FACTOR"


class FrozenYearError(DataIntegrityError):
    """The resolved factor setting belongs to a frozen financial year."""

    code = "FROZEN_YEAR"


class NoComponentsDefinedError(DataIntegrityError):
    """The service lacks the technical and professional components needed to bill."""

    code = "NO_COMPONENTS_DEFINED"


class ServiceNotFoundError(DataIntegrityError):
    """The requested service does not exist or was deleted."""

    code = "SERVICE_NOT_FOUND"


# =============================================================================
# Eligibility
# =============================================================================


class EligibilityError(PricingError):
    """The patient cannot be billed against any insurance."""

    code = "ELIGIBILITY"


class NoActiveInsuranceError(EligibilityError):
    """No valid insurance relationship on the calculation date."""

    code = "NO_ACTIVE_INSURANCE"


# =============================================================================
# Business Rules
# =============================================================================


class BusinessRuleViolation(PricingError):
    """A Validation rule failed; the message is shown to the caller verbatim."""

    code = "BUSINESS_RULE_VIOLATION"

    def __init__(
        self,
        message: str,
        *,
        rule_id: Optional[UUID] = None,
        rule_name: Optional[str] = None,
        service_id: Optional[UUID] = None,
    ):
        super().__init__(
            message,
            service_id=service_id,
            details={"rule_id": rule_id, "rule_name": rule_name},
        )
        self.rule_id = rule_id
        self.rule_name = rule_name


class RulePayloadError(PricingError):
    """A rule's condition/action payload could not be parsed."""

    code = "RULE_PAYLOAD"


# =============================================================================
# Composition
# =============================================================================


class CompositionError(PricingError):
    """Share composition failed for a single service."""

    code = "COMPOSITION"


class NegativeResultingShareError(CompositionError):
    """Applied effects drove a share or the billable amount below zero."""

    code = "NEGATIVE_RESULTING_SHARE"


class SupplementaryWithoutPrimaryError(CompositionError):
    """Supplementary coverage requested without a valid primary coverage."""

    code = "SUPPLEMENTARY_WITHOUT_PRIMARY"


class ReconciliationError(CompositionError):
    """Shares do not add up to the total payable amount."""

    code = "RECONCILIATION"


# =============================================================================
# Requests and Freezing
# =============================================================================


class InvalidCalculationRequest(PricingError):
    """The calculation request itself is malformed."""

    code = "INVALID_REQUEST"


class FreezeError(PricingError):
    """Base class for year-freeze failures."""

    code = "FREEZE"


class InvalidFreezeTransitionError(FreezeError):
    """The requested transition is not allowed from the current state."""

    code = "INVALID_FREEZE_TRANSITION"


class ConcurrentFreezeError(FreezeError):
    """A version token changed between read and compare-and-swap."""

    code = "CONCURRENT_FREEZE"
