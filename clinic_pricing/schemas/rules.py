"""
Pydantic Schemas for Business Rules.

Rule payloads are a closed set of tagged variants. Each condition or
action is a JSON object whose "type" field selects the variant:

    {"type": "age_between", "min_age": 65}
    {"type": "discount_percent", "percent": "10"}

Unknown tags and unexpected fields are rejected when a rule is loaded.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from clinic_pricing.core.enums import BusinessRuleType, EffectKind, Gender, RuleScopeLevel
from clinic_pricing.schemas.insurance import ResolvedCoverage


# =============================================================================
# Rule Input Schemas
# =============================================================================


class BusinessRuleData(BaseModel):
    """Rule as stored, with untyped payloads."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    rule_type: BusinessRuleType
    priority: int = 0
    plan_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    service_id: Optional[UUID] = None
    is_hashtagged: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True
    is_deleted: bool = False
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    actions: list[dict[str, Any]] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def scope_level(self) -> RuleScopeLevel:
        """Most specific scope filter the rule sets."""
        if self.service_id is not None:
            return RuleScopeLevel.SERVICE
        if self.category_id is not None:
            return RuleScopeLevel.SERVICE_CATEGORY
        if self.plan_id is not None:
            return RuleScopeLevel.INSURANCE_PLAN
        return RuleScopeLevel.GLOBAL

    def is_effective_at(self, at: datetime) -> bool:
        if not self.is_active or self.is_deleted:
            return False
        if self.start_date is not None and at < self.start_date:
            return False
        return self.end_date is None or at <= self.end_date


class RuleScope(BaseModel):
    """Scope values of a calculation; null rule filters are wildcards."""

    model_config = ConfigDict(frozen=True)

    plan_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    service_id: Optional[UUID] = None
    is_hashtagged: Optional[bool] = None

    def admits(self, rule: BusinessRuleData) -> bool:
        return (
            (rule.plan_id is None or rule.plan_id == self.plan_id)
            and (rule.category_id is None or rule.category_id == self.category_id)
            and (rule.service_id is None or rule.service_id == self.service_id)
            and (rule.is_hashtagged is None or rule.is_hashtagged == self.is_hashtagged)
        )


class RuleContext(BaseModel):
    """Facts a rule's conditions are evaluated against."""

    model_config = ConfigDict(frozen=True)

    patient_id: UUID
    patient_age: Optional[int] = None
    patient_gender: Gender = Gender.UNKNOWN
    service_id: UUID
    category_id: UUID
    plan_id: Optional[UUID] = None
    is_hashtagged: bool = False
    calculation_date: datetime
    service_amount: Decimal
    coverage: Optional[ResolvedCoverage] = None

    @property
    def scope(self) -> RuleScope:
        return RuleScope(
            plan_id=self.plan_id,
            category_id=self.category_id,
            service_id=self.service_id,
            is_hashtagged=self.is_hashtagged,
        )


class RuleEffect(BaseModel):
    """Typed effect of an applied rule, consumed by the composer."""

    model_config = ConfigDict(frozen=True)

    kind: EffectKind
    value: Decimal = Decimal("0")
    max_payment: Optional[Decimal] = None
    applicable: bool = True
    rule_id: UUID
    rule_name: str
    rule_type: BusinessRuleType


# =============================================================================
# Condition Variants
# =============================================================================


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class AgeBetween(_Payload):
    """Patient age in completed years on the calculation date, inclusive bounds."""

    type: Literal["age_between"] = "age_between"
    min_age: Optional[int] = Field(None, ge=0)
    max_age: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "AgeBetween":
        if self.min_age is None and self.max_age is None:
            raise ValueError("age_between needs min_age or max_age")
        if self.min_age is not None and self.max_age is not None and self.min_age > self.max_age:
            raise ValueError("min_age cannot exceed max_age")
        return self

    def matches(self, context: RuleContext) -> bool:
        age = context.patient_age
        if age is None:
            return False
        if self.min_age is not None and age < self.min_age:
            return False
        return self.max_age is None or age <= self.max_age


class GenderIs(_Payload):
    type: Literal["gender_is"] = "gender_is"
    genders: list[Gender] = Field(..., min_length=1)

    def matches(self, context: RuleContext) -> bool:
        return context.patient_gender in self.genders


class ServiceIn(_Payload):
    type: Literal["service_in"] = "service_in"
    service_ids: list[UUID] = Field(..., min_length=1)

    def matches(self, context: RuleContext) -> bool:
        return context.service_id in self.service_ids


class CategoryIn(_Payload):
    type: Literal["category_in"] = "category_in"
    category_ids: list[UUID] = Field(..., min_length=1)

    def matches(self, context: RuleContext) -> bool:
        return context.category_id in self.category_ids


class PlanIn(_Payload):
    type: Literal["plan_in"] = "plan_in"
    plan_ids: list[UUID] = Field(..., min_length=1)

    def matches(self, context: RuleContext) -> bool:
        return context.plan_id in self.plan_ids


class AmountBetween(_Payload):
    """Service amount before rule effects, inclusive bounds."""

    type: Literal["amount_between"] = "amount_between"
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "AmountBetween":
        if self.min_amount is None and self.max_amount is None:
            raise ValueError("amount_between needs min_amount or max_amount")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("min_amount cannot exceed max_amount")
        return self

    def matches(self, context: RuleContext) -> bool:
        amount = context.service_amount
        if self.min_amount is not None and amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount


class HashtaggedIs(_Payload):
    type: Literal["hashtagged_is"] = "hashtagged_is"
    value: bool

    def matches(self, context: RuleContext) -> bool:
        return context.is_hashtagged == self.value


RuleCondition = Annotated[
    Union[AgeBetween, GenderIs, ServiceIn, CategoryIn, PlanIn, AmountBetween, HashtaggedIs],
    Field(discriminator="type"),
]


# =============================================================================
# Action Variants
# =============================================================================


class SetCoveragePercent(_Payload):
    type: Literal["set_coverage_percent"] = "set_coverage_percent"
    percent: Decimal = Field(..., ge=0, le=100)


class AdjustCoveragePercent(_Payload):
    """Signed change in coverage points; the result is clamped by the composer."""

    type: Literal["adjust_coverage_percent"] = "adjust_coverage_percent"
    delta: Decimal = Field(..., ge=-100, le=100)


class SetDeductible(_Payload):
    type: Literal["set_deductible"] = "set_deductible"
    amount: Decimal = Field(..., ge=0)


class DiscountPercent(_Payload):
    type: Literal["discount_percent"] = "discount_percent"
    percent: Decimal = Field(..., gt=0, le=100)


class DiscountAmount(_Payload):
    type: Literal["discount_amount"] = "discount_amount"
    amount: Decimal = Field(..., gt=0)


class PenaltyPercent(_Payload):
    type: Literal["penalty_percent"] = "penalty_percent"
    percent: Decimal = Field(..., gt=0)


class PenaltyAmount(_Payload):
    type: Literal["penalty_amount"] = "penalty_amount"
    amount: Decimal = Field(..., gt=0)


class PaymentCap(_Payload):
    """Upper bound on the primary insurer's share."""

    type: Literal["payment_cap"] = "payment_cap"
    max_payment: Decimal = Field(..., ge=0)


class SupplementaryCoverage(_Payload):
    type: Literal["supplementary_coverage"] = "supplementary_coverage"
    percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    max_payment: Optional[Decimal] = Field(None, ge=0)
    applicable: bool = True


class MaxServiceAmount(_Payload):
    """Validation: the service amount must not exceed the limit."""

    type: Literal["max_service_amount"] = "max_service_amount"
    limit: Decimal = Field(..., ge=0)
    message: Optional[str] = None

    def violation(self, context: RuleContext) -> Optional[str]:
        if context.service_amount > self.limit:
            return self.message or (
                f"Service amount {context.service_amount} exceeds the allowed limit {self.limit}"
            )
        return None


class Reject(_Payload):
    """Validation: reject whenever the rule's conditions hold."""

    type: Literal["reject"] = "reject"
    message: Optional[str] = None

    def violation(self, context: RuleContext) -> Optional[str]:
        return self.message or "Calculation rejected by business rule"


EffectAction = Union[
    SetCoveragePercent,
    AdjustCoveragePercent,
    SetDeductible,
    DiscountPercent,
    DiscountAmount,
    PenaltyPercent,
    PenaltyAmount,
    PaymentCap,
    SupplementaryCoverage,
]
ValidationAction = Union[MaxServiceAmount, Reject]

RuleAction = Annotated[
    Union[
        SetCoveragePercent,
        AdjustCoveragePercent,
        SetDeductible,
        DiscountPercent,
        DiscountAmount,
        PenaltyPercent,
        PenaltyAmount,
        PaymentCap,
        SupplementaryCoverage,
        MaxServiceAmount,
        Reject,
    ],
    Field(discriminator="type"),
]

CONDITION_LIST_ADAPTER: TypeAdapter[list[RuleCondition]] = TypeAdapter(list[RuleCondition])
ACTION_LIST_ADAPTER: TypeAdapter[list[RuleAction]] = TypeAdapter(list[RuleAction])

_DISCOUNT_ACTIONS: tuple[type, ...] = (DiscountPercent, DiscountAmount)
_EFFECT_ACTIONS: tuple[type, ...] = (
    SetCoveragePercent,
    AdjustCoveragePercent,
    SetDeductible,
    DiscountPercent,
    DiscountAmount,
    PenaltyPercent,
    PenaltyAmount,
    PaymentCap,
    SupplementaryCoverage,
)

# Action variants each rule type may carry
ALLOWED_ACTIONS: dict[BusinessRuleType, tuple[type, ...]] = {
    BusinessRuleType.COVERAGE_PERCENT: (SetCoveragePercent, AdjustCoveragePercent),
    BusinessRuleType.DEDUCTIBLE: (SetDeductible,),
    BusinessRuleType.PAYMENT_LIMIT: (PaymentCap,),
    BusinessRuleType.SUPPLEMENTARY_INSURANCE: (SupplementaryCoverage,),
    BusinessRuleType.VALIDATION: (MaxServiceAmount, Reject),
    BusinessRuleType.DISCOUNT: _DISCOUNT_ACTIONS,
    BusinessRuleType.AGE_BASED_DISCOUNT: _DISCOUNT_ACTIONS,
    BusinessRuleType.GENDER_BASED_DISCOUNT: _DISCOUNT_ACTIONS,
    BusinessRuleType.SERVICE_BASED_DISCOUNT: _DISCOUNT_ACTIONS,
    BusinessRuleType.INSURANCE_BASED_DISCOUNT: _DISCOUNT_ACTIONS,
    BusinessRuleType.PENALTY: (PenaltyPercent, PenaltyAmount),
    BusinessRuleType.CUSTOM_RULE: _EFFECT_ACTIONS,
}
