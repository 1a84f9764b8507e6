"""
Business Rule Engine.

Loads the rules whose scope and validity window match a calculation,
parses their payloads into typed conditions and actions, and turns the
winning rules into effects for the insurance composer.

Ranking (stable, never arbitrary):
1. priority, highest first
2. scope specificity: service > service category > insurance plan > global
3. created_at, earliest first
4. id

For each rule type only the highest-ranked applicable rule is applied.
Validation rules are gates: every applicable one is checked and the
first failure in rank order becomes a BusinessRuleViolation.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Union
from uuid import UUID

from pydantic import ValidationError

from clinic_pricing.core.enums import BusinessRuleType, EffectKind
from clinic_pricing.core.errors import BusinessRuleViolation, RulePayloadError
from clinic_pricing.repositories.base import PricingDataSource
from clinic_pricing.schemas.rules import (
    ACTION_LIST_ADAPTER,
    ALLOWED_ACTIONS,
    CONDITION_LIST_ADAPTER,
    AdjustCoveragePercent,
    BusinessRuleData,
    DiscountAmount,
    DiscountPercent,
    EffectAction,
    MaxServiceAmount,
    PaymentCap,
    PenaltyAmount,
    PenaltyPercent,
    Reject,
    RuleAction,
    RuleCondition,
    RuleContext,
    RuleEffect,
    SetCoveragePercent,
    SetDeductible,
    SupplementaryCoverage,
)

logger = logging.getLogger(__name__)


@dataclass
class CompiledRule:
    """A rule with its payloads parsed into typed variants."""

    rule: BusinessRuleData
    conditions: list[RuleCondition] = field(default_factory=list)
    actions: list[RuleAction] = field(default_factory=list)

    # Set only for Validation rules whose payload could not be parsed
    payload_error: Optional[str] = None

    @property
    def id(self) -> UUID:
        return self.rule.id

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def rule_type(self) -> BusinessRuleType:
        return self.rule.rule_type

    @property
    def sort_key(self) -> tuple:
        return (
            -self.rule.priority,
            -int(self.rule.scope_level),
            self.rule.created_at.timestamp(),
            str(self.rule.id),
        )

    def matches(self, context: RuleContext) -> bool:
        """All conditions must hold; a rule without conditions always matches."""
        return all(condition.matches(context) for condition in self.conditions)


@dataclass
class RuleEvaluation:
    """Effects of the applied rules plus any validation failure."""

    effects: list[RuleEffect] = field(default_factory=list)
    applied_rules: list[CompiledRule] = field(default_factory=list)
    skipped_rule_ids: list[UUID] = field(default_factory=list)
    violation: Optional[BusinessRuleViolation] = None

    @property
    def applied_rule_ids(self) -> list[UUID]:
        return [r.id for r in self.applied_rules]

    def effects_of(self, kind: EffectKind) -> list[RuleEffect]:
        return [e for e in self.effects if e.kind == kind]

    def raise_for_violation(self) -> None:
        if self.violation is not None:
            raise self.violation


class BusinessRuleEngine:
    """
    Priority-ordered, scoped business rule evaluation.

    Rules are parsed once at load. Invalid payloads are skipped and
    logged, except for Validation rules, which fail closed.
    """

    def __init__(self, data_source: PricingDataSource):
        self.data_source = data_source

    # =========================================================================
    # Loading
    # =========================================================================

    @staticmethod
    def compile(rule: BusinessRuleData) -> CompiledRule:
        """
        Parse a rule's payloads.

        Raises:
            RulePayloadError: Unknown tag, bad field, or an action the rule
                type does not allow
        """
        try:
            conditions = CONDITION_LIST_ADAPTER.validate_python(rule.conditions)
            actions = ACTION_LIST_ADAPTER.validate_python(rule.actions)
        except ValidationError as e:
            raise RulePayloadError(
                f"Rule '{rule.name}' has an invalid payload: {e.error_count()} error(s)",
                details={"rule_id": rule.id, "errors": json.dumps(e.errors(include_url=False), default=str)},
            ) from e

        if not actions:
            raise RulePayloadError(
                f"Rule '{rule.name}' has no actions",
                details={"rule_id": rule.id},
            )

        allowed = ALLOWED_ACTIONS[rule.rule_type]
        for action in actions:
            if not isinstance(action, allowed):
                raise RulePayloadError(
                    f"Rule '{rule.name}' of type {rule.rule_type.value} "
                    f"cannot carry a '{action.type}' action",
                    details={"rule_id": rule.id, "action": action.type},
                )

        return CompiledRule(rule=rule, conditions=conditions, actions=actions)

    def load(self, rules: list[BusinessRuleData]) -> tuple[list[CompiledRule], list[UUID]]:
        """
        Compile rules and rank them.

        Returns:
            (ranked compiled rules, ids of skipped rules)
        """
        compiled: list[CompiledRule] = []
        skipped: list[UUID] = []

        for rule in rules:
            try:
                compiled.append(self.compile(rule))
            except RulePayloadError as e:
                if rule.rule_type == BusinessRuleType.VALIDATION:
                    logger.warning(
                        f"Validation rule {rule.id} ('{rule.name}') cannot be parsed "
                        f"and will fail closed: {e.message}"
                    )
                    compiled.append(CompiledRule(rule=rule, payload_error=e.message))
                else:
                    logger.warning(
                        f"Skipping rule {rule.id} ('{rule.name}', {rule.rule_type.value}): {e.message}"
                    )
                    skipped.append(rule.id)

        compiled.sort(key=lambda r: r.sort_key)
        return compiled, skipped

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate_context(self, context: RuleContext) -> RuleEvaluation:
        """Load the rules applicable to the context and evaluate them."""
        scope = context.scope
        rules = await self.data_source.get_applicable_business_rules(scope, context.calculation_date)
        rules = [
            r for r in rules if scope.admits(r) and r.is_effective_at(context.calculation_date)
        ]
        compiled, skipped = self.load(rules)
        return self.evaluate(compiled, context, skipped)

    def evaluate(
        self,
        rules: list[CompiledRule],
        context: RuleContext,
        skipped: Optional[list[UUID]] = None,
    ) -> RuleEvaluation:
        """
        Evaluate ranked rules against a context.

        Args:
            rules: Compiled rules, already ranked
            context: Calculation facts
            skipped: Ids of rules dropped at load

        Returns:
            RuleEvaluation; check .violation or call raise_for_violation()
        """
        evaluation = RuleEvaluation(skipped_rule_ids=list(skipped or []))
        taken: set[BusinessRuleType] = set()

        for rule in sorted(rules, key=lambda r: r.sort_key):
            if rule.rule_type == BusinessRuleType.VALIDATION:
                if evaluation.violation is None:
                    evaluation.violation = self._check_validation(rule, context)
                continue

            if rule.rule_type in taken or not rule.matches(context):
                continue

            taken.add(rule.rule_type)
            evaluation.applied_rules.append(rule)
            for action in rule.actions:
                evaluation.effects.append(self._to_effect(rule, action))

            logger.debug(
                f"Applied rule {rule.id} ('{rule.name}', {rule.rule_type.value}, "
                f"priority={rule.rule.priority}) to service {context.service_id}"
            )

        return evaluation

    @staticmethod
    def _check_validation(
        rule: CompiledRule,
        context: RuleContext,
    ) -> Optional[BusinessRuleViolation]:
        if rule.payload_error is not None:
            return BusinessRuleViolation(
                rule.rule.error_message
                or f"Validation rule '{rule.name}' could not be evaluated",
                rule_id=rule.id,
                rule_name=rule.name,
                service_id=context.service_id,
            )

        if not rule.matches(context):
            return None

        for action in rule.actions:
            if not isinstance(action, (MaxServiceAmount, Reject)):
                continue
            message = action.violation(context)
            if message is None:
                continue
            if action.message is None and rule.rule.error_message:
                message = rule.rule.error_message
            logger.info(f"Validation rule {rule.id} ('{rule.name}') failed: {message}")
            return BusinessRuleViolation(
                message,
                rule_id=rule.id,
                rule_name=rule.name,
                service_id=context.service_id,
            )
        return None

    @staticmethod
    def _to_effect(rule: CompiledRule, action: Union[EffectAction, RuleAction]) -> RuleEffect:
        common = {"rule_id": rule.id, "rule_name": rule.name, "rule_type": rule.rule_type}

        if isinstance(action, SetCoveragePercent):
            return RuleEffect(kind=EffectKind.COVERAGE_SET, value=action.percent, **common)
        if isinstance(action, AdjustCoveragePercent):
            return RuleEffect(kind=EffectKind.COVERAGE_DELTA, value=action.delta, **common)
        if isinstance(action, SetDeductible):
            return RuleEffect(kind=EffectKind.DEDUCTIBLE, value=action.amount, **common)
        if isinstance(action, DiscountPercent):
            return RuleEffect(kind=EffectKind.DISCOUNT_PERCENT, value=action.percent, **common)
        if isinstance(action, DiscountAmount):
            return RuleEffect(kind=EffectKind.DISCOUNT_AMOUNT, value=action.amount, **common)
        if isinstance(action, PenaltyPercent):
            return RuleEffect(kind=EffectKind.PENALTY_PERCENT, value=action.percent, **common)
        if isinstance(action, PenaltyAmount):
            return RuleEffect(kind=EffectKind.PENALTY_AMOUNT, value=action.amount, **common)
        if isinstance(action, PaymentCap):
            return RuleEffect(kind=EffectKind.PAYMENT_CAP, value=action.max_payment, **common)
        if isinstance(action, SupplementaryCoverage):
            return RuleEffect(
                kind=EffectKind.SUPPLEMENTARY,
                value=action.percent,
                max_payment=action.max_payment,
                applicable=action.applicable,
                **common,
            )
        raise RulePayloadError(
            f"Rule '{rule.name}' action '{action.type}' produces no effect",
            details={"rule_id": rule.id},
        )

