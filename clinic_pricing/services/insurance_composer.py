"""
Insurance Composer.

Splits one service's amount between the primary insurer, an optional
supplementary insurer and the patient.

Steps:
1. Apply rule discounts and penalties to the amount; apply coverage
   effects to the resolved coverage percent.
2. Primary insurer share = adjusted amount * coverage (rounded), capped
   by any payment limit. Explicit tariff shares replace the percent math.
3. Patient share = adjusted amount - insurer share + deductible.
4. Supplementary share = min(patient share * supplementary percent,
   supplementary cap), taken off the patient share.
5. insurer + supplementary + patient == adjusted amount + deductible,
   exactly. The patient share is computed as the remainder, so every
   rounding unit lands on the patient.
"""

import logging
from decimal import Decimal
from typing import Optional

from clinic_pricing.core.config import PricingSettings, get_settings
from clinic_pricing.core.enums import EffectKind
from clinic_pricing.core.errors import (
    CompositionError,
    NegativeResultingShareError,
    ReconciliationError,
    SupplementaryWithoutPrimaryError,
)
from clinic_pricing.core.money import ONE_HUNDRED, ZERO, clamp_percent, percent_of, round_money
from clinic_pricing.schemas.calculation import CompositionResult
from clinic_pricing.schemas.insurance import ResolvedCoverage, SupplementaryTerms
from clinic_pricing.schemas.rules import RuleEffect

logger = logging.getLogger(__name__)

COVERAGE_QUANTUM = Decimal("0.01")


class InsuranceComposer:
    """Composes primary and supplementary coverage into final shares."""

    def __init__(self, settings: Optional[PricingSettings] = None):
        self.settings = settings or get_settings()

    def _round(self, value: Decimal) -> Decimal:
        return round_money(value, self.settings.ROUNDING_UNIT)

    def compose(
        self,
        base_amount: Decimal,
        coverage: Optional[ResolvedCoverage],
        effects: Optional[list[RuleEffect]] = None,
        supplementary: Optional[SupplementaryTerms] = None,
    ) -> CompositionResult:
        """
        Compose shares for one service.

        Args:
            base_amount: Rounded base price of the service
            coverage: Primary coverage, None when there is no primary insurance
            effects: Effects of the applied business rules
            supplementary: Terms of the patient's supplementary plan, if any

        Returns:
            CompositionResult whose shares reconcile exactly

        Raises:
            SupplementaryWithoutPrimaryError: Supplementary terms without primary coverage
            NegativeResultingShareError: Effects drove an amount below zero
        """
        effects = effects or []

        if coverage is None:
            if supplementary is not None:
                raise SupplementaryWithoutPrimaryError(
                    "Supplementary insurance cannot be applied without primary coverage",
                    details={"supplementary_plan_id": supplementary.plan_id},
                )
            raise CompositionError("No primary coverage to compose")

        if base_amount < ZERO:
            raise NegativeResultingShareError(
                f"Base amount {base_amount} is negative",
                details={"base_amount": base_amount},
            )

        if not coverage.is_covered:
            return self._not_covered(base_amount)

        # Step 1: adjusted amount and effective coverage
        amount = coverage.price_override if coverage.price_override is not None else base_amount
        discount = self._sum_percent(amount, effects, EffectKind.DISCOUNT_PERCENT) + self._sum(
            effects, EffectKind.DISCOUNT_AMOUNT
        )
        penalty = self._sum_percent(amount, effects, EffectKind.PENALTY_PERCENT) + self._sum(
            effects, EffectKind.PENALTY_AMOUNT
        )
        discount = self._round(discount)
        penalty = self._round(penalty)
        adjusted = self._round(amount - discount + penalty)
        if adjusted < ZERO:
            raise NegativeResultingShareError(
                f"Discounts of {discount} exceed the billable amount {amount + penalty}",
                details={"amount": amount, "discount": discount, "penalty": penalty},
            )

        coverage_percent = self._effective_coverage(coverage, effects)

        # Step 2: primary insurer share
        explicit = coverage.has_explicit_shares
        if explicit:
            unrounded_insurer = self._explicit_insurer_share(coverage, adjusted)
        else:
            unrounded_insurer = percent_of(adjusted, coverage_percent)
        insurer = self._round(unrounded_insurer)

        caps = [e.value for e in effects if e.kind == EffectKind.PAYMENT_CAP]
        cap_applied = False
        if caps and insurer > min(caps):
            insurer = self._round(min(caps))
            unrounded_insurer = insurer
            cap_applied = True

        if insurer < ZERO or insurer > adjusted:
            raise NegativeResultingShareError(
                f"Insurer share {insurer} leaves a negative patient share of {adjusted - insurer}",
                details={"insurer_share": insurer, "adjusted_amount": adjusted},
            )

        if explicit or cap_applied:
            coverage_percent = (
                (insurer * ONE_HUNDRED / adjusted).quantize(COVERAGE_QUANTUM) if adjusted else ZERO
            )

        # Step 3: deductible on top of the patient's part
        deductible = self._deductible(coverage, effects)
        patient = adjusted - insurer + deductible

        # Step 4: supplementary on the residual
        supplementary_share = ZERO
        unrounded_supplementary = ZERO
        supplementary_capped = False
        terms = self._supplementary_terms(supplementary, effects)
        if terms is not None and patient > ZERO:
            percent, max_payment = terms
            unrounded_supplementary = percent_of(patient, percent)
            supplementary_share = self._round(unrounded_supplementary)
            if max_payment is not None and supplementary_share > max_payment:
                supplementary_share = self._round(max_payment)
                unrounded_supplementary = supplementary_share
                supplementary_capped = True
            patient -= supplementary_share

        if patient < ZERO or supplementary_share < ZERO:
            raise NegativeResultingShareError(
                f"Supplementary share {supplementary_share} exceeds the patient share",
                details={"supplementary_share": supplementary_share, "patient_share": patient},
            )

        # Step 5: reconciliation
        total = adjusted + deductible
        if insurer + supplementary_share + patient != total:
            raise ReconciliationError(
                f"Shares {insurer} + {supplementary_share} + {patient} do not add up to {total}",
                details={"total": total},
            )
        rounding_adjustment = (unrounded_insurer - insurer) + (
            unrounded_supplementary - supplementary_share
        )

        logger.debug(
            f"Composed {total}: insurer={insurer} supplementary={supplementary_share} "
            f"patient={patient} (coverage={coverage_percent}%, deductible={deductible})"
        )

        return CompositionResult(
            is_covered=True,
            base_amount=base_amount,
            adjusted_amount=adjusted,
            coverage_percent=coverage_percent,
            insurer_share=insurer,
            supplementary_share=supplementary_share,
            patient_share=patient,
            deductible=deductible,
            discount_amount=discount,
            penalty_amount=penalty,
            payment_cap_applied=cap_applied,
            supplementary_capped=supplementary_capped,
            explicit_shares=explicit,
            rounding_adjustment=rounding_adjustment,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _not_covered(base_amount: Decimal) -> CompositionResult:
        """Patient pays the whole base price; no effects, no supplementary."""
        return CompositionResult(
            is_covered=False,
            base_amount=base_amount,
            adjusted_amount=base_amount,
            coverage_percent=ZERO,
            insurer_share=ZERO,
            patient_share=base_amount,
        )

    @staticmethod
    def _sum(effects: list[RuleEffect], kind: EffectKind) -> Decimal:
        return sum((e.value for e in effects if e.kind == kind), ZERO)

    @staticmethod
    def _sum_percent(amount: Decimal, effects: list[RuleEffect], kind: EffectKind) -> Decimal:
        return sum((percent_of(amount, e.value) for e in effects if e.kind == kind), ZERO)

    def _effective_coverage(self, coverage: ResolvedCoverage, effects: list[RuleEffect]) -> Decimal:
        # Effects arrive in rank order; the highest-ranked SET wins
        percent = next(
            (e.value for e in effects if e.kind == EffectKind.COVERAGE_SET),
            coverage.coverage_percent,
        )
        for effect in effects:
            if effect.kind == EffectKind.COVERAGE_DELTA:
                percent += effect.value
        return clamp_percent(
            percent,
            self.settings.MIN_COVERAGE_PERCENT,
            self.settings.MAX_COVERAGE_PERCENT,
        )

    @staticmethod
    def _explicit_insurer_share(coverage: ResolvedCoverage, adjusted: Decimal) -> Decimal:
        """Insurer share from tariff amounts, bounded by the adjusted amount."""
        if coverage.insurer_share_override is not None:
            return min(coverage.insurer_share_override, adjusted)
        patient_share = coverage.patient_share_override or ZERO
        return adjusted - min(patient_share, adjusted)

    def _deductible(self, coverage: ResolvedCoverage, effects: list[RuleEffect]) -> Decimal:
        """A Deductible rule replaces the resolved deductible."""
        deductible = next(
            (e.value for e in effects if e.kind == EffectKind.DEDUCTIBLE),
            coverage.deductible,
        )
        if deductible < ZERO:
            raise NegativeResultingShareError(f"Deductible {deductible} is negative")
        return self._round(deductible)

    @staticmethod
    def _supplementary_terms(
        supplementary: Optional[SupplementaryTerms],
        effects: list[RuleEffect],
    ) -> Optional[tuple[Decimal, Optional[Decimal]]]:
        """
        Percent and cap for the supplementary share.

        A SupplementaryInsurance rule effect beats the plan's own terms.
        """
        if supplementary is None:
            return None

        rule_effect = next((e for e in effects if e.kind == EffectKind.SUPPLEMENTARY), None)
        if rule_effect is not None:
            if not rule_effect.applicable:
                return None
            return rule_effect.value, rule_effect.max_payment

        if not supplementary.is_covered:
            return None
        return supplementary.coverage_percent, supplementary.max_payment
