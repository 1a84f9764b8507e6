"""
Unit Tests for Insurance Composition.

Tests for:
- Primary split, deductible and supplementary worked examples
- Rule effects: discounts, penalties, coverage, caps
- Explicit tariff shares and price overrides
- Not-covered outcome
- Reconciliation under randomized inputs
"""

import random
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest

from clinic_pricing.core.config import PricingSettings
from clinic_pricing.core.enums import BusinessRuleType, EffectKind
from clinic_pricing.core.errors import (
    CompositionError,
    NegativeResultingShareError,
    SupplementaryWithoutPrimaryError,
)
from clinic_pricing.schemas.insurance import ResolvedCoverage, SupplementaryTerms
from clinic_pricing.schemas.rules import RuleEffect
from clinic_pricing.services.insurance_composer import InsuranceComposer

PLAN_ID = uuid4()
SUPPLEMENTARY_PLAN_ID = uuid4()
MILLION = Decimal("1000000")


def coverage(percent: str = "70", **kwargs) -> ResolvedCoverage:
    return ResolvedCoverage(plan_id=PLAN_ID, coverage_percent=Decimal(percent), **kwargs)


def supplementary(percent: str = "50", max_payment: Optional[str] = None, **kwargs) -> SupplementaryTerms:
    return SupplementaryTerms(
        plan_id=SUPPLEMENTARY_PLAN_ID,
        coverage_percent=Decimal(percent),
        max_payment=Decimal(max_payment) if max_payment is not None else None,
        **kwargs,
    )


def effect(kind: EffectKind, value: str = "0", **kwargs) -> RuleEffect:
    return RuleEffect(
        kind=kind,
        value=Decimal(value),
        rule_id=uuid4(),
        rule_name=kind.value,
        rule_type=BusinessRuleType.CUSTOM_RULE,
        **kwargs,
    )


@pytest.fixture
def composer(settings):
    return InsuranceComposer(settings)


@pytest.mark.unit
class TestWorkedExamples:
    """Reference scenarios."""

    def test_seventy_percent_split(self, composer):
        result = composer.compose(MILLION, coverage("70"))

        assert result.insurer_share == Decimal("700000")
        assert result.patient_share == Decimal("300000")
        assert result.supplementary_share == Decimal("0")
        assert result.total_payable == MILLION

    def test_deductible_added_to_patient(self, composer):
        result = composer.compose(MILLION, coverage("70", deductible=Decimal("50000")))

        assert result.insurer_share == Decimal("700000")
        assert result.patient_share == Decimal("350000")
        assert result.deductible == Decimal("50000")
        assert result.total_payable == Decimal("1050000")

    def test_supplementary_capped(self, composer):
        result = composer.compose(MILLION, coverage("70"), [], supplementary("50", "100000"))

        assert result.insurer_share == Decimal("700000")
        assert result.supplementary_share == Decimal("100000")
        assert result.patient_share == Decimal("200000")
        assert result.supplementary_capped is True

    def test_supplementary_uncapped(self, composer):
        result = composer.compose(MILLION, coverage("70"), [], supplementary("50"))

        assert result.supplementary_share == Decimal("150000")
        assert result.patient_share == Decimal("150000")
        assert result.supplementary_capped is False

    def test_supplementary_covers_deductible_too(self, composer):
        result = composer.compose(
            MILLION,
            coverage("70", deductible=Decimal("50000")),
            [],
            supplementary("50"),
        )

        assert result.supplementary_share == Decimal("175000")
        assert result.patient_share == Decimal("175000")


@pytest.mark.unit
class TestRuleEffects:
    """Effects from applied business rules."""

    def test_discount_percent_reduces_amount(self, composer):
        result = composer.compose(MILLION, coverage("70"), [effect(EffectKind.DISCOUNT_PERCENT, "10")])

        assert result.adjusted_amount == Decimal("900000")
        assert result.discount_amount == Decimal("100000")
        assert result.insurer_share == Decimal("630000")
        assert result.patient_share == Decimal("270000")

    def test_penalty_amount_increases_amount(self, composer):
        result = composer.compose(MILLION, coverage("50"), [effect(EffectKind.PENALTY_AMOUNT, "20000")])

        assert result.adjusted_amount == Decimal("1020000")
        assert result.penalty_amount == Decimal("20000")
        assert result.insurer_share == Decimal("510000")

    def test_discount_beyond_amount_is_negative_share(self, composer):
        with pytest.raises(NegativeResultingShareError):
            composer.compose(MILLION, coverage("70"), [effect(EffectKind.DISCOUNT_AMOUNT, "1000001")])

    def test_coverage_set_then_delta(self, composer):
        effects = [
            effect(EffectKind.COVERAGE_DELTA, "-10"),
            effect(EffectKind.COVERAGE_SET, "80"),
        ]

        result = composer.compose(MILLION, coverage("70"), effects)

        assert result.coverage_percent == Decimal("70")
        assert result.insurer_share == Decimal("700000")

    def test_first_ranked_set_wins(self, composer):
        effects = [
            effect(EffectKind.COVERAGE_SET, "90"),
            effect(EffectKind.COVERAGE_SET, "50"),
            effect(EffectKind.DEDUCTIBLE, "10000"),
            effect(EffectKind.DEDUCTIBLE, "50000"),
        ]

        result = composer.compose(MILLION, coverage("70"), effects)

        assert result.coverage_percent == Decimal("90")
        assert result.insurer_share == Decimal("900000")
        assert result.patient_share == Decimal("110000")

    def test_coverage_is_clamped(self, composer):
        result = composer.compose(MILLION, coverage("70"), [effect(EffectKind.COVERAGE_DELTA, "50")])

        assert result.coverage_percent == Decimal("100")
        assert result.patient_share == Decimal("0")

    def test_configured_coverage_bounds(self):
        composer = InsuranceComposer(
            PricingSettings(_env_file=None, MAX_COVERAGE_PERCENT=Decimal("90"))
        )

        result = composer.compose(MILLION, coverage("100"))

        assert result.insurer_share == Decimal("900000")

    def test_payment_cap_limits_insurer(self, composer):
        effects = [
            effect(EffectKind.PAYMENT_CAP, "600000"),
            effect(EffectKind.PAYMENT_CAP, "500000"),
        ]

        result = composer.compose(MILLION, coverage("70"), effects)

        assert result.insurer_share == Decimal("500000")
        assert result.patient_share == Decimal("500000")
        assert result.coverage_percent == Decimal("50.00")
        assert result.payment_cap_applied is True

    def test_cap_above_share_has_no_effect(self, composer):
        result = composer.compose(MILLION, coverage("70"), [effect(EffectKind.PAYMENT_CAP, "900000")])

        assert result.insurer_share == Decimal("700000")
        assert result.payment_cap_applied is False

    def test_deductible_rule_replaces_plan_deductible(self, composer):
        result = composer.compose(
            MILLION,
            coverage("70", deductible=Decimal("50000")),
            [effect(EffectKind.DEDUCTIBLE, "20000")],
        )

        assert result.deductible == Decimal("20000")
        assert result.patient_share == Decimal("320000")

    def test_supplementary_rule_overrides_plan_terms(self, composer):
        result = composer.compose(
            MILLION,
            coverage("70"),
            [effect(EffectKind.SUPPLEMENTARY, "100", max_payment=Decimal("120000"))],
            supplementary("50"),
        )

        assert result.supplementary_share == Decimal("120000")
        assert result.patient_share == Decimal("180000")

    def test_supplementary_rule_can_disable(self, composer):
        result = composer.compose(
            MILLION,
            coverage("70"),
            [effect(EffectKind.SUPPLEMENTARY, applicable=False)],
            supplementary("50"),
        )

        assert result.supplementary_share == Decimal("0")
        assert result.patient_share == Decimal("300000")

    def test_supplementary_not_covered_terms(self, composer):
        result = composer.compose(MILLION, coverage("70"), [], supplementary("50", is_covered=False))

        assert result.supplementary_share == Decimal("0")


@pytest.mark.unit
class TestTariffOverrides:
    """Price overrides and explicit shares."""

    def test_price_override_replaces_base(self, composer):
        result = composer.compose(MILLION, coverage("70", price_override=Decimal("800000")))

        assert result.base_amount == MILLION
        assert result.adjusted_amount == Decimal("800000")
        assert result.insurer_share == Decimal("560000")
        assert result.patient_share == Decimal("240000")

    def test_explicit_insurer_share(self, composer):
        result = composer.compose(
            MILLION, coverage("70", insurer_share_override=Decimal("650000"))
        )

        assert result.insurer_share == Decimal("650000")
        assert result.patient_share == Decimal("350000")
        assert result.coverage_percent == Decimal("65.00")
        assert result.explicit_shares is True

    def test_explicit_patient_share(self, composer):
        result = composer.compose(
            MILLION, coverage("70", patient_share_override=Decimal("100000"))
        )

        assert result.insurer_share == Decimal("900000")
        assert result.patient_share == Decimal("100000")

    def test_explicit_share_bounded_by_amount(self, composer):
        result = composer.compose(
            MILLION, coverage("70", insurer_share_override=Decimal("5000000"))
        )

        assert result.insurer_share == MILLION
        assert result.patient_share == Decimal("0")


@pytest.mark.unit
class TestCoverageEdges:
    def test_not_covered_patient_pays_everything(self, composer):
        result = composer.compose(
            MILLION,
            coverage("0", is_covered=False),
            [effect(EffectKind.DISCOUNT_PERCENT, "50")],
            supplementary("50"),
        )

        assert result.is_covered is False
        assert result.insurer_share == Decimal("0")
        assert result.supplementary_share == Decimal("0")
        assert result.patient_share == MILLION

    def test_supplementary_without_primary(self, composer):
        with pytest.raises(SupplementaryWithoutPrimaryError):
            composer.compose(MILLION, None, [], supplementary("50"))

    def test_no_coverage_at_all(self, composer):
        with pytest.raises(CompositionError):
            composer.compose(MILLION, None)

    def test_zero_amount(self, composer):
        result = composer.compose(Decimal("0"), coverage("70"), [], supplementary("50"))

        assert result.insurer_share == Decimal("0")
        assert result.patient_share == Decimal("0")
        assert result.coverage_percent == Decimal("70")

    def test_rounding_remainder_lands_on_patient(self, composer):
        result = composer.compose(Decimal("1001"), coverage("33.33"))

        # 1001 * 33.33% = 333.6333 -> 334
        assert result.insurer_share == Decimal("334")
        assert result.patient_share == Decimal("667")
        assert result.rounding_adjustment == Decimal("-0.3667")


@pytest.mark.unit
@pytest.mark.slow
class TestRandomizedReconciliation:
    """Shares always add up, whatever the inputs."""

    def test_thousand_random_compositions_reconcile(self, composer):
        rng = random.Random(20250615)

        for _ in range(1000):
            base = Decimal(rng.randint(0, 50_000_000))
            percent = Decimal(rng.randint(0, 10000)) / Decimal("100")
            deductible = Decimal(rng.choice([0, 0, rng.randint(0, 200_000)]))
            effects = []
            if rng.random() < 0.3:
                effects.append(effect(EffectKind.DISCOUNT_PERCENT, str(rng.randint(1, 100))))
            if rng.random() < 0.3:
                effects.append(effect(EffectKind.PENALTY_AMOUNT, str(rng.randint(1, 100_000))))
            if rng.random() < 0.2:
                effects.append(effect(EffectKind.PAYMENT_CAP, str(rng.randint(0, 5_000_000))))
            if rng.random() < 0.2:
                effects.append(effect(EffectKind.COVERAGE_DELTA, str(rng.randint(-50, 50))))
            terms = None
            if rng.random() < 0.5:
                terms = supplementary(
                    str(rng.randint(0, 100)),
                    str(rng.randint(0, 1_000_000)) if rng.random() < 0.5 else None,
                )

            result = composer.compose(base, coverage(str(percent), deductible=deductible), effects, terms)

            total = result.insurer_share + result.supplementary_share + result.patient_share
            assert total == result.adjusted_amount + result.deductible
            assert result.insurer_share >= 0
            assert result.supplementary_share >= 0
            assert result.patient_share >= 0
            assert result.insurer_share <= result.adjusted_amount
            assert result.insurer_share == result.insurer_share.to_integral_value()
            assert result.patient_share == result.patient_share.to_integral_value()
            assert abs(result.rounding_adjustment) <= Decimal("1")
