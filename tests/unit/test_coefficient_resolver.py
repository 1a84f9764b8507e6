"""
Unit Tests for Coefficient Resolution.

Tests for:
- Latest effective_from wins
- Missing and ambiguous settings
- Half-open effective windows
- Frozen years in NEW and HISTORICAL mode
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clinic_pricing.core.enums import CalculationMode, FreezeState, ServiceComponentType
from clinic_pricing.core.errors import AmbiguousOrMissingFactorError, FrozenYearError
from clinic_pricing.services.coefficient_resolver import CoefficientResolver

TECHNICAL = ServiceComponentType.TECHNICAL
PROFESSIONAL = ServiceComponentType.PROFESSIONAL


@pytest.mark.unit
class TestFactorSelection:
    """Choice among candidate settings."""

    @pytest.mark.asyncio
    async def test_resolves_single_setting(self, catalog):
        resolver = CoefficientResolver(catalog.repo)

        factor = await resolver.resolve(TECHNICAL, False, catalog.at)

        assert factor.value == Decimal("10000")
        assert factor.factor_type == TECHNICAL
        assert factor.financial_year == 2025
        assert factor.is_frozen is False

    @pytest.mark.asyncio
    async def test_hashtag_class_selects_its_own_setting(self, repo, catalog):
        catalog.add_factor(
            TECHNICAL,
            "14000",
            hashtagged=True,
            effective_from=datetime(2025, 3, 1, tzinfo=timezone.utc),
        )
        resolver = CoefficientResolver(repo)

        plain = await resolver.resolve(TECHNICAL, False, catalog.at)
        hashtagged = await resolver.resolve(TECHNICAL, True, catalog.at)

        assert plain.value == Decimal("10000")
        assert hashtagged.value == Decimal("14000")

    @pytest.mark.asyncio
    async def test_latest_effective_from_wins(self, catalog):
        mid_year = catalog.add_factor(
            PROFESSIONAL,
            "27500",
            effective_from=datetime(2025, 4, 1, tzinfo=timezone.utc),
        )
        resolver = CoefficientResolver(catalog.repo)

        factor = await resolver.resolve(PROFESSIONAL, False, catalog.at)

        assert factor.setting_id == mid_year.id
        assert factor.value == Decimal("27500")

    @pytest.mark.asyncio
    async def test_earlier_date_uses_earlier_setting(self, catalog):
        catalog.add_factor(
            PROFESSIONAL,
            "27500",
            effective_from=datetime(2025, 4, 1, tzinfo=timezone.utc),
        )
        resolver = CoefficientResolver(catalog.repo)

        factor = await resolver.resolve(
            PROFESSIONAL, False, datetime(2025, 2, 1, tzinfo=timezone.utc)
        )

        assert factor.value == Decimal("25000")

    @pytest.mark.asyncio
    async def test_missing_setting_is_an_error(self, repo, catalog):
        resolver = CoefficientResolver(repo)

        with pytest.raises(AmbiguousOrMissingFactorError) as exc_info:
            await resolver.resolve(TECHNICAL, False, datetime(2024, 6, 1, tzinfo=timezone.utc))

        assert exc_info.value.code == "AMBIGUOUS_OR_MISSING_FACTOR"

    @pytest.mark.asyncio
    async def test_tied_effective_from_is_ambiguous(self, catalog):
        catalog.add_factor(TECHNICAL, "11000")
        resolver = CoefficientResolver(catalog.repo)

        with pytest.raises(AmbiguousOrMissingFactorError, match="Ambiguous"):
            await resolver.resolve(TECHNICAL, False, catalog.at)

    def test_inactive_and_deleted_settings_are_ignored(self, catalog):
        at = datetime(2025, 6, 1, tzinfo=timezone.utc)
        start = datetime(2025, 5, 1, tzinfo=timezone.utc)
        active = catalog.add_factor(TECHNICAL, "9000", effective_from=start - timedelta(days=1))
        inactive = catalog.add_factor(TECHNICAL, "9500", effective_from=start, is_active=False)
        deleted = catalog.add_factor(TECHNICAL, "9900", effective_from=start, is_deleted=True)

        chosen = CoefficientResolver.select([active, inactive, deleted], TECHNICAL, False, at)

        assert chosen.id == active.id


@pytest.mark.unit
class TestEffectiveWindow:
    """[effective_from, effective_to) boundaries."""

    @pytest.mark.asyncio
    async def test_window_start_is_inclusive(self, catalog):
        resolver = CoefficientResolver(catalog.repo)

        factor = await resolver.resolve(TECHNICAL, False, datetime(2025, 1, 1, tzinfo=timezone.utc))

        assert factor.value == Decimal("10000")

    @pytest.mark.asyncio
    async def test_window_end_is_exclusive(self, catalog):
        resolver = CoefficientResolver(catalog.repo)

        with pytest.raises(AmbiguousOrMissingFactorError):
            await resolver.resolve(TECHNICAL, False, datetime(2026, 1, 1, tzinfo=timezone.utc))

    @pytest.mark.asyncio
    async def test_adjacent_windows_do_not_overlap(self, catalog):
        catalog.add_factor(
            TECHNICAL,
            "12000",
            effective_from=datetime(2026, 1, 1, tzinfo=timezone.utc),
            effective_to=None,
            financial_year=2026,
        )
        resolver = CoefficientResolver(catalog.repo)

        factor = await resolver.resolve(TECHNICAL, False, datetime(2026, 1, 1, tzinfo=timezone.utc))

        assert factor.value == Decimal("12000")
        assert factor.financial_year == 2026


@pytest.mark.unit
class TestFrozenYears:
    """Frozen settings back historical displays only."""

    @pytest.fixture
    def frozen_catalog(self, catalog):
        frozen_at = datetime(2025, 12, 31, tzinfo=timezone.utc)
        catalog.add_factor(
            TECHNICAL,
            "8000",
            effective_from=datetime(2024, 1, 1, tzinfo=timezone.utc),
            effective_to=datetime(2025, 1, 1, tzinfo=timezone.utc),
            financial_year=2024,
            freeze_state=FreezeState.FROZEN,
            frozen_at=frozen_at,
            frozen_by="finance",
        )
        return catalog

    @pytest.mark.asyncio
    async def test_new_calculation_on_frozen_year_fails(self, frozen_catalog):
        resolver = CoefficientResolver(frozen_catalog.repo)

        with pytest.raises(FrozenYearError) as exc_info:
            await resolver.resolve(TECHNICAL, False, datetime(2024, 7, 1, tzinfo=timezone.utc))

        assert exc_info.value.details["financial_year"] == 2024

    @pytest.mark.asyncio
    async def test_historical_calculation_before_freeze_succeeds(self, frozen_catalog):
        resolver = CoefficientResolver(frozen_catalog.repo)

        factor = await resolver.resolve(
            TECHNICAL,
            False,
            datetime(2024, 7, 1, tzinfo=timezone.utc),
            mode=CalculationMode.HISTORICAL,
        )

        assert factor.value == Decimal("8000")
        assert factor.is_frozen is True

    def test_historical_calculation_after_freeze_fails(self, frozen_catalog):
        setting = next(
            s for s in frozen_catalog.repo._factor_settings.values() if s.financial_year == 2024
        )

        with pytest.raises(FrozenYearError):
            CoefficientResolver._check_freeze(
                setting,
                datetime(2026, 1, 5, tzinfo=timezone.utc),
                CalculationMode.HISTORICAL,
            )
