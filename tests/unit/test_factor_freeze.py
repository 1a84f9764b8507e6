"""
Unit Tests for the Financial Year Freeze.

Tests for:
- State machine transitions
- All-or-nothing freeze with version tokens
- Concurrent edits during a freeze
- Frozen years refusing new settings and new calculations
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from clinic_pricing.core.enums import (
    CalculationMode,
    FreezeEvent,
    FreezeState,
    ServiceComponentType,
)
from clinic_pricing.core.errors import (
    ConcurrentFreezeError,
    FrozenYearError,
    InvalidFreezeTransitionError,
)
from clinic_pricing.services.coefficient_resolver import CoefficientResolver
from clinic_pricing.services.factor_freeze import (
    FactorYearFreezer,
    FreezeStateMachine,
    TransitionContext,
    year_state,
)

FROZEN_AT = datetime(2026, 1, 10, tzinfo=timezone.utc)


@pytest.mark.unit
class TestFreezeStateMachine:
    """OPEN -> FROZEN on FREEZE; FROZEN is terminal."""

    def test_open_can_freeze(self):
        machine = FreezeStateMachine()

        assert machine.can_transition(FreezeState.OPEN, FreezeState.FROZEN) is True
        assert machine.can_transition(FreezeState.FROZEN, FreezeState.OPEN) is False

    def test_frozen_is_terminal(self):
        machine = FreezeStateMachine()
        context = TransitionContext(
            financial_year=2025,
            current_state=FreezeState.FROZEN,
            event=FreezeEvent.FREEZE,
            actor="finance",
        )

        result = machine.validate_transition(context)

        assert result.success is False
        assert "Invalid transition" in result.error

    def test_actor_required(self):
        machine = FreezeStateMachine()
        context = TransitionContext(
            financial_year=2025,
            current_state=FreezeState.OPEN,
            event=FreezeEvent.FREEZE,
        )

        result = machine.validate_transition(context)

        assert result.success is False
        assert "actor" in result.error

    def test_callbacks_run_on_execute(self):
        machine = FreezeStateMachine()
        seen = []
        machine.register_callback(FreezeEvent.FREEZE, lambda ctx, res: seen.append(ctx.financial_year))
        context = TransitionContext(
            financial_year=2025,
            current_state=FreezeState.OPEN,
            event=FreezeEvent.FREEZE,
            actor="finance",
        )

        result = machine.execute_transition(context)

        assert result.success is True
        assert result.to_state == FreezeState.FROZEN
        assert seen == [2025]


@pytest.mark.unit
class TestFactorYearFreezer:
    """Freezing every setting of a year at once."""

    @pytest.mark.asyncio
    async def test_freezes_every_setting(self, catalog):
        freezer = FactorYearFreezer(catalog.repo)

        settings = await freezer.freeze_year(2025, "finance", FROZEN_AT)

        assert len(settings) == 4
        assert all(s.freeze_state == FreezeState.FROZEN for s in settings)
        assert all(s.frozen_at == FROZEN_AT and s.frozen_by == "finance" for s in settings)
        assert all(s.version == 2 for s in settings)
        assert await freezer.get_year_state(2025) == FreezeState.FROZEN

    @pytest.mark.asyncio
    async def test_other_years_untouched(self, catalog):
        catalog.add_factor(
            ServiceComponentType.TECHNICAL,
            "12000",
            effective_from=datetime(2026, 1, 1, tzinfo=timezone.utc),
            effective_to=None,
            financial_year=2026,
        )
        freezer = FactorYearFreezer(catalog.repo)

        await freezer.freeze_year(2025, "finance", FROZEN_AT)

        assert await freezer.get_year_state(2026) == FreezeState.OPEN
        assert await freezer.list_frozen_settings(2026) == []

    @pytest.mark.asyncio
    async def test_freezing_twice_is_refused(self, catalog):
        freezer = FactorYearFreezer(catalog.repo)
        await freezer.freeze_year(2025, "finance", FROZEN_AT)

        with pytest.raises(InvalidFreezeTransitionError):
            await freezer.freeze_year(2025, "finance", FROZEN_AT)

    @pytest.mark.asyncio
    async def test_empty_year_is_refused(self, catalog):
        freezer = FactorYearFreezer(catalog.repo)

        with pytest.raises(InvalidFreezeTransitionError, match="no factor settings"):
            await freezer.freeze_year(2030, "finance")

    @pytest.mark.asyncio
    async def test_missing_actor_is_refused(self, catalog):
        freezer = FactorYearFreezer(catalog.repo)

        with pytest.raises(InvalidFreezeTransitionError):
            await freezer.freeze_year(2025, "")

        assert await freezer.get_year_state(2025) == FreezeState.OPEN

    @pytest.mark.asyncio
    async def test_concurrent_edit_freezes_nothing(self, catalog):
        settings = await catalog.repo.list_factor_settings(2025)
        expected = {s.id: s.version for s in settings}
        catalog.repo.bump_factor_setting_version(settings[-1].id)

        with pytest.raises(ConcurrentFreezeError):
            await catalog.repo.freeze_financial_year(2025, expected, "finance", FROZEN_AT)

        after = await catalog.repo.list_factor_settings(2025)
        assert all(s.freeze_state == FreezeState.OPEN for s in after)
        assert year_state(after) == FreezeState.OPEN

    @pytest.mark.asyncio
    async def test_frozen_year_rejects_new_settings(self, catalog):
        await FactorYearFreezer(catalog.repo).freeze_year(2025, "finance", FROZEN_AT)

        with pytest.raises(FrozenYearError):
            catalog.add_factor(
                ServiceComponentType.TECHNICAL,
                "99999",
                effective_from=datetime(2025, 7, 1, tzinfo=timezone.utc),
            )

    @pytest.mark.asyncio
    async def test_frozen_value_still_resolves_historically(self, catalog):
        await FactorYearFreezer(catalog.repo).freeze_year(2025, "finance", FROZEN_AT)
        resolver = CoefficientResolver(catalog.repo)

        factor = await resolver.resolve(
            ServiceComponentType.TECHNICAL,
            False,
            catalog.at,
            mode=CalculationMode.HISTORICAL,
        )

        assert factor.value == Decimal("10000")
        with pytest.raises(FrozenYearError):
            await resolver.resolve(ServiceComponentType.TECHNICAL, False, catalog.at)


def test_year_state_of_empty_year_is_open():
    assert year_state([]) == FreezeState.OPEN
