"""
Financial Year Freeze.

State Diagram:
    OPEN -> FROZEN   (event: FREEZE)

FROZEN is terminal. Freezing a year moves every open setting of that
year in one compare-and-swap over their version tokens: either all of
them freeze or none do, and a concurrent edit makes the freeze fail
with ConcurrentFreezeError.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from clinic_pricing.core.enums import FreezeEvent, FreezeState
from clinic_pricing.core.errors import ConcurrentFreezeError, InvalidFreezeTransitionError
from clinic_pricing.repositories.base import FactorSettingStore
from clinic_pricing.schemas.pricing import FactorSettingData

logger = logging.getLogger(__name__)


@dataclass
class Transition:
    """Represents a valid state transition."""

    from_state: FreezeState
    to_state: FreezeState
    event: FreezeEvent
    requires_actor: bool = True


@dataclass
class TransitionContext:
    """Context for a transition attempt."""

    financial_year: int
    current_state: FreezeState
    event: FreezeEvent
    actor: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransitionResult:
    """Result of a transition attempt."""

    success: bool
    from_state: FreezeState
    to_state: Optional[FreezeState] = None
    error: Optional[str] = None
    transition: Optional[Transition] = None


VALID_TRANSITIONS: list[Transition] = [
    Transition(
        from_state=FreezeState.OPEN,
        to_state=FreezeState.FROZEN,
        event=FreezeEvent.FREEZE,
    ),
]


class FreezeStateMachine:
    """Guards transitions of a financial year's freeze state."""

    def __init__(self):
        self._transitions: dict[tuple[FreezeState, FreezeEvent], Transition] = {
            (t.from_state, t.event): t for t in VALID_TRANSITIONS
        }
        self._callbacks: dict[FreezeEvent, list[Callable[[TransitionContext, TransitionResult], None]]] = {}

    def get_transition(self, state: FreezeState, event: FreezeEvent) -> Optional[Transition]:
        return self._transitions.get((state, event))

    def can_transition(self, from_state: FreezeState, to_state: FreezeState) -> bool:
        return any(
            t.from_state == from_state and t.to_state == to_state for t in VALID_TRANSITIONS
        )

    def validate_transition(self, context: TransitionContext) -> TransitionResult:
        transition = self.get_transition(context.current_state, context.event)
        if transition is None:
            return TransitionResult(
                success=False,
                from_state=context.current_state,
                error=f"Invalid transition: {context.current_state.value} + {context.event.value}",
            )
        if transition.requires_actor and not context.actor:
            return TransitionResult(
                success=False,
                from_state=context.current_state,
                error="An actor is required to freeze a financial year",
            )
        return TransitionResult(
            success=True,
            from_state=context.current_state,
            to_state=transition.to_state,
            transition=transition,
        )

    def execute_transition(self, context: TransitionContext) -> TransitionResult:
        """Validate a transition and run its callbacks."""
        result = self.validate_transition(context)
        if not result.success:
            logger.warning(
                f"Freeze transition refused for year {context.financial_year}: {result.error}"
            )
            return result

        for callback in self._callbacks.get(context.event, []):
            try:
                callback(context, result)
            except Exception as e:
                logger.error(f"Freeze transition callback error: {e}")

        logger.info(
            f"Financial year {context.financial_year} transitioned: "
            f"{context.current_state.value} -> {result.to_state.value} "
            f"(event: {context.event.value}, actor: {context.actor})"
        )
        return result

    def register_callback(
        self,
        event: FreezeEvent,
        callback: Callable[[TransitionContext, TransitionResult], None],
    ) -> None:
        self._callbacks.setdefault(event, []).append(callback)


def year_state(settings: list[FactorSettingData]) -> FreezeState:
    """A year is frozen only when it has settings and all of them are frozen."""
    if settings and all(s.is_frozen for s in settings):
        return FreezeState.FROZEN
    return FreezeState.OPEN


class FactorYearFreezer:
    """Freezes a financial year's factor settings."""

    def __init__(
        self,
        store: FactorSettingStore,
        state_machine: Optional[FreezeStateMachine] = None,
    ):
        self.store = store
        self.state_machine = state_machine or FreezeStateMachine()

    async def freeze_year(
        self,
        financial_year: int,
        actor: str,
        frozen_at: Optional[datetime] = None,
    ) -> list[FactorSettingData]:
        """
        Freeze every open setting of a financial year.

        Args:
            financial_year: Year to freeze
            actor: Who is freezing it
            frozen_at: Freeze timestamp, defaults to now

        Returns:
            The settings of the year after the freeze

        Raises:
            InvalidFreezeTransitionError: The year has no settings, is
                already frozen, or no actor was given
            ConcurrentFreezeError: A setting changed between read and swap
        """
        frozen_at = frozen_at or datetime.now(timezone.utc)
        settings = await self.store.list_factor_settings(financial_year)
        if not settings:
            raise InvalidFreezeTransitionError(
                f"Financial year {financial_year} has no factor settings to freeze",
                details={"financial_year": financial_year},
            )

        context = TransitionContext(
            financial_year=financial_year,
            current_state=year_state(settings),
            event=FreezeEvent.FREEZE,
            actor=actor,
            timestamp=frozen_at,
        )
        result = self.state_machine.validate_transition(context)
        if not result.success:
            raise InvalidFreezeTransitionError(
                result.error or "Invalid freeze transition",
                details={"financial_year": financial_year},
            )

        expected_versions: dict[UUID, int] = {s.id: s.version for s in settings if not s.is_frozen}
        try:
            count = await self.store.freeze_financial_year(
                financial_year, expected_versions, actor, frozen_at
            )
        except ConcurrentFreezeError:
            logger.warning(
                f"Freeze of financial year {financial_year} by {actor} lost a race; nothing was frozen"
            )
            raise

        self.state_machine.execute_transition(context)
        logger.info(f"Froze {count} factor setting(s) of financial year {financial_year}")
        return await self.store.list_factor_settings(financial_year)

    async def list_frozen_settings(self, financial_year: int) -> list[FactorSettingData]:
        settings = await self.store.list_factor_settings(financial_year)
        return [s for s in settings if s.is_frozen]

    async def get_year_state(self, financial_year: int) -> FreezeState:
        return year_state(await self.store.list_factor_settings(financial_year))
