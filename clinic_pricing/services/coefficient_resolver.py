"""
Coefficient Resolver.

Picks the factor setting in force for a component kind, hashtag class
and calculation date. Never defaults: a missing, ambiguous or frozen
setting is a data-integrity error.
"""

import logging
from datetime import datetime
from typing import Optional

from clinic_pricing.core.enums import CalculationMode, ServiceComponentType
from clinic_pricing.core.errors import AmbiguousOrMissingFactorError, FrozenYearError
from clinic_pricing.repositories.base import PricingDataSource
from clinic_pricing.schemas.pricing import FactorSettingData, ResolvedFactor

logger = logging.getLogger(__name__)


class CoefficientResolver:
    """Resolves technical and professional factor values."""

    def __init__(self, data_source: PricingDataSource):
        self.data_source = data_source

    async def resolve(
        self,
        kind: ServiceComponentType,
        hashtagged: bool,
        at: datetime,
        mode: CalculationMode = CalculationMode.NEW,
    ) -> ResolvedFactor:
        """
        Resolve the factor value for a component.

        Args:
            kind: Technical or professional
            hashtagged: Hashtag classification of the service
            at: Calculation date
            mode: NEW refuses frozen settings; HISTORICAL accepts them
                for dates before the freeze

        Returns:
            ResolvedFactor with the chosen setting's value

        Raises:
            AmbiguousOrMissingFactorError: No setting, or two settings with
                the same latest effective_from
            FrozenYearError: The chosen setting cannot back this calculation
        """
        candidates = await self.data_source.get_factor_settings(kind, hashtagged, at)
        setting = self.select(candidates, kind, hashtagged, at)
        self._check_freeze(setting, at, mode)

        logger.debug(
            f"Resolved {kind.value} factor (hashtagged={hashtagged}) at {at.isoformat()}: "
            f"{setting.value} from setting {setting.id} (year {setting.financial_year})"
        )

        return ResolvedFactor(
            setting_id=setting.id,
            factor_type=setting.factor_type,
            is_hashtagged=setting.is_hashtagged,
            value=setting.value,
            financial_year=setting.financial_year,
            effective_from=setting.effective_from,
            is_frozen=setting.is_frozen,
        )

    @staticmethod
    def select(
        candidates: list[FactorSettingData],
        kind: ServiceComponentType,
        hashtagged: bool,
        at: datetime,
    ) -> FactorSettingData:
        """Choose the unique in-force setting with the latest effective_from."""
        matching = [
            s
            for s in candidates
            if s.factor_type == kind
            and s.is_hashtagged == hashtagged
            and s.is_active
            and not s.is_deleted
            and s.contains(at)
        ]
        details = {"kind": kind.value, "hashtagged": hashtagged, "at": at.isoformat()}

        if not matching:
            raise AmbiguousOrMissingFactorError(
                f"No {kind.value} factor setting in force on {at.isoformat()} "
                f"(hashtagged={hashtagged})",
                details=details,
            )

        matching.sort(key=lambda s: s.effective_from, reverse=True)
        if len(matching) > 1 and matching[0].effective_from == matching[1].effective_from:
            raise AmbiguousOrMissingFactorError(
                f"Ambiguous {kind.value} factor settings in force on {at.isoformat()} "
                f"(hashtagged={hashtagged}): {matching[0].id}, {matching[1].id}",
                details={**details, "setting_ids": f"{matching[0].id},{matching[1].id}"},
            )
        return matching[0]

    @staticmethod
    def _check_freeze(setting: FactorSettingData, at: datetime, mode: CalculationMode) -> None:
        if not setting.is_frozen:
            return

        frozen_at: Optional[datetime] = setting.frozen_at
        if mode == CalculationMode.HISTORICAL and frozen_at is not None and at < frozen_at:
            return

        raise FrozenYearError(
            f"Financial year {setting.financial_year} is frozen; "
            f"setting {setting.id} cannot back a {mode.value} calculation dated {at.isoformat()}",
            details={
                "financial_year": setting.financial_year,
                "setting_id": setting.id,
                "frozen_at": frozen_at.isoformat() if frozen_at else None,
            },
        )
