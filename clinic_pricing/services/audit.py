"""
Audit Event Sinks.

Calculation outcomes are written to the log; the SQL sink in
repositories.sql additionally stores them as CalculationAuditEvent rows.
"""

from typing import Any, Optional
from uuid import UUID

from clinic_pricing.utils.logging import get_logger

logger = get_logger(__name__)


class LoggingAuditSink:
    """Emits audit events as structured log records."""

    async def emit(
        self,
        calculation_id: Optional[UUID],
        outcome: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        logger.bind(
            audit=True,
            calculation_id=str(calculation_id) if calculation_id else None,
            outcome=outcome,
        ).info(f"Calculation audit event: {outcome} {calculation_id or ''}".rstrip())
        if details:
            logger.bind(audit=True).debug(f"Audit details: {details}")


class CompositeAuditSink:
    """Fans an event out to several sinks in order."""

    def __init__(self, *sinks: Any):
        self.sinks = list(sinks)

    async def emit(
        self,
        calculation_id: Optional[UUID],
        outcome: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        for sink in self.sinks:
            await sink.emit(calculation_id, outcome, details)
