"""
Repositories for the Clinic Pricing Engine.

Exports the collaborator interfaces and their in-memory and SQL
implementations.
"""

from clinic_pricing.repositories.base import (
    AuditEventSink,
    CalculationStore,
    FactorSettingStore,
    PricingDataSource,
)
from clinic_pricing.repositories.memory import InMemoryAuditSink, InMemoryPricingRepository
from clinic_pricing.repositories.sql import SqlAuditSink, SqlPricingRepository

__all__ = [
    "PricingDataSource",
    "CalculationStore",
    "FactorSettingStore",
    "AuditEventSink",
    "InMemoryPricingRepository",
    "InMemoryAuditSink",
    "SqlPricingRepository",
    "SqlAuditSink",
]
