"""
Database models for the curtailment mining backend.

Contains SQLAlchemy models for source curtailment records, derived mining
potential, summary roll-ups and reconciliation checkpoints.
"""

from .curtailment import CurtailmentRecord
from .bitcoin import (
    HistoricalBitcoinCalculation,
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
)
from .reconciliation import ReconciliationCheckpoint, UnitStatus, RESUMABLE_STATUSES

__all__ = [
    "CurtailmentRecord",
    "HistoricalBitcoinCalculation",
    "BitcoinDailySummary",
    "BitcoinMonthlySummary",
    "BitcoinYearlySummary",
    "ReconciliationCheckpoint",
    "UnitStatus",
    "RESUMABLE_STATUSES",
]
