"""
Reconciliation checkpoint model for resumable multi-unit runs.
"""

from enum import Enum

from sqlalchemy import Column, Integer, String, Date, DateTime, Text, Index

from curtailment_mining.core.database import Base, utc_now


class UnitStatus(str, Enum):
    """Lifecycle of one reconciliation unit (a calendar month)."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"
    PARTIALLY_FIXED = "partially_fixed"
    FAILED = "failed"


RESUMABLE_STATUSES = (UnitStatus.PENDING, UnitStatus.IN_PROGRESS, UnitStatus.PARTIALLY_FIXED)


class ReconciliationCheckpoint(Base):
    """
    Tracks reconciliation progress for one unit so long jobs can resume after a crash.
    """
    __tablename__ = "reconciliation_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)

    unit_key = Column(String(16), nullable=False, unique=True, comment="Unit identifier, YYYY-MM")
    start_date = Column(Date, nullable=False, comment="First date covered by the last audit of this unit")
    end_date = Column(Date, nullable=False, comment="Last date covered by the last audit of this unit")

    status = Column(String(20), nullable=False, default=UnitStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0, comment="Audit/repair passes made so far")

    # Statistics from the most recent pass
    expected_records = Column(Integer, nullable=False, default=0, comment="Expected derived records")
    missing_records = Column(Integer, nullable=False, default=0, comment="Missing records found by the pre-repair audit")
    repaired_records = Column(Integer, nullable=False, default=0, comment="Records written by repair")
    failed_records = Column(Integer, nullable=False, default=0, comment="Records whose write failed")
    still_missing = Column(Integer, nullable=False, default=0, comment="Missing records after repair")

    last_error = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True, comment="When the last pass started")
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="When the last pass finished")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<ReconciliationCheckpoint(unit={self.unit_key}, status={self.status}, attempts={self.attempts})>"

    @property
    def is_verified(self) -> bool:
        return self.status == UnitStatus.VERIFIED.value

    @property
    def is_resumable(self) -> bool:
        return self.status in [s.value for s in RESUMABLE_STATUSES]

    def covers(self, start_date, end_date) -> bool:
        """Whether the recorded audit range contains [start_date, end_date]."""
        return self.start_date <= start_date and self.end_date >= end_date


Index("idx_reconciliation_checkpoints_status", ReconciliationCheckpoint.status)
