"""
Types for reconciliation processing.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from curtailment_mining.models.reconciliation import UnitStatus
from curtailment_mining.services.mining_calculator import MinerModel


class CompletenessStatus(Enum):
    """Audit classification of one date/model pair."""
    COMPLETE = "complete"
    PARTIAL = "partial"
    MISSING = "missing"
    STALE = "stale"


@dataclass(frozen=True)
class DifficultyResolution:
    difficulty: float
    from_default: bool


@dataclass
class BacklogEntry:
    """A date/model pair that violates the one-record-per-event invariant."""
    settlement_date: date
    miner_model: MinerModel
    expected_count: int
    actual_count: int
    missing_periods: List[int] = field(default_factory=list)
    status: CompletenessStatus = CompletenessStatus.MISSING
    missing_count: int = 0
    orphaned_count: int = 0
    stale_difficulty_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "miner_model": self.miner_model.value,
            "expected_count": self.expected_count,
            "actual_count": self.actual_count,
            "missing_periods": list(self.missing_periods),
            "status": self.status.value,
            "missing_count": self.missing_count,
            "orphaned_count": self.orphaned_count,
            "stale_difficulty_count": self.stale_difficulty_count,
        }


@dataclass
class AuditReport:
    """Backlog of a range plus the number of records the range should hold."""
    backlog: List[BacklogEntry] = field(default_factory=list)
    expected_records: int = 0

    @property
    def missing_records(self) -> int:
        return sum(entry.missing_count for entry in self.backlog)


@dataclass
class RepairResult:
    """Outcome of re-deriving one backlog entry."""
    settlement_date: date
    miner_model: MinerModel
    repaired: int = 0
    failed: int = 0
    removed: int = 0
    skipped_events: int = 0
    from_default_difficulty: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def fully_successful(self) -> bool:
        return self.failed == 0 and not self.errors

    @property
    def changed(self) -> bool:
        return self.repaired > 0 or self.removed > 0


@dataclass
class ReconciliationUnit:
    """One calendar month, clipped to the requested range."""
    key: str
    start_date: date
    end_date: date


@dataclass
class UnitReport:
    unit_key: str
    start_date: date
    end_date: date
    status: UnitStatus
    attempts: int = 0
    expected: int = 0
    missing: int = 0
    repaired: int = 0
    failed: int = 0
    removed: int = 0
    still_missing: int = 0
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit_key,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "attempts": self.attempts,
            "expected": self.expected,
            "missing": self.missing,
            "repaired": self.repaired,
            "failed": self.failed,
            "removed": self.removed,
            "still_missing": self.still_missing,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class ReconciliationResult:
    """Structured report of one orchestrator invocation."""
    units: List[UnitReport] = field(default_factory=list)
    cancelled: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def units_processed(self) -> int:
        return len([u for u in self.units if not u.skipped])

    @property
    def repaired(self) -> int:
        return sum(u.repaired for u in self.units)

    @property
    def failed(self) -> int:
        return sum(u.failed for u in self.units)

    @property
    def still_missing(self) -> int:
        return sum(u.still_missing for u in self.units)

    @property
    def duration_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "units_processed": self.units_processed,
            "repaired": self.repaired,
            "failed": self.failed,
            "still_missing": self.still_missing,
            "cancelled": self.cancelled,
            "duration_seconds": self.duration_seconds,
            "units": [u.to_dict() for u in self.units],
        }


@dataclass
class DateCompletion:
    """Per-date completion figures for the status report."""
    settlement_date: date
    expected_per_model: int
    records_by_model: Dict[str, int] = field(default_factory=dict)
    invalid_events: int = 0

    @property
    def completion_percent(self) -> float:
        if self.expected_per_model == 0:
            return 100.0
        total_expected = self.expected_per_model * len(self.records_by_model)
        if total_expected == 0:
            return 100.0
        present = sum(min(count, self.expected_per_model) for count in self.records_by_model.values())
        return round(present / total_expected * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "expected_per_model": self.expected_per_model,
            "records_by_model": dict(self.records_by_model),
            "invalid_events": self.invalid_events,
            "completion_percent": self.completion_percent,
        }
