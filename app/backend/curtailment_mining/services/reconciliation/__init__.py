"""
Curtailment-to-mining reconciliation engine.
"""

from .aggregator import SummaryAggregator
from .auditor import InvariantAuditor
from .checkpoints import CheckpointStore
from .difficulty import DEFAULT_DIFFICULTY, DifficultyResolver
from .executor import BatchRepairExecutor
from .orchestrator import ReconciliationOrchestrator, split_into_units
from .retry import RetryPolicy, retry_async
from .throttle import AdaptiveThrottle
from .types import (
    AuditReport,
    BacklogEntry,
    CompletenessStatus,
    DateCompletion,
    DifficultyResolution,
    ReconciliationResult,
    RepairResult,
    UnitReport,
)

__all__ = [
    "SummaryAggregator",
    "InvariantAuditor",
    "CheckpointStore",
    "DEFAULT_DIFFICULTY",
    "DifficultyResolver",
    "BatchRepairExecutor",
    "ReconciliationOrchestrator",
    "split_into_units",
    "RetryPolicy",
    "retry_async",
    "AdaptiveThrottle",
    "AuditReport",
    "BacklogEntry",
    "CompletenessStatus",
    "DateCompletion",
    "DifficultyResolution",
    "ReconciliationResult",
    "RepairResult",
    "UnitReport",
]
