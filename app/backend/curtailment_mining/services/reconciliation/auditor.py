"""
Invariant auditor: compares curtailment events with derived records.
"""

import math
from datetime import date, timedelta
from typing import Iterator, List, Optional, Sequence, Tuple

import structlog

from curtailment_mining.services.mining_calculator import MinerModel
from curtailment_mining.services.sources.base import CurtailmentSource
from .difficulty import DifficultyResolver
from .inputs import DerivationInputs, merge_curtailment_events
from .repositories import CalculationRepository
from .retry import RetryPolicy, retry_async
from .types import AuditReport, BacklogEntry, CompletenessStatus, DateCompletion


logger = structlog.get_logger(__name__)


def iter_dates(start_date: date, end_date: date) -> Iterator[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


class InvariantAuditor:
    """
    Read-only check of the one-record-per-event-per-model invariant.

    For each date and model the expected keys are the distinct
    (period, farm) pairs with a valid nonzero curtailed volume. A pair is
    Complete when the stored keys match exactly; otherwise it enters the
    backlog as Missing (nothing stored), Partial (some keys absent) or
    Stale (no keys absent but orphaned or, when requested, outdated
    difficulty records present).
    """

    def __init__(
        self,
        source: CurtailmentSource,
        miner_models: Sequence[MinerModel],
        repository: Optional[CalculationRepository] = None,
        retry_policy: Optional[RetryPolicy] = None,
        resolver: Optional[DifficultyResolver] = None,
    ):
        self.logger = logger.bind(service="invariant_auditor")
        self.source = source
        self.miner_models = list(miner_models)
        self.repository = repository or CalculationRepository()
        self.retry_policy = retry_policy or RetryPolicy()
        self.resolver = resolver

    async def expected_inputs(self, settlement_date: date) -> DerivationInputs:
        events = await retry_async(
            lambda: self.source.fetch_events(settlement_date),
            self.retry_policy,
            operation_name="fetch_events",
        )
        return merge_curtailment_events(events)

    async def audit_date(self, settlement_date: date, check_difficulty: bool = False) -> List[BacklogEntry]:
        backlog, _ = await self._audit_date(settlement_date, check_difficulty)
        return backlog

    async def _audit_date(self, settlement_date: date, check_difficulty: bool) -> Tuple[List[BacklogEntry], int]:
        inputs = await self.expected_inputs(settlement_date)
        stored = await retry_async(
            lambda: self.repository.stored_records(settlement_date),
            self.retry_policy,
            operation_name="read_calculations",
        )

        resolved_difficulty = None
        if check_difficulty and self.resolver is not None and stored:
            resolution = await self.resolver.resolve(settlement_date)
            # A default says nothing about what the stored value should be
            if not resolution.from_default:
                resolved_difficulty = resolution.difficulty

        expected_keys = inputs.keys
        backlog: List[BacklogEntry] = []

        for model in self.miner_models:
            records = stored.get(model.value, {})
            stored_keys = set(records)

            valid_keys = stored_keys & expected_keys
            missing_keys = expected_keys - stored_keys
            orphaned_keys = stored_keys - expected_keys
            stale_difficulty = 0
            if resolved_difficulty is not None:
                stale_difficulty = len([
                    key for key in valid_keys
                    if not math.isclose(float(records[key]), resolved_difficulty, rel_tol=1e-12)
                ])

            if not missing_keys and not orphaned_keys and not stale_difficulty:
                continue

            # Orphans do not count towards completeness
            if missing_keys and not valid_keys:
                status = CompletenessStatus.MISSING
            elif missing_keys:
                status = CompletenessStatus.PARTIAL
            else:
                status = CompletenessStatus.STALE

            backlog.append(BacklogEntry(
                settlement_date=settlement_date,
                miner_model=model,
                expected_count=len(expected_keys),
                actual_count=len(valid_keys),
                missing_periods=sorted({period for period, _ in missing_keys}),
                missing_count=len(missing_keys),
                status=status,
                orphaned_count=len(orphaned_keys),
                stale_difficulty_count=stale_difficulty,
            ))

        return backlog, len(expected_keys) * len(self.miner_models)

    async def audit(self, start_date: date, end_date: date, check_difficulty: bool = False) -> List[BacklogEntry]:
        """Backlog for the range, oldest date first, models in configured order."""
        report = await self.audit_range(start_date, end_date, check_difficulty)
        return report.backlog

    async def audit_range(self, start_date: date, end_date: date, check_difficulty: bool = False) -> AuditReport:
        report = AuditReport()
        for settlement_date in iter_dates(start_date, end_date):
            backlog, expected = await self._audit_date(settlement_date, check_difficulty)
            report.backlog.extend(backlog)
            report.expected_records += expected

        backlog = report.backlog
        self.logger.info(
            "Audit completed",
            start_date=str(start_date),
            end_date=str(end_date),
            expected_records=report.expected_records,
            backlog_size=len(backlog),
            missing=len([e for e in backlog if e.status == CompletenessStatus.MISSING]),
            partial=len([e for e in backlog if e.status == CompletenessStatus.PARTIAL]),
            stale=len([e for e in backlog if e.status == CompletenessStatus.STALE]),
        )
        return report

    async def completion(self, settlement_date: date) -> DateCompletion:
        inputs = await self.expected_inputs(settlement_date)
        stored = await retry_async(
            lambda: self.repository.stored_records(settlement_date),
            self.retry_policy,
            operation_name="read_calculations",
        )
        expected_keys = inputs.keys
        return DateCompletion(
            settlement_date=settlement_date,
            expected_per_model=len(expected_keys),
            records_by_model={
                model.value: len(set(stored.get(model.value, {})) & expected_keys)
                for model in self.miner_models
            },
            invalid_events=inputs.invalid_events,
        )
