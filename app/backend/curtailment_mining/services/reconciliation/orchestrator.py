"""
Reconciliation orchestrator: drives audit, repair and aggregation unit by unit.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence

import structlog

from curtailment_mining.core.config import settings as default_settings
from curtailment_mining.core.exceptions import CheckpointStoreError, InvalidMinerModel, ValidationError
from curtailment_mining.models import UnitStatus
from curtailment_mining.services.mining_calculator import MinerModel, resolve_miner_models
from curtailment_mining.services.sources.base import CurtailmentSource, DifficultySource
from curtailment_mining.services.sources.curtailment_source import StorageCurtailmentSource
from .aggregator import SummaryAggregator
from .auditor import InvariantAuditor, iter_dates
from .checkpoints import CheckpointStore
from .difficulty import DifficultyResolver
from .executor import BatchRepairExecutor
from .repositories import CalculationRepository, SummaryRepository
from .retry import RetryPolicy
from .throttle import AdaptiveThrottle
from .types import BacklogEntry, DateCompletion, ReconciliationResult, ReconciliationUnit, UnitReport


logger = structlog.get_logger(__name__)


def split_into_units(start_date: date, end_date: date) -> List[ReconciliationUnit]:
    """Calendar months clipped to [start_date, end_date], keyed YYYY-MM."""
    units = []
    current = start_date
    while current <= end_date:
        next_month = date(current.year + 1, 1, 1) if current.month == 12 else date(current.year, current.month + 1, 1)
        unit_end = min(end_date, date.fromordinal(next_month.toordinal() - 1))
        units.append(ReconciliationUnit(key=current.strftime("%Y-%m"), start_date=current, end_date=unit_end))
        current = next_month
    return units


@dataclass
class RunComponents:
    """State owned by a single run; never shared between runs."""
    resolver: DifficultyResolver
    throttle: AdaptiveThrottle
    auditor: InvariantAuditor
    executor: BatchRepairExecutor


class ReconciliationOrchestrator:
    """
    Reconciles a date range month by month.

    Each unit goes Pending -> InProgress -> Verified, PartiallyFixed or
    Failed, and its checkpoint is persisted after every pass so an
    interrupted run can be resumed. Cancellation is honoured between units
    and between passes, never inside one.
    """

    def __init__(
        self,
        source: Optional[CurtailmentSource] = None,
        difficulty_source: Optional[DifficultySource] = None,
        *,
        miner_models: Optional[Sequence] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        calculation_repository: Optional[CalculationRepository] = None,
        summary_repository: Optional[SummaryRepository] = None,
        config=None,
        cancel_event: Optional[asyncio.Event] = None,
        sleep=asyncio.sleep,
    ):
        self.logger = logger.bind(service="reconciliation_orchestrator")
        self.config = config or default_settings

        self.source = source or StorageCurtailmentSource()
        self.difficulty_source = difficulty_source
        self.miner_models: List[MinerModel] = resolve_miner_models(
            miner_models if miner_models is not None else self.config.miner_models
        )

        self.retry_policy = RetryPolicy.from_settings(self.config)
        self.checkpoint_store = checkpoint_store or CheckpointStore(self.retry_policy)
        self.calculation_repository = calculation_repository or CalculationRepository()
        self.aggregator = SummaryAggregator(summary_repository or SummaryRepository(), self.retry_policy)
        self.cancel_event = cancel_event or asyncio.Event()
        self._sleep = sleep

    def cancel(self):
        """Request a stop at the next unit boundary."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _build_components(self) -> RunComponents:
        resolver = DifficultyResolver(
            self.difficulty_source,
            self.retry_policy,
            default_difficulty=self.config.default_difficulty,
        )
        throttle = AdaptiveThrottle.from_settings(self.config, sleep=self._sleep)
        auditor = InvariantAuditor(
            self.source,
            self.miner_models,
            repository=self.calculation_repository,
            retry_policy=self.retry_policy,
            resolver=resolver,
        )
        executor = BatchRepairExecutor(
            self.source,
            resolver,
            repository=self.calculation_repository,
            throttle=throttle,
            retry_policy=self.retry_policy,
            chunk_size=self.config.chunk_size,
            halving_aware=self.config.halving_aware_block_reward,
        )
        return RunComponents(resolver=resolver, throttle=throttle, auditor=auditor, executor=executor)

    async def run(
        self,
        start_date: date,
        end_date: date,
        retry_failed: bool = False,
        check_difficulty: bool = False,
    ) -> ReconciliationResult:
        """Reconcile every unit overlapping [start_date, end_date]."""
        if start_date > end_date:
            raise ValidationError(
                "start_date must not be after end_date",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )

        units = split_into_units(start_date, end_date)
        self.logger.info(
            "🚀 Starting reconciliation run",
            start_date=str(start_date),
            end_date=str(end_date),
            units=len(units),
            miner_models=[m.value for m in self.miner_models],
        )

        for unit in units:
            await self.checkpoint_store.prepare(unit.key, unit.start_date, unit.end_date, retry_failed)

        return await self._process_units(units, retry_failed, check_difficulty)

    async def reconcile_date(self, settlement_date: date, check_difficulty: bool = False) -> ReconciliationResult:
        return await self.run(settlement_date, settlement_date, check_difficulty=check_difficulty)

    async def resume(self, check_difficulty: bool = False) -> ReconciliationResult:
        """Continue every unit left Pending, InProgress or PartiallyFixed."""
        checkpoints = await self.checkpoint_store.resumable()
        units = [
            ReconciliationUnit(key=c.unit_key, start_date=c.start_date, end_date=c.end_date)
            for c in checkpoints
        ]
        self.logger.info("🔄 Resuming reconciliation", units=[u.key for u in units])
        return await self._process_units(units, retry_failed=False, check_difficulty=check_difficulty)

    async def _process_units(
        self,
        units: Sequence[ReconciliationUnit],
        retry_failed: bool,
        check_difficulty: bool,
    ) -> ReconciliationResult:
        result = ReconciliationResult(start_time=datetime.now(timezone.utc))
        components = self._build_components()

        for unit in units:
            if self.cancelled:
                result.cancelled = True
                self.logger.warning("Reconciliation cancelled", next_unit=unit.key)
                break
            result.units.append(await self._process_unit(unit, components, retry_failed, check_difficulty))

        result.end_time = datetime.now(timezone.utc)
        self.logger.info(
            "✅ Reconciliation finished" if not result.cancelled else "Reconciliation stopped",
            units_processed=result.units_processed,
            repaired=result.repaired,
            failed=result.failed,
            still_missing=result.still_missing,
            duration_seconds=result.duration_seconds,
        )
        return result

    async def _process_unit(
        self,
        unit: ReconciliationUnit,
        components: RunComponents,
        retry_failed: bool,
        check_difficulty: bool,
    ) -> UnitReport:
        checkpoint = await self.checkpoint_store.get(unit.key)
        if checkpoint is None:
            checkpoint = await self.checkpoint_store.prepare(unit.key, unit.start_date, unit.end_date, retry_failed)

        report = UnitReport(
            unit_key=unit.key,
            start_date=unit.start_date,
            end_date=unit.end_date,
            status=UnitStatus(checkpoint.status),
            attempts=checkpoint.attempts,
        )

        if checkpoint.is_verified and checkpoint.covers(unit.start_date, unit.end_date):
            report.skipped = True
            self.logger.info("Unit already verified, skipping", unit=unit.key)
            return report
        if checkpoint.status == UnitStatus.FAILED.value and not retry_failed:
            report.skipped = True
            report.error = checkpoint.last_error
            self.logger.warning("Unit failed previously, skipping", unit=unit.key, attempts=checkpoint.attempts)
            return report

        passes = max(1, self.config.passes_per_unit)
        for pass_number in range(1, passes + 1):
            if pass_number > 1 and self.cancelled:
                break

            checkpoint = await self.checkpoint_store.mark_in_progress(unit.key)
            report.attempts = checkpoint.attempts
            self.logger.info("Auditing unit", unit=unit.key, attempt=checkpoint.attempts, pass_number=pass_number)

            try:
                open_entries = await self._run_pass(unit, components, check_difficulty, report)
            except InvalidMinerModel as e:
                await self.checkpoint_store.record_pass(unit.key, UnitStatus.PENDING, error=e.message)
                raise
            except CheckpointStoreError:
                raise
            except Exception as e:
                report.error = str(e)
                self.logger.error("❌ Unit pass failed", unit=unit.key, attempt=checkpoint.attempts, error=str(e))
                report.status = self._status_after_failure(checkpoint.attempts)
            else:
                if open_entries == 0:
                    report.status = UnitStatus.VERIFIED
                else:
                    report.status = self._status_after_failure(checkpoint.attempts)

            await self.checkpoint_store.record_pass(
                unit.key,
                report.status,
                expected=report.expected,
                missing=report.missing,
                repaired=report.repaired,
                failed=report.failed,
                still_missing=report.still_missing,
                error=report.error,
            )

            if report.status in (UnitStatus.VERIFIED, UnitStatus.FAILED):
                break

        return report

    def _status_after_failure(self, attempts: int) -> UnitStatus:
        if attempts >= self.config.max_unit_attempts:
            return UnitStatus.FAILED
        return UnitStatus.PARTIALLY_FIXED

    async def _run_pass(
        self,
        unit: ReconciliationUnit,
        components: RunComponents,
        check_difficulty: bool,
        report: UnitReport,
    ) -> int:
        """
        One audit -> repair -> aggregate -> audit cycle folded into ``report``.
        Returns the number of backlog entries still open afterwards.
        """
        report.error = None
        before = await components.auditor.audit_range(unit.start_date, unit.end_date, check_difficulty)
        report.expected = before.expected_records
        report.missing = before.missing_records

        repairs = await components.executor.repair_backlog(before.backlog)
        report.repaired = sum(r.repaired for r in repairs)
        report.failed = sum(r.failed for r in repairs)
        report.removed = sum(r.removed for r in repairs)

        errors = [error for r in repairs for error in r.errors]
        if errors:
            report.error = "; ".join(errors[:5])

        # Whole unit, so a refresh lost to an earlier failed pass is redone before Verified
        await self.aggregator.rebuild(unit.start_date, unit.end_date, self.miner_models)

        if not before.backlog:
            report.still_missing = 0
            return 0

        after = await components.auditor.audit_range(unit.start_date, unit.end_date, check_difficulty)
        report.still_missing = after.missing_records
        return len(after.backlog)

    async def audit(self, start_date: date, end_date: date, check_difficulty: bool = False) -> List[BacklogEntry]:
        """Read-only backlog for a range."""
        return await self._build_components().auditor.audit(start_date, end_date, check_difficulty)

    async def status_report(self, start_date: date, end_date: date) -> List[DateCompletion]:
        """Per-date completion percentages for the range."""
        auditor = self._build_components().auditor
        return [await auditor.completion(d) for d in iter_dates(start_date, end_date)]

    async def rebuild_summaries(self, start_date: date, end_date: date):
        if start_date > end_date:
            raise ValidationError(
                "start_date must not be after end_date",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )
        return await self.aggregator.rebuild(start_date, end_date, self.miner_models)
