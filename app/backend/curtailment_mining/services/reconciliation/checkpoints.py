"""
Checkpoint store for resumable reconciliation runs.
"""

from datetime import date
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from curtailment_mining.core import database
from curtailment_mining.core.exceptions import CheckpointStoreError
from curtailment_mining.models import ReconciliationCheckpoint, UnitStatus, RESUMABLE_STATUSES
from .retry import RetryPolicy, retry_async


logger = structlog.get_logger(__name__)


class CheckpointStore:
    """
    Persists per-unit reconciliation state.

    Every failure to read or write a checkpoint is raised as
    CheckpointStoreError once retries are exhausted; the orchestrator treats
    it as fatal.
    """

    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        self.logger = logger.bind(service="checkpoint_store")
        self.retry_policy = retry_policy or RetryPolicy()

    async def _call(self, operation, name: str):
        try:
            return await retry_async(operation, self.retry_policy, operation_name=name)
        except CheckpointStoreError:
            raise
        except (SQLAlchemyError, RuntimeError, OSError) as e:
            self.logger.error("❌ Checkpoint store unavailable", operation=name, error=str(e))
            raise CheckpointStoreError(f"Checkpoint {name} failed", details={"error": str(e)}) from e

    async def get(self, unit_key: str) -> Optional[ReconciliationCheckpoint]:
        async def load():
            async with database.get_async_session() as db:
                result = await db.execute(
                    select(ReconciliationCheckpoint).where(ReconciliationCheckpoint.unit_key == unit_key)
                )
                return result.scalar_one_or_none()

        return await self._call(load, "get")

    async def list(self, statuses: Optional[Sequence[UnitStatus]] = None) -> List[ReconciliationCheckpoint]:
        async def load():
            query = select(ReconciliationCheckpoint).order_by(ReconciliationCheckpoint.unit_key)
            if statuses:
                query = query.where(ReconciliationCheckpoint.status.in_([s.value for s in statuses]))
            async with database.get_async_session() as db:
                result = await db.execute(query)
                return list(result.scalars().all())

        return await self._call(load, "list")

    async def resumable(self) -> List[ReconciliationCheckpoint]:
        """Units left Pending, InProgress or PartiallyFixed, oldest first."""
        return await self.list(RESUMABLE_STATUSES)

    async def prepare(
        self,
        unit_key: str,
        start_date: date,
        end_date: date,
        retry_failed: bool = False,
    ) -> ReconciliationCheckpoint:
        """
        Create the unit as Pending if it is new. A Verified unit that does not
        cover the range, or a Failed unit when ``retry_failed`` is set, is
        reopened as Pending for the new range.
        """
        async def upsert():
            async with database.get_async_session() as db:
                result = await db.execute(
                    select(ReconciliationCheckpoint).where(ReconciliationCheckpoint.unit_key == unit_key)
                )
                checkpoint = result.scalar_one_or_none()

                if checkpoint is None:
                    checkpoint = ReconciliationCheckpoint(
                        unit_key=unit_key,
                        start_date=start_date,
                        end_date=end_date,
                        status=UnitStatus.PENDING.value,
                        attempts=0,
                    )
                    db.add(checkpoint)
                elif checkpoint.is_verified and not checkpoint.covers(start_date, end_date):
                    checkpoint.status = UnitStatus.PENDING.value
                    checkpoint.start_date = start_date
                    checkpoint.end_date = end_date
                    checkpoint.attempts = 0
                elif checkpoint.status == UnitStatus.FAILED.value and retry_failed:
                    checkpoint.status = UnitStatus.PENDING.value
                    checkpoint.start_date = start_date
                    checkpoint.end_date = end_date
                    checkpoint.attempts = 0
                    checkpoint.last_error = None
                elif checkpoint.is_resumable:
                    checkpoint.start_date = min(checkpoint.start_date, start_date)
                    checkpoint.end_date = max(checkpoint.end_date, end_date)

                await db.flush()
                return checkpoint

        return await self._call(upsert, "prepare")

    async def mark_in_progress(self, unit_key: str) -> ReconciliationCheckpoint:
        """Pending -> InProgress; counts one more pass."""
        async def update():
            async with database.get_async_session() as db:
                checkpoint = await self._load_for_update(db, unit_key)
                checkpoint.status = UnitStatus.IN_PROGRESS.value
                checkpoint.attempts = (checkpoint.attempts or 0) + 1
                checkpoint.started_at = database.utc_now()
                checkpoint.completed_at = None
                await db.flush()
                return checkpoint

        return await self._call(update, "mark_in_progress")

    async def record_pass(
        self,
        unit_key: str,
        status: UnitStatus,
        expected: int = 0,
        missing: int = 0,
        repaired: int = 0,
        failed: int = 0,
        still_missing: int = 0,
        error: Optional[str] = None,
    ) -> ReconciliationCheckpoint:
        """Persist the outcome of one audit/repair pass."""
        async def update():
            async with database.get_async_session() as db:
                checkpoint = await self._load_for_update(db, unit_key)
                checkpoint.status = status.value
                checkpoint.expected_records = expected
                checkpoint.missing_records = missing
                checkpoint.repaired_records = repaired
                checkpoint.failed_records = failed
                checkpoint.still_missing = still_missing
                checkpoint.last_error = error
                checkpoint.completed_at = database.utc_now()
                await db.flush()
                return checkpoint

        checkpoint = await self._call(update, "record_pass")
        self.logger.info(
            "Checkpoint updated",
            unit=unit_key,
            status=status.value,
            attempts=checkpoint.attempts,
            repaired=repaired,
            failed=failed,
            still_missing=still_missing,
        )
        return checkpoint

    async def reset(self, unit_key: Optional[str] = None) -> int:
        """Delete one unit's checkpoint, or all of them."""
        async def remove():
            async with database.get_async_session() as db:
                stmt = delete(ReconciliationCheckpoint)
                if unit_key is not None:
                    stmt = stmt.where(ReconciliationCheckpoint.unit_key == unit_key)
                result = await db.execute(stmt)
                return result.rowcount or 0

        removed = await self._call(remove, "reset")
        self.logger.warning("Checkpoints reset", unit=unit_key or "all", removed=removed)
        return removed

    @staticmethod
    async def _load_for_update(db, unit_key: str) -> ReconciliationCheckpoint:
        result = await db.execute(
            select(ReconciliationCheckpoint).where(ReconciliationCheckpoint.unit_key == unit_key)
        )
        checkpoint = result.scalar_one_or_none()
        if checkpoint is None:
            raise CheckpointStoreError(f"No checkpoint for unit {unit_key}")
        return checkpoint
