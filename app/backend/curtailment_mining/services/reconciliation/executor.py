"""
Batch repair executor: re-derives and upserts mining-potential records.
"""

import asyncio
from datetime import date
from decimal import Decimal
from functools import partial
from typing import Dict, List, Optional, Sequence

import structlog

from curtailment_mining.core.database import utc_now
from curtailment_mining.core.exceptions import FATAL_ERRORS
from curtailment_mining.services.mining_calculator import (
    CURRENT_BLOCK_REWARD,
    block_reward_for,
    compute_bitcoin_mined,
    get_miner_spec,
)
from curtailment_mining.services.sources.base import CurtailmentEvent, CurtailmentSource
from .difficulty import DifficultyResolver
from .inputs import merge_curtailment_events
from .repositories import CalculationRepository
from .retry import RetryPolicy, retry_async
from .throttle import AdaptiveThrottle
from .types import BacklogEntry, RepairResult


logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 100


def chunked(rows: Sequence, size: int):
    for index in range(0, len(rows), size):
        yield rows[index:index + size]


class BatchRepairExecutor:
    """
    Repairs backlog entries by re-deriving every record of a date/model.

    Records are written with upsert-on-key in chunks of ``chunk_size``; a
    failed chunk is counted, never raised, and the remaining chunks are
    still written. Keys that no longer match a valid event are deleted.
    Reads and writes each hold a throttle slot, so a failed write delays
    the next one by the throttle backoff.
    Only InvalidMinerModel and checkpoint errors escape.
    """

    def __init__(
        self,
        source: CurtailmentSource,
        resolver: DifficultyResolver,
        repository: Optional[CalculationRepository] = None,
        throttle: Optional[AdaptiveThrottle] = None,
        retry_policy: Optional[RetryPolicy] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        halving_aware: bool = True,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")

        self.logger = logger.bind(service="batch_repair_executor")
        self.source = source
        self.resolver = resolver
        self.repository = repository or CalculationRepository()
        self.throttle = throttle or AdaptiveThrottle()
        self.retry_policy = retry_policy or RetryPolicy()
        self.chunk_size = chunk_size
        self.halving_aware = halving_aware

    async def _fetch_events(self, settlement_date: date) -> List[CurtailmentEvent]:
        async with self.throttle.slot():
            return await retry_async(
                lambda: self.source.fetch_events(settlement_date),
                self.retry_policy,
                operation_name="fetch_events",
            )

    async def _prefetch(self, settlement_date: date) -> List[CurtailmentEvent]:
        events = await self._fetch_events(settlement_date)
        async with self.throttle.slot():
            await self.resolver.resolve(settlement_date)
        return events

    async def prefetch(self, dates: Sequence[date]) -> Dict[date, List[CurtailmentEvent]]:
        """
        Fetch events and warm the difficulty cache for several dates with
        bounded concurrency. Dates whose fetch failed are left out; their
        entries fetch again (and fail visibly) during repair.
        """
        results = await asyncio.gather(
            *[self._prefetch(d) for d in dates],
            return_exceptions=True,
        )

        prefetched: Dict[date, List[CurtailmentEvent]] = {}
        for settlement_date, result in zip(dates, results):
            if isinstance(result, FATAL_ERRORS):
                raise result
            if isinstance(result, BaseException):
                self.logger.warning("Prefetch failed", date=str(settlement_date), error=str(result))
                continue
            prefetched[settlement_date] = result
        return prefetched

    def _block_reward(self, settlement_date: date) -> float:
        return block_reward_for(settlement_date) if self.halving_aware else CURRENT_BLOCK_REWARD

    async def repair(self, entry: BacklogEntry, events: Optional[List[CurtailmentEvent]] = None) -> RepairResult:
        """Re-derive one date/model pair from scratch."""
        result = RepairResult(settlement_date=entry.settlement_date, miner_model=entry.miner_model)
        spec = get_miner_spec(entry.miner_model)

        try:
            if events is None:
                events = await self._fetch_events(entry.settlement_date)
            inputs = merge_curtailment_events(events)
            resolution = await self.resolver.resolve(entry.settlement_date)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            result.failed = entry.expected_count
            result.errors.append(f"input fetch failed: {e}")
            self.logger.error(
                "❌ Could not load inputs for repair",
                date=str(entry.settlement_date),
                miner_model=entry.miner_model.value,
                error=str(e),
            )
            self.throttle.record_failure()
            return result

        result.skipped_events = inputs.invalid_events
        result.from_default_difficulty = resolution.from_default

        reward = self._block_reward(entry.settlement_date)
        calculated_at = utc_now()
        difficulty = Decimal(str(resolution.difficulty))

        rows = [
            {
                "settlement_date": entry.settlement_date,
                "settlement_period": period,
                "farm_id": farm_id,
                "miner_model": spec.model.value,
                "bitcoin_mined": compute_bitcoin_mined(volume, spec, resolution.difficulty, reward),
                "difficulty": difficulty,
                "calculated_at": calculated_at,
            }
            for (period, farm_id), volume in sorted(inputs.volumes.items())
        ]

        for chunk_index, chunk in enumerate(chunked(rows, self.chunk_size)):
            try:
                async with self.throttle.slot():
                    await retry_async(
                        partial(self.repository.upsert_chunk, chunk),
                        self.retry_policy,
                        operation_name="upsert_calculations",
                    )
                result.repaired += len(chunk)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                result.failed += len(chunk)
                result.errors.append(f"chunk {chunk_index} failed: {e}")
                self.logger.error(
                    "❌ Chunk write failed",
                    date=str(entry.settlement_date),
                    miner_model=spec.model.value,
                    chunk=chunk_index,
                    rows=len(chunk),
                    error=str(e),
                )
                self.throttle.record_failure()

        try:
            async with self.throttle.slot():
                stored_keys = await retry_async(
                    lambda: self.repository.stored_keys(entry.settlement_date, spec.model.value),
                    self.retry_policy,
                    operation_name="read_calculations",
                )
            orphaned = stored_keys - inputs.keys
            if orphaned:
                async with self.throttle.slot():
                    result.removed = await retry_async(
                        lambda: self.repository.delete_keys(entry.settlement_date, spec.model.value, orphaned),
                        self.retry_policy,
                        operation_name="delete_orphans",
                    )
        except FATAL_ERRORS:
            raise
        except Exception as e:
            result.errors.append(f"orphan cleanup failed: {e}")
            self.logger.error(
                "Orphan cleanup failed",
                date=str(entry.settlement_date),
                miner_model=spec.model.value,
                error=str(e),
            )
            self.throttle.record_failure()

        if result.fully_successful:
            self.throttle.record_success()

        self.logger.info(
            "Backlog entry repaired" if result.fully_successful else "Backlog entry partially repaired",
            date=str(entry.settlement_date),
            miner_model=spec.model.value,
            repaired=result.repaired,
            failed=result.failed,
            removed=result.removed,
            skipped_events=result.skipped_events,
            from_default_difficulty=result.from_default_difficulty,
        )
        return result

    async def repair_backlog(self, backlog: Sequence[BacklogEntry]) -> List[RepairResult]:
        """Repair entries in backlog order; writes stay serialized per entry."""
        if not backlog:
            return []

        dates = sorted({entry.settlement_date for entry in backlog})
        prefetched = await self.prefetch(dates)

        results = []
        for entry in backlog:
            results.append(await self.repair(entry, events=prefetched.get(entry.settlement_date)))
        return results
