"""
Daily look-back reconciliation scheduler.

Once a day, at the configured UTC hour, reconciles the last
``reconciliation_look_back_days`` days so upstream backfills are picked up
without operator action.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from curtailment_mining.core.config import settings
from curtailment_mining.services.reconciliation import ReconciliationResult
from curtailment_mining.services.reconciliation_service import reconciliation_orchestrator


logger = structlog.get_logger(__name__)

CHECK_INTERVAL_SECONDS = 60
ERROR_PAUSE_SECONDS = 300


class SchedulerStatus(Enum):
    STOPPED = "stopped"
    WAITING = "waiting"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass
class SchedulerStats:
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_result: Optional[ReconciliationResult] = None


async def _default_runner(start_date: date, end_date: date, cancel_event: asyncio.Event) -> ReconciliationResult:
    async with reconciliation_orchestrator(cancel_event=cancel_event) as orchestrator:
        return await orchestrator.run(start_date, end_date)


class ReconciliationScheduler:
    """Runs the look-back reconciliation once per day."""

    def __init__(
        self,
        runner: Optional[Callable[[date, date, asyncio.Event], Awaitable[ReconciliationResult]]] = None,
        config=None,
    ):
        self.logger = logger.bind(service="reconciliation_scheduler")
        config = config or settings

        self.enabled = config.scheduler_enabled
        self.utc_hour = config.reconciliation_utc_hour
        self.look_back_days = config.reconciliation_look_back_days
        self._runner = runner or _default_runner

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats()
        self._cancel_event = asyncio.Event()
        self._scheduler_task: Optional[asyncio.Task] = None

        self.logger.info(
            "Reconciliation scheduler initialized",
            enabled=self.enabled,
            utc_hour=self.utc_hour,
            look_back_days=self.look_back_days,
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def calculate_next_run_time(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        next_run = now.replace(hour=self.utc_hour, minute=0, second=0, microsecond=0)
        if next_run <= now:
            next_run += timedelta(days=1)
        return next_run

    def should_run(self, now: Optional[datetime] = None) -> bool:
        """True inside the first half hour of the target hour, once per day."""
        now = now or datetime.now(timezone.utc)
        if now.hour != self.utc_hour or now.minute >= 30:
            return False
        if self.stats.last_run is None:
            return True
        return self.stats.last_run.date() < now.date()

    def look_back_range(self, today: Optional[date] = None):
        """The last N full days, ending yesterday."""
        today = today or datetime.now(timezone.utc).date()
        end_date = today - timedelta(days=1)
        start_date = today - timedelta(days=max(1, self.look_back_days))
        return start_date, end_date

    async def start(self):
        if not self.enabled:
            self.logger.info("Reconciliation scheduler is disabled")
            return

        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self._cancel_event.clear()
        self.status = SchedulerStatus.WAITING
        self.stats.next_run = self.calculate_next_run_time()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        self.logger.info("Reconciliation scheduler started", next_run=self.stats.next_run.isoformat())

    async def stop(self):
        if self.status == SchedulerStatus.STOPPED:
            return

        self.logger.info("Stopping reconciliation scheduler")
        # Lets a running reconciliation finish its current unit
        self._cancel_event.set()

        if self._scheduler_task and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass

        self.status = SchedulerStatus.STOPPED
        self.logger.info("Reconciliation scheduler stopped")

    async def _scheduler_loop(self):
        while not self._cancel_event.is_set():
            try:
                if self.should_run():
                    await self.run_once()
                self.stats.next_run = self.calculate_next_run_time()
                await asyncio.sleep(CHECK_INTERVAL_SECONDS)

            except asyncio.CancelledError:
                self.logger.info("Scheduler loop cancelled")
                break

            except Exception as e:
                self.logger.error("Error in scheduler loop", error=str(e))
                self.status = SchedulerStatus.ERROR
                await asyncio.sleep(ERROR_PAUSE_SECONDS)
                self.status = SchedulerStatus.WAITING

    async def run_once(self, today: Optional[date] = None) -> Optional[ReconciliationResult]:
        """Reconcile the look-back window now."""
        start_date, end_date = self.look_back_range(today)
        self.status = SchedulerStatus.PROCESSING
        self.stats.total_runs += 1
        self.logger.info("⏰ Scheduled reconciliation started", start_date=str(start_date), end_date=str(end_date))

        try:
            result = await self._runner(start_date, end_date, self._cancel_event)
        except Exception as e:
            self.stats.failed_runs += 1
            self.status = SchedulerStatus.ERROR
            self.logger.error(
                "Scheduled reconciliation failed",
                error=str(e),
                total_runs=self.stats.total_runs,
                failed_runs=self.stats.failed_runs,
            )
            raise

        self.stats.last_run = datetime.now(timezone.utc)
        self.stats.last_result = result
        self.stats.successful_runs += 1
        self.status = SchedulerStatus.WAITING

        if result.failed or result.still_missing:
            self.logger.warning(
                "Scheduled reconciliation left work behind - manual review needed",
                failed=result.failed,
                still_missing=result.still_missing,
            )
        return result

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "status": self.status.value,
            "utc_hour": self.utc_hour,
            "look_back_days": self.look_back_days,
            "last_run": self.stats.last_run.isoformat() if self.stats.last_run else None,
            "next_run": self.stats.next_run.isoformat() if self.stats.next_run else None,
            "total_runs": self.stats.total_runs,
            "successful_runs": self.stats.successful_runs,
            "failed_runs": self.stats.failed_runs,
            "last_result": self.stats.last_result.to_dict() if self.stats.last_result else None,
        }
