"""
Summary aggregator: daily, monthly and yearly roll-ups of derived records.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional, Sequence, Set, Tuple

import structlog

from curtailment_mining.services.mining_calculator import MinerModel
from .auditor import iter_dates
from .repositories import SummaryRepository
from .retry import RetryPolicy, retry_async


logger = structlog.get_logger(__name__)


def month_bounds(year_month: str) -> Tuple[date, date]:
    year, month = (int(part) for part in year_month.split("-"))
    first_day = date(year, month, 1)
    next_month = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return first_day, date.fromordinal(next_month.toordinal() - 1)


def _model_name(miner_model) -> str:
    return miner_model.value if isinstance(miner_model, MinerModel) else str(miner_model)


class SummaryAggregator:
    """
    Recomputes summaries purely from the layer directly below.

    A summary whose inputs are gone is deleted rather than written as zero.
    """

    def __init__(
        self,
        repository: Optional[SummaryRepository] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.logger = logger.bind(service="summary_aggregator")
        self.repository = repository or SummaryRepository()
        self.retry_policy = retry_policy or RetryPolicy()

    async def _retry(self, operation, name: str):
        return await retry_async(operation, self.retry_policy, operation_name=name)

    async def refresh(self, summary_date: date, miner_model) -> Optional[Decimal]:
        model = _model_name(miner_model)
        total = await self._retry(lambda: self.repository.sum_calculations(summary_date, model), "sum_calculations")
        await self._retry(lambda: self.repository.replace_daily(summary_date, model, total), "replace_daily")
        self.logger.debug("Daily summary refreshed", date=str(summary_date), miner_model=model, bitcoin_mined=str(total))
        return total

    async def refresh_month(self, year_month: str, miner_model) -> Optional[Decimal]:
        model = _model_name(miner_model)
        first_day, last_day = month_bounds(year_month)
        total = await self._retry(lambda: self.repository.sum_daily(first_day, last_day, model), "sum_daily")
        await self._retry(lambda: self.repository.replace_monthly(year_month, model, total), "replace_monthly")
        self.logger.debug("Monthly summary refreshed", year_month=year_month, miner_model=model, bitcoin_mined=str(total))
        return total

    async def refresh_year(self, year: str, miner_model) -> Optional[Decimal]:
        model = _model_name(miner_model)
        total = await self._retry(lambda: self.repository.sum_monthly(year, model), "sum_monthly")
        await self._retry(lambda: self.repository.replace_yearly(year, model, total), "replace_yearly")
        self.logger.debug("Yearly summary refreshed", year=year, miner_model=model, bitcoin_mined=str(total))
        return total

    async def refresh_touched(self, touched: Iterable[Tuple[date, object]]) -> Dict[str, int]:
        """Refresh days, then their months, then their years."""
        days: Set[Tuple[date, str]] = {(d, _model_name(m)) for d, m in touched}
        months = sorted({(d.strftime("%Y-%m"), m) for d, m in days})
        years = sorted({(ym[:4], m) for ym, m in months})

        for summary_date, model in sorted(days):
            await self.refresh(summary_date, model)
        for year_month, model in months:
            await self.refresh_month(year_month, model)
        for year, model in years:
            await self.refresh_year(year, model)

        counts = {"days": len(days), "months": len(months), "years": len(years)}
        if days:
            self.logger.info("Summaries refreshed", **counts)
        return counts

    async def rebuild(self, start_date: date, end_date: date, miner_models: Sequence[MinerModel]) -> Dict[str, int]:
        """Recompute every summary touching [start_date, end_date]."""
        touched = [(d, model) for d in iter_dates(start_date, end_date) for model in miner_models]
        self.logger.info("🔄 Rebuilding summaries", start_date=str(start_date), end_date=str(end_date))
        return await self.refresh_touched(touched)
