"""
Repositories for derived mining-potential records and their summaries.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import structlog
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from curtailment_mining.core import database
from curtailment_mining.core.exceptions import DatabaseError, StorageConflictError
from curtailment_mining.models import (
    HistoricalBitcoinCalculation,
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
)
from curtailment_mining.services.mining_calculator import SATOSHI
from .inputs import DerivationKey


logger = structlog.get_logger(__name__)

CALCULATION_KEY = ("settlement_date", "settlement_period", "farm_id", "miner_model")


def _raise_storage_error(action: str, error: SQLAlchemyError):
    """Map driver errors onto the engine's taxonomy."""
    if isinstance(error, IntegrityError):
        raise StorageConflictError(f"Write conflict while {action}", details={"error": str(error)}) from error
    if isinstance(error, OperationalError):
        # Retryable as is
        raise error
    raise DatabaseError(f"Database error while {action}", details={"error": str(error)}) from error


class CalculationRepository:
    """
    Reads and writes ``historical_bitcoin_calculations``.

    Writes are upserts on the four-part key so re-deriving a record is
    idempotent.
    """

    def __init__(self):
        self.logger = logger.bind(service="calculation_repository")

    async def stored_records(self, settlement_date: date) -> Dict[str, Dict[DerivationKey, Decimal]]:
        """Stored (period, farm) -> difficulty, grouped by miner model."""
        try:
            async with database.get_async_session() as db:
                result = await db.execute(
                    select(
                        HistoricalBitcoinCalculation.miner_model,
                        HistoricalBitcoinCalculation.settlement_period,
                        HistoricalBitcoinCalculation.farm_id,
                        HistoricalBitcoinCalculation.difficulty,
                    ).where(HistoricalBitcoinCalculation.settlement_date == settlement_date)
                )
                rows = result.all()
        except SQLAlchemyError as e:
            _raise_storage_error("reading calculations", e)

        records: Dict[str, Dict[DerivationKey, Decimal]] = {}
        for model, period, farm_id, difficulty in rows:
            records.setdefault(model, {})[(period, farm_id)] = difficulty
        return records

    async def stored_keys(self, settlement_date: date, miner_model: str) -> Set[DerivationKey]:
        records = await self.stored_records(settlement_date)
        return set(records.get(miner_model, {}))

    async def count_by_model(self, settlement_date: date) -> Dict[str, int]:
        try:
            async with database.get_async_session() as db:
                result = await db.execute(
                    select(HistoricalBitcoinCalculation.miner_model, func.count())
                    .where(HistoricalBitcoinCalculation.settlement_date == settlement_date)
                    .group_by(HistoricalBitcoinCalculation.miner_model)
                )
                return {model: count for model, count in result.all()}
        except SQLAlchemyError as e:
            _raise_storage_error("counting calculations", e)

    async def upsert_chunk(self, rows: Sequence[Dict[str, Any]]) -> int:
        """Insert or overwrite one chunk of records in a single transaction."""
        if not rows:
            return 0

        try:
            async with database.get_async_session() as db:
                stmt = database.dialect_insert(HistoricalBitcoinCalculation).values(list(rows))
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(CALCULATION_KEY),
                    set_={
                        "bitcoin_mined": stmt.excluded.bitcoin_mined,
                        "difficulty": stmt.excluded.difficulty,
                        "calculated_at": stmt.excluded.calculated_at,
                    },
                )
                await db.execute(stmt)
        except SQLAlchemyError as e:
            _raise_storage_error("upserting calculations", e)

        return len(rows)

    async def delete_keys(self, settlement_date: date, miner_model: str, keys: Iterable[DerivationKey]) -> int:
        """Delete records whose key no longer matches a valid curtailment event."""
        keys = list(keys)
        if not keys:
            return 0

        try:
            async with database.get_async_session() as db:
                result = await db.execute(
                    delete(HistoricalBitcoinCalculation).where(
                        HistoricalBitcoinCalculation.settlement_date == settlement_date,
                        HistoricalBitcoinCalculation.miner_model == miner_model,
                        or_(*[
                            and_(
                                HistoricalBitcoinCalculation.settlement_period == period,
                                HistoricalBitcoinCalculation.farm_id == farm_id,
                            )
                            for period, farm_id in keys
                        ]),
                    )
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            _raise_storage_error("deleting orphaned calculations", e)

    async def get_records(self, settlement_date: date, miner_model: Optional[str] = None) -> List[HistoricalBitcoinCalculation]:
        query = select(HistoricalBitcoinCalculation).where(
            HistoricalBitcoinCalculation.settlement_date == settlement_date
        )
        if miner_model is not None:
            query = query.where(HistoricalBitcoinCalculation.miner_model == miner_model)
        query = query.order_by(
            HistoricalBitcoinCalculation.miner_model,
            HistoricalBitcoinCalculation.settlement_period,
            HistoricalBitcoinCalculation.farm_id,
        )

        async with database.get_async_session() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def dates_with_records(self, start_date: date, end_date: date) -> List[date]:
        async with database.get_async_session() as db:
            result = await db.execute(
                select(HistoricalBitcoinCalculation.settlement_date)
                .where(HistoricalBitcoinCalculation.settlement_date.between(start_date, end_date))
                .distinct()
                .order_by(HistoricalBitcoinCalculation.settlement_date)
            )
            return [row[0] for row in result.all()]


def _quantize(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(value).quantize(SATOSHI)


class SummaryRepository:
    """Reads the layer below and replaces daily, monthly and yearly summary rows."""

    def __init__(self):
        self.logger = logger.bind(service="summary_repository")

    async def _scalar(self, query):
        try:
            async with database.get_async_session() as db:
                result = await db.execute(query)
                return result.scalar()
        except SQLAlchemyError as e:
            _raise_storage_error("reading summaries", e)

    async def _upsert(self, model, values: Dict[str, Any], key: Tuple[str, ...]):
        try:
            async with database.get_async_session() as db:
                stmt = database.dialect_insert(model).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(key),
                    set_={
                        "bitcoin_mined": stmt.excluded.bitcoin_mined,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await db.execute(stmt)
        except SQLAlchemyError as e:
            _raise_storage_error(f"writing {model.__tablename__}", e)

    async def _delete(self, model, *criteria):
        try:
            async with database.get_async_session() as db:
                await db.execute(delete(model).where(*criteria))
        except SQLAlchemyError as e:
            _raise_storage_error(f"deleting from {model.__tablename__}", e)

    # Sums of the layer below; None when that layer has no rows

    async def sum_calculations(self, settlement_date: date, miner_model: str) -> Optional[Decimal]:
        return _quantize(await self._scalar(
            select(func.sum(HistoricalBitcoinCalculation.bitcoin_mined)).where(
                HistoricalBitcoinCalculation.settlement_date == settlement_date,
                HistoricalBitcoinCalculation.miner_model == miner_model,
            )
        ))

    async def sum_daily(self, first_day: date, last_day: date, miner_model: str) -> Optional[Decimal]:
        return _quantize(await self._scalar(
            select(func.sum(BitcoinDailySummary.bitcoin_mined)).where(
                BitcoinDailySummary.summary_date.between(first_day, last_day),
                BitcoinDailySummary.miner_model == miner_model,
            )
        ))

    async def sum_monthly(self, year: str, miner_model: str) -> Optional[Decimal]:
        return _quantize(await self._scalar(
            select(func.sum(BitcoinMonthlySummary.bitcoin_mined)).where(
                BitcoinMonthlySummary.year_month.between(f"{year}-01", f"{year}-12"),
                BitcoinMonthlySummary.miner_model == miner_model,
            )
        ))

    # Replacement writes

    async def replace_daily(self, summary_date: date, miner_model: str, total: Optional[Decimal]):
        if total is None:
            await self._delete(
                BitcoinDailySummary,
                BitcoinDailySummary.summary_date == summary_date,
                BitcoinDailySummary.miner_model == miner_model,
            )
            return
        await self._upsert(
            BitcoinDailySummary,
            {"summary_date": summary_date, "miner_model": miner_model, "bitcoin_mined": total,
             "updated_at": database.utc_now()},
            ("summary_date", "miner_model"),
        )

    async def replace_monthly(self, year_month: str, miner_model: str, total: Optional[Decimal]):
        if total is None:
            await self._delete(
                BitcoinMonthlySummary,
                BitcoinMonthlySummary.year_month == year_month,
                BitcoinMonthlySummary.miner_model == miner_model,
            )
            return
        await self._upsert(
            BitcoinMonthlySummary,
            {"year_month": year_month, "miner_model": miner_model, "bitcoin_mined": total,
             "updated_at": database.utc_now()},
            ("year_month", "miner_model"),
        )

    async def replace_yearly(self, year: str, miner_model: str, total: Optional[Decimal]):
        if total is None:
            await self._delete(
                BitcoinYearlySummary,
                BitcoinYearlySummary.year == year,
                BitcoinYearlySummary.miner_model == miner_model,
            )
            return
        await self._upsert(
            BitcoinYearlySummary,
            {"year": year, "miner_model": miner_model, "bitcoin_mined": total, "updated_at": database.utc_now()},
            ("year", "miner_model"),
        )

    # Reads for reporting

    async def get_daily(self, summary_date: date, miner_model: str) -> Optional[Decimal]:
        return _quantize(await self._scalar(
            select(BitcoinDailySummary.bitcoin_mined).where(
                BitcoinDailySummary.summary_date == summary_date,
                BitcoinDailySummary.miner_model == miner_model,
            )
        ))

    async def get_monthly(self, year_month: str, miner_model: str) -> Optional[Decimal]:
        return _quantize(await self._scalar(
            select(BitcoinMonthlySummary.bitcoin_mined).where(
                BitcoinMonthlySummary.year_month == year_month,
                BitcoinMonthlySummary.miner_model == miner_model,
            )
        ))

    async def get_yearly(self, year: str, miner_model: str) -> Optional[Decimal]:
        return _quantize(await self._scalar(
            select(BitcoinYearlySummary.bitcoin_mined).where(
                BitcoinYearlySummary.year == year,
                BitcoinYearlySummary.miner_model == miner_model,
            )
        ))
