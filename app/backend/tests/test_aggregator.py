"""
Test summary roll-ups.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from curtailment_mining.services.mining_calculator import MinerModel
from curtailment_mining.services.reconciliation import SummaryAggregator
from curtailment_mining.services.reconciliation.aggregator import month_bounds
from curtailment_mining.services.reconciliation.repositories import CalculationRepository, SummaryRepository


def calc(day, period, btc, model="S9"):
    return {
        "settlement_date": day,
        "settlement_period": period,
        "farm_id": "T_FARM-1",
        "miner_model": model,
        "bitcoin_mined": Decimal(btc),
        "difficulty": Decimal(1),
        "calculated_at": datetime.now(timezone.utc),
    }


def test_month_bounds():
    assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds("2023-12") == (date(2023, 12, 1), date(2023, 12, 31))


@pytest.mark.asyncio
async def test_refresh_touched_rolls_up_bottom_up(db, fast_policy):
    calculations = CalculationRepository()
    await calculations.upsert_chunk([
        calc(date(2024, 1, 30), 1, "0.10000000"),
        calc(date(2024, 1, 30), 2, "0.05000000"),
        calc(date(2024, 1, 31), 1, "0.01000000"),
        calc(date(2024, 2, 1), 1, "0.00000001"),
    ])
    summaries = SummaryRepository()
    aggregator = SummaryAggregator(summaries, fast_policy)

    counts = await aggregator.refresh_touched([
        (date(2024, 1, 30), MinerModel.S9),
        (date(2024, 1, 31), "S9"),
        (date(2024, 2, 1), MinerModel.S9),
    ])

    assert counts == {"days": 3, "months": 2, "years": 1}
    assert await summaries.get_daily(date(2024, 1, 30), "S9") == Decimal("0.15000000")
    assert await summaries.get_monthly("2024-01", "S9") == Decimal("0.16000000")
    assert await summaries.get_monthly("2024-02", "S9") == Decimal("0.00000001")
    assert await summaries.get_yearly("2024", "S9") == Decimal("0.16000001")


@pytest.mark.asyncio
async def test_summary_removed_when_records_are_gone(db, fast_policy):
    day = date(2024, 5, 5)
    calculations = CalculationRepository()
    await calculations.upsert_chunk([calc(day, 1, "0.2"), calc(day, 2, "0.3")])
    summaries = SummaryRepository()
    aggregator = SummaryAggregator(summaries, fast_policy)
    await aggregator.refresh_touched([(day, "S9")])
    assert await summaries.get_yearly("2024", "S9") == Decimal("0.50000000")

    await calculations.delete_keys(day, "S9", [(1, "T_FARM-1"), (2, "T_FARM-1")])
    await aggregator.refresh_touched([(day, "S9")])

    assert await summaries.get_daily(day, "S9") is None
    assert await summaries.get_monthly("2024-05", "S9") is None
    assert await summaries.get_yearly("2024", "S9") is None


@pytest.mark.asyncio
async def test_refresh_overwrites_previous_total(db, fast_policy):
    day = date(2024, 5, 5)
    calculations = CalculationRepository()
    summaries = SummaryRepository()
    aggregator = SummaryAggregator(summaries, fast_policy)

    await calculations.upsert_chunk([calc(day, 1, "0.2")])
    await aggregator.refresh(day, "S9")
    await calculations.upsert_chunk([calc(day, 1, "0.7")])
    await aggregator.refresh(day, "S9")

    assert await summaries.get_daily(day, "S9") == Decimal("0.70000000")


@pytest.mark.asyncio
async def test_models_are_summarised_separately(db, fast_policy):
    day = date(2024, 5, 5)
    await CalculationRepository().upsert_chunk([
        calc(day, 1, "0.2", model="S9"),
        calc(day, 1, "0.9", model="M20S"),
    ])
    summaries = SummaryRepository()

    counts = await SummaryAggregator(summaries, fast_policy).rebuild(day, day, [MinerModel.S9, MinerModel.M20S])

    assert counts == {"days": 2, "months": 2, "years": 2}
    assert await summaries.get_daily(day, "S9") == Decimal("0.20000000")
    assert await summaries.get_daily(day, "M20S") == Decimal("0.90000000")
